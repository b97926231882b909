"""Small networks shared by the test suite."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure we can import the local package without installation
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from grainchem import (  # noqa: E402
    Element,
    Network,
    Reaction,
    Species,
    electron,
    grain_charge_states,
)


@pytest.fixture
def ion_network():
    """Electron, neutral X and its cation, with ionization and recombination."""
    species = [
        electron(),
        Species("X", 0, {"X": 1}),
        Species("X+", 1, {"X": 1}),
    ]
    elements = [Element("X", 1.0)]
    reactions = [
        Reaction(["X"], ["X+", "e-"], "ionization"),
        Reaction(["X+", "e-"], ["X"], "recombination"),
    ]
    return Network(species, elements, reactions)


@pytest.fixture
def water_network():
    """Hydrogen and oxygen bearing species without reactions.

    The densities returned by ``water_densities`` match the element targets
    and are charge neutral.
    """
    species = [
        electron(),
        Species("H", 0, {"H": 1}),
        Species("H2", 0, {"H": 2}),
        Species("O", 0, {"O": 1}),
        Species("OH", 0, {"O": 1, "H": 1}),
        Species("H2O", 0, {"O": 1, "H": 2}),
        Species("H+", 1, {"H": 1}),
        Species("O+", 1, {"O": 1}),
    ]
    elements = [Element("H", 1.85), Element("O", 0.65)]
    return Network(species, elements)


@pytest.fixture
def water_densities():
    return np.array([0.1, 0.1, 0.5, 0.2, 0.1, 0.3, 0.05, 0.05])


@pytest.fixture
def grain_network():
    """One grain type with charge states -1, 0, +1 and an anion reservoir."""
    species = [electron(), Species("H", 0, {"H": 1}), Species("H-", -1, {"H": 1})]
    species += grain_charge_states("G", 1)
    elements = [Element("H", 3.0), Element("G", 7.0, grain=True)]
    return Network(species, elements)


@pytest.fixture
def mixed_network():
    """Network with one-, two- and three-body terms and grain charging."""
    species = [
        electron(),
        Species("H", 0, {"H": 1}),
        Species("H2", 0, {"H": 2}),
        Species("H+", 1, {"H": 1}),
    ]
    species += grain_charge_states("G", 1)
    elements = [Element("H", 1.0), Element("G", 1e-2, grain=True)]
    reactions = [
        Reaction(["H", "H", "G"], ["H2", "G"]),
        Reaction(["H2"], ["H", "H"]),
        Reaction(["H"], ["H+", "e-"]),
        Reaction(["H+", "e-"], ["H"]),
        Reaction(["H+", "G-"], ["H", "G"]),
        Reaction(["e-", "G"], ["G-"]),
        Reaction(["e-", "G+"], ["G"]),
        Reaction(["H+", "G"], ["H", "G+"]),
    ]
    return Network(species, elements, reactions)
