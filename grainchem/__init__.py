"""
Top-level public API for the grainchem ionization chemistry evolver.

The intent is to expose a small, stable surface for typical users:

- ``Network``, ``Species``, ``Element``, ``Reaction``: describe a network.
- ``evolve``: advance an ``EvolutionState`` with adaptive stiff solvers,
  enforcing element and charge conservation after every step.
- ``enforce_conservation``: the conservation makeup on its own.
- ``EvolutionConfig`` and ``run_evolution``: configured high-level runs.

Example
-------
>>> from grainchem import EvolutionConfig, run_evolution
>>> config = EvolutionConfig(reference_density=1e10, t_end=1e4)
>>> results = run_evolution(network, rate_constants, config)
"""

import jax

# 64 bit floats are required for densities spanning many decades
jax.config.update("jax_enable_x64", True)

from .config import EvolutionConfig  # noqa: E402
from .conservation import ConservationStatus, enforce_conservation  # noqa: E402
from .evolve import (  # noqa: E402
    EvolutionResult,
    EvolutionState,
    EvolutionStatus,
    evolve,
)
from .main import run_evolution  # noqa: E402
from .network import JRateModel, Network  # noqa: E402
from .parameters import ParameterStore  # noqa: E402
from .reactions import Equation, Reaction, ReactionTerm  # noqa: E402
from .solver import StepResult, StiffSolver, get_solver  # noqa: E402
from .species import Element, Species, electron, grain_charge_states  # noqa: E402

__all__ = [
    "EvolutionConfig",
    "run_evolution",
    "Network",
    "JRateModel",
    "Species",
    "Element",
    "Reaction",
    "ReactionTerm",
    "Equation",
    "electron",
    "grain_charge_states",
    "evolve",
    "EvolutionState",
    "EvolutionStatus",
    "EvolutionResult",
    "enforce_conservation",
    "ConservationStatus",
    "ParameterStore",
    "StiffSolver",
    "StepResult",
    "get_solver",
]
