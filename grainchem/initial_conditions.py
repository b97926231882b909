"""Initial conditions setup for chemical evolutions.

Handles initialization of density vectors from configuration.
"""

import logging

import numpy as np

from .config import EvolutionConfig
from .conservation import elemental_densities, net_charge
from .network import Network

logger = logging.getLogger(__name__)


def initialize_densities(network: Network, config: EvolutionConfig) -> np.ndarray:
    """Initialize the density vector from configuration.

    Converts fractional abundances (from config/YAML) to number densities.

    Parameters
    ----------
    network : Network
        Reaction network containing species list
    config : EvolutionConfig
        Configuration with initial abundances (fractional, x_i)

    Returns:
    -------
    n0 : np.ndarray
        Initial number densities [# species], n_i = x_i * reference_density

    Notes:
    -----
    - All species start at abundance_floor * reference_density
    - Specified species are set to their fractional values * reference_density
    - Extra species in config trigger a warning but don't fail
    """
    n0 = np.full(
        network.species_count(), config.abundance_floor * config.reference_density
    )

    species_names = network.species_names
    for species_name, fractional_abundance in config.initial_abundances.items():
        if species_name in species_names:
            logger.debug(
                "Setting initial abundance for %s: %.3e (fractional)",
                species_name,
                fractional_abundance,
            )
            n0[network.get_index(species_name)] = (
                fractional_abundance * config.reference_density
            )
        else:
            logger.warning("Species '%s' in config not found in network", species_name)

    return n0


def default_density_scale(densities: np.ndarray, floor: float) -> np.ndarray:
    """Per-species error scale: the density itself, but at least ``floor``."""
    return np.maximum(np.abs(np.asarray(densities, dtype=float)), floor)


def elemental_summary(network: Network, densities: np.ndarray) -> dict[str, float]:
    """Total density per element plus the net charge density.

    Returns:
    -------
    totals : Dict[str, float]
        Element name -> total density, and ``"charge"`` -> net charge
    """
    totals = elemental_densities(network, densities)
    result = {
        element.name: float(totals[e]) for e, element in enumerate(network.elements)
    }
    result["charge"] = net_charge(network, densities)
    return result


def abundance_summary(
    network: Network, densities: np.ndarray, reference_density: float = 1.0, top_n: int = 10
) -> str:
    """Generate human-readable summary of the most abundant species."""
    species_names = network.species_names
    densities = np.asarray(densities)

    sorted_indices = np.argsort(densities)[::-1]

    lines = ["Abundances Summary", "=" * 40]
    lines.append(f"{'Species':<10} {'Density [cm^-3]':>18} {'Fractional':>12}")
    lines.append("-" * 40)

    for idx in sorted_indices[:top_n]:
        lines.append(
            f"{species_names[idx]:<10} {densities[idx]:>18.3e} "
            f"{densities[idx] / reference_density:>12.3e}"
        )

    return "\n".join(lines)
