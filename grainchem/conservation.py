"""Density makeup enforcing element and charge conservation.

Numerical integration slowly drifts away from the conserved element totals
and from charge neutrality. After every accepted step the densities are
corrected in place:

1. negative densities are clamped to zero,
2. element deficits are made up by the element's single-element species,
   surpluses are removed from the neutral species containing the element,
3. grain totals are fixed by scaling all charge states of each grain type,
4. the electron density is set from the charge of all other species; when
   that charge is negative, negatively charged grains are neutralised instead.

References
----------
Bai, X.-N. & Goodman, J., 2009, ApJ, 701, 737
"""

import logging
from enum import IntEnum

import numpy as np

from .errors import ConservationError
from .network import Network

logger = logging.getLogger(__name__)


class ConservationStatus(IntEnum):
    OK = 0
    ELEMENT_UNMATCHED = -1
    CHARGE_UNMATCHED = -2


def elemental_densities(network: Network, densities: np.ndarray) -> np.ndarray:
    """Total density of every element and grain type."""
    return network.composition.T @ np.asarray(densities)


def net_charge(network: Network, densities: np.ndarray) -> float:
    """Net charge density, electrons included with charge -1."""
    return float(network.charges @ np.asarray(densities))


def enforce_conservation(
    network: Network,
    densities: np.ndarray,
    reference_density: float = 1.0,
    verbose: bool = False,
) -> ConservationStatus:
    """Make up densities in place so that element totals and charge are conserved.

    Parameters
    ----------
    network : Network
        Reaction network providing compositions, charges and target abundances
    densities : np.ndarray
        Number densities, modified in place
    reference_density : float
        Density that converts element abundances to target densities
    verbose : bool
        Log the clamping and discrepancy diagnostics at INFO instead of DEBUG

    Returns:
    -------
    status : ConservationStatus
        OK, or which conservation law could not be matched. On failure the
        densities may be partially corrected.
    """
    level = logging.INFO if verbose else logging.DEBUG

    negative = densities < 0.0
    if np.any(negative):
        for i in np.flatnonzero(negative):
            logger.log(
                level,
                "Warning: [%s] = %e < 0!",
                network.species[i].name,
                densities[i],
            )
        densities[negative] = 0.0

    element_density = elemental_densities(network, densities)
    targets = network.element_targets(reference_density)

    try:
        for e, element in enumerate(network.elements):
            if element.grain:
                continue
            disp = element_density[e] - targets[e]
            logger.log(
                level,
                "Discrepancy for %3s : %e over %e",
                element.name,
                disp,
                targets[e],
            )
            if disp < 0.0:
                _single_element_makeup(network, densities, e, disp)
            elif disp > 0.0:
                element_makeup_sub(network, densities, e, disp)

        for e, element in enumerate(network.elements):
            if not element.grain:
                continue
            disp = element_density[e] - targets[e]
            logger.log(
                level,
                "Discrepancy for %3s : %e over %e",
                element.name,
                disp,
                targets[e],
            )
            if disp == 0.0:
                continue
            if element_density[e] <= 0.0:
                raise ConservationError(
                    f"Can not make up for [{element.name}]: no grains left"
                )
            states = network.composition[:, e] > 0
            densities[states] *= 1.0 - disp / element_density[e]
    except ConservationError as exc:
        logger.error("Error! %s", exc)
        return ConservationStatus.ELEMENT_UNMATCHED

    # Electron density is derived from the other species
    charge_density = float(network.charges[1:] @ densities[1:])
    if charge_density >= 0.0:
        densities[0] = charge_density
    else:
        densities[0] = 0.0
        try:
            charge_makeup(network, densities, -charge_density)
        except ConservationError as exc:
            logger.error("Error! %s", exc)
            return ConservationStatus.CHARGE_UNMATCHED

    return ConservationStatus.OK


def _single_element_makeup(
    network: Network, densities: np.ndarray, e: int, disp: float
):
    """Raise the single-element species of element ``e`` to cover a deficit."""
    single = np.array(network.elements[e].single, dtype=int)
    counts = network.composition[single, e]
    den = float(densities[single] @ counts)
    if den > 0.0:
        densities[single] *= 1.0 - disp / den
    else:
        # Nothing to scale, seed the preferred reservoir
        densities[single[0]] -= disp / counts[0]


def element_makeup_sub(
    network: Network, densities: np.ndarray, q: int, dn: float
):
    """Remove a surplus ``dn`` of element ``q`` from its neutral species.

    Every neutral species containing the element shrinks by the same
    fraction. The atoms of other elements released this way go to the first
    single-element species of those elements, keeping their totals unchanged.

    Raises:
    ------
    ConservationError
        If the neutral species hold less of the element than the surplus.
    """
    element = network.elements[q]
    carriers = (network.composition[:, q] > 0) & (network.charges == 0)
    carriers[0] = False

    den = float(densities[carriers] @ network.composition[carriers, q])
    if den < dn:
        raise ConservationError(f"Can not make up for [{element.name}]!")

    frac = dn / den
    removed = densities * frac * carriers  # S
    densities[carriers] *= 1.0 - frac

    for j, other in enumerate(network.elements):
        if j == q or not other.single:
            continue
        released = float(removed @ network.composition[:, j])
        if released > 0.0:
            k = other.single[0]
            densities[k] += released / network.composition[k, j]


def charge_makeup(network: Network, densities: np.ndarray, dne: float):
    """Neutralise negatively charged grains to absorb a charge deficit ``dne``.

    Every negatively charged grain state shrinks by the same ratio and the
    removed density is moved to the neutral state of its grain type, so the
    total density of each grain type is unchanged.

    Raises:
    ------
    ConservationError
        If the negative grain charge is smaller than ``dne``, or absent.
    """
    negative = (network.grain_family >= 0) & (network.charges < 0)
    negcharge_tot = float(densities[negative] @ network.charges[negative])

    if negcharge_tot >= 0.0:
        raise ConservationError(
            f"Can not make up a charge deficit of {dne:e}: no negatively charged grains"
        )

    ratio = -dne / negcharge_tot
    if ratio > 1.0:
        raise ConservationError(
            f"Can not make up a charge deficit of {dne:e} "
            f"from grain charge {-negcharge_tot:e}"
        )

    removed = np.bincount(
        network.grain_family[negative],
        weights=densities[negative] * ratio,
        minlength=network.element_count(),
    )
    densities[negative] *= 1.0 - ratio
    for e, amount in enumerate(removed):
        if amount > 0.0:
            densities[network.grain_neutral[e]] += amount
