"""High-level entry point for running a chemical evolution.

Usage
-----
    from grainchem import EvolutionConfig, Network, run_evolution

    config = EvolutionConfig(
        reference_density=1e10,
        initial_abundances={"H2": 0.5, "He": 0.1},
        t_end=1e4,
    )
    results = run_evolution(network, rate_constants, config)
"""

import logging
from datetime import datetime

import numpy as np

from .config import EvolutionConfig
from .conservation import ConservationStatus, enforce_conservation
from .evolve import EvolutionResult, EvolutionState, EvolutionStatus, evolve
from .initial_conditions import (
    abundance_summary,
    default_density_scale,
    elemental_summary,
    initialize_densities,
)
from .network import Network
from .solver import SPY

logger = logging.getLogger(__name__)


def run_evolution(
    network: Network,
    rate_constants,
    config: EvolutionConfig,
    verbose: bool = True,
) -> dict:
    """Run a chemical evolution.

    Workflow:
    1. Validate configuration and apply element abundances
    2. Initialize the density vector
    3. Enforce conservation on the initial state
    4. Evolve from t_start to t_end

    Parameters
    ----------
    network : Network
        Reaction network
    rate_constants : array
        One rate constant per reaction, in network order
    config : EvolutionConfig
        Evolution configuration
    verbose : bool
        Log progress messages at INFO level

    Returns:
    -------
    results : dict
        Dictionary containing:
        - 'result': EvolutionResult of the evolve call
        - 'state': final EvolutionState
        - 'network': Reaction network with the configured abundances
        - 'config': Configuration used
        - 'computation_time': Wall-clock time [s]
    """
    start_time = datetime.now()
    info = logging.INFO if verbose else logging.DEBUG

    logger.log(info, "Run name: %s", config.run_name)
    config.validate()

    if config.element_abundances:
        network = network.with_abundances(config.element_abundances)
    logger.log(
        info,
        "Network: %d species, %d elements, %d reactions",
        network.species_count(),
        network.element_count(),
        network.reaction_count(),
    )

    densities = initialize_densities(network, config)
    state = EvolutionState(
        network=network,
        rate_constants=np.asarray(rate_constants, dtype=float),
        densities=densities,
        density_scale=default_density_scale(
            densities, config.density_scale_floor * config.reference_density
        ),
        time=config.t_start * SPY,
        reference_density=config.reference_density,
    )

    working = state.densities.copy()
    status = enforce_conservation(
        network, working, config.reference_density, verbose=verbose
    )
    if status != ConservationStatus.OK:
        # Callers get the untouched initial densities back
        logger.error("Initial state can not be made conservative (%s)", status.name)
        result = EvolutionResult(
            EvolutionStatus.SOFT_FAILURE,
            state.time,
            0.0,
            config.dt_init * SPY,
            message=f"conservation makeup failed: {status.name}",
        )
    else:
        state.densities[:] = working
        logger.log(
            info,
            "%s",
            abundance_summary(network, state.densities, config.reference_density, top_n=8),
        )
        for name, total in elemental_summary(network, state.densities).items():
            logger.log(info, "  %s: %.3e cm^-3", name, total)

        result = evolve(
            state,
            t_end=(config.t_end - config.t_start) * SPY,
            dt_try=config.dt_init * SPY,
            tolerance=config.tolerance,
            solver=config.solver,
            fallback=config.fallback_solver,
            max_wall_time=config.max_wall_time,
            max_steps=config.max_steps,
            record_history=config.record_history,
            verbose=verbose,
        )

    computation_time = (datetime.now() - start_time).total_seconds()
    logger.log(
        info,
        "Evolution %s after %d steps in %.2f seconds",
        result.status.name,
        result.steps,
        computation_time,
    )

    return {
        "result": result,
        "state": state,
        "network": network,
        "config": config,
        "computation_time": computation_time,
    }
