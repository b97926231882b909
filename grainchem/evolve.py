"""Evolve the number densities of all species under the chemistry model.

The driver repeatedly asks a stiff solver for a step (falling back to a second
solver when the first fails), enforces the conservation laws on the result and
adopts the solver's recommended next step, until the requested time has
elapsed or the wall-clock budget runs out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Optional, Union

import numpy as np
import pandas as pd

from .conservation import ConservationStatus, enforce_conservation
from .network import Network
from .solver import SPY, StiffSolver, get_solver

logger = logging.getLogger(__name__)


class EvolutionStatus(IntEnum):
    """Outcome of an evolution call.

    SUCCESS: the requested time was reached.
    SOFT_FAILURE: timeout or unmatched conservation, partial progress kept.
    HARD_FAILURE: both solvers failed on a step.
    """

    SUCCESS = 0
    SOFT_FAILURE = 1
    HARD_FAILURE = -1


@dataclass
class EvolutionState:
    """Mutable state of one chemical evolution.

    Attributes
    ----------
    network : Network
        Reaction network, read-only
    rate_constants : np.ndarray
        One rate constant per reaction, read-only
    densities : np.ndarray
        Number densities, index 0 is the electron. Updated in place.
    density_scale : np.ndarray
        Per-species floor of the error scale; the solvers normalise errors
        by max(|density|, density_scale)
    time : float
        Current simulation time [s]
    reference_density : float
        Density converting element abundances to target densities
    """

    network: Network
    rate_constants: np.ndarray
    densities: np.ndarray
    density_scale: np.ndarray
    time: float = 0.0
    reference_density: float = 1.0

    def __post_init__(self):  # noqa
        n_species = self.network.species_count()
        self.rate_constants = np.asarray(self.rate_constants, dtype=float)
        self.densities = np.array(self.densities, dtype=float)
        self.density_scale = np.broadcast_to(
            np.asarray(self.density_scale, dtype=float), (n_species,)
        ).copy()
        if self.densities.shape != (n_species,):
            raise ValueError(
                f"Expected {n_species} densities, got shape {self.densities.shape}"
            )
        if self.rate_constants.shape != (self.network.reaction_count(),):
            raise ValueError(
                f"Expected {self.network.reaction_count()} rate constants, "
                f"got shape {self.rate_constants.shape}"
            )
        if np.any(self.density_scale <= 0.0):
            raise ValueError("density_scale must be positive")

    @property
    def electron_abundance(self) -> float:
        return float(self.densities[0]) / self.reference_density


@dataclass
class EvolutionResult:
    """Status and bookkeeping of one evolution call."""

    status: EvolutionStatus
    time: float
    elapsed: float
    next_step: float
    steps: int = 0
    fallbacks: int = 0
    message: str = ""
    history: list[tuple[float, np.ndarray]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == EvolutionStatus.SUCCESS

    def to_dataframe(self, species_names: list[str]) -> pd.DataFrame:
        """Recorded densities as a DataFrame indexed by time [s]."""
        if not self.history:
            return pd.DataFrame(columns=species_names, dtype=float)
        times, densities = zip(*self.history)
        df = pd.DataFrame(np.vstack(densities), columns=species_names)
        df.index = pd.Index(times, name="time")
        return df


def _resolve(solver: Union[str, StiffSolver]) -> StiffSolver:
    return get_solver(solver) if isinstance(solver, str) else solver


def evolve(
    state: EvolutionState,
    t_end: float,
    dt_try: float,
    tolerance: float,
    solver: Union[str, StiffSolver] = "bader_deuflhard",
    fallback: Union[str, StiffSolver] = "kaps_rentrop",
    max_wall_time: float = 3600.0,
    max_steps: Optional[int] = None,
    record_history: bool = False,
    verbose: bool = True,
) -> EvolutionResult:
    """Evolve the densities of ``state`` for ``t_end`` seconds.

    Parameters
    ----------
    state : EvolutionState
        Densities and time are updated in place
    t_end : float
        Evolution time [s]
    dt_try : float
        Trial time step [s]
    tolerance : float
        Relative error level of the solvers
    solver, fallback : str or StiffSolver
        Primary solver and the solver retrying a step the primary failed
    max_wall_time : float
        Wall-clock budget [s]; exceeding it is a soft failure
    max_steps : int, optional
        Budget of accepted steps; exceeding it is a soft failure
    record_history : bool
        Keep (time, densities) after every accepted step
    verbose : bool
        Report progress at INFO level

    Returns:
    -------
    result : EvolutionResult
        Status, final time and recommended next step. ``state`` always holds
        the last accepted, conservation-corrected densities.
    """
    primary = _resolve(solver)
    secondary = _resolve(fallback)
    network = state.network
    model = network.get_ode(state.rate_constants)
    info = logging.INFO if verbose else logging.DEBUG

    working = np.empty_like(state.densities)
    result = EvolutionResult(EvolutionStatus.SUCCESS, state.time, 0.0, dt_try)
    if record_history:
        result.history.append((state.time, state.densities.copy()))

    logger.log(info, "Chemical evolution started...")
    logger.log(
        info,
        "At t=%e yr, Abn(e-)=%e, next dt=%e yr.",
        state.time / SPY,
        state.electron_abundance,
        dt_try / SPY,
    )

    start = datetime.now()
    report_time = state.time * 1.5
    t = 0.0

    while t < t_end:
        remaining = t_end - t
        dt_try = min(dt_try, remaining)

        rates = model.derivs(state.densities)
        scale = np.maximum(np.abs(state.densities), state.density_scale)
        step = primary(model, state.densities, rates, dt_try, tolerance, scale)
        if not step.success:
            logger.debug(
                "At t=%e yr, %s failed (%s), retrying with %s",
                state.time / SPY,
                primary.name,
                step.message,
                secondary.name,
            )
            result.fallbacks += 1
            step = secondary(model, state.densities, rates, dt_try, tolerance, scale)

        if not step.success:
            logger.error(
                "At t=%e yr, calculation fails: %s", state.time / SPY, step.message
            )
            result.status = EvolutionStatus.HARD_FAILURE
            result.message = step.message
            break

        if state.time + step.step > report_time:
            report = True
            report_time = (state.time + step.step) * 1.5
        else:
            report = False

        working[:] = step.densities
        status = enforce_conservation(
            network, working, state.reference_density, verbose=report and verbose
        )
        if status != ConservationStatus.OK:
            logger.error(
                "At t=%e yr, conservation makeup fails (%s)",
                state.time / SPY,
                status.name,
            )
            result.status = EvolutionStatus.SOFT_FAILURE
            result.message = f"conservation makeup failed: {status.name}"
            break

        state.densities[:] = working
        state.time += step.step
        t = t_end if step.step >= remaining else t + step.step
        dt_try = step.next_step
        result.steps += 1
        if record_history:
            result.history.append((state.time, state.densities.copy()))

        logger.log(
            info if report else logging.DEBUG,
            "At t=%e yr, Abn(e-)=%e, next dt=%e yr.",
            state.time / SPY,
            state.electron_abundance,
            dt_try / SPY,
        )

        if t >= t_end:
            break
        if (datetime.now() - start).total_seconds() > max_wall_time:
            logger.warning("Evolution exceeded the wall-clock budget of %g s", max_wall_time)
            result.status = EvolutionStatus.SOFT_FAILURE
            result.message = "wall-clock budget exceeded"
            break
        if max_steps is not None and result.steps >= max_steps:
            logger.warning("Evolution exceeded the budget of %d steps", max_steps)
            result.status = EvolutionStatus.SOFT_FAILURE
            result.message = "step budget exceeded"
            break

    result.time = state.time
    result.elapsed = t
    result.next_step = dt_try

    if result.status >= 0 or t > 0.1 * t_end:
        logger.log(
            info,
            "Evolution completed at t=%e yr, with Abn(e-)=%e.",
            state.time / SPY,
            state.electron_abundance,
        )
    else:
        logger.log(
            info,
            "Evolution terminated at t=%e yr, with Abn(e-)=%e.",
            state.time / SPY,
            state.electron_abundance,
        )

    return result
