"""Stiff ODE single-step solvers for chemical kinetics integration.

Every solver takes one adaptive step of the rate equations from a given state
and reports the step it actually took together with a recommended next step.
Solvers never raise on numerical trouble: a failed step is reported through
``StepResult.success``.

The ``model`` passed to a solver provides two callbacks:

- ``model.derivs(densities)``: rates of change dn/dt
- ``model.jacobi(densities)``: Jacobian d(dn/dt)/dn

References
----------
Press, W. H. et al., Numerical Recipes, 2nd ed., section 16.6
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import diffrax as dx
import equinox as eqx
import jax
import jax.numpy as jnp
import jax.scipy.linalg as jsl
import numpy as np

# Seconds per year
SPY = 3600.0 * 24 * 365.0

TINY = 1.0e-30


@dataclass
class StepResult:
    """Outcome of one solver step.

    Attributes
    ----------
    success : bool
        Whether the step was accepted
    densities : np.ndarray, optional
        Densities at the end of the accepted step
    step : float
        Step size actually taken [s]
    next_step : float
        Recommended size of the next step [s]
    message : str
        Reason for a failure
    """

    success: bool
    densities: Optional[np.ndarray] = None
    step: float = 0.0
    next_step: float = 0.0
    message: str = ""


class StiffSolver(ABC):
    """Interface of the single-step stiff solvers used by the evolution driver."""

    name: str = "stiff"

    @abstractmethod
    def __call__(self, model, densities, rates, trial_step, tolerance, scale) -> StepResult:
        """Take one step of at most ``trial_step`` seconds.

        Parameters
        ----------
        model : JRateModel
            Provides the ``derivs`` and ``jacobi`` callbacks
        densities : array
            Densities at the start of the step
        rates : array
            ``model.derivs(densities)``
        trial_step : float
            Step size to attempt [s]
        tolerance : float
            Relative error level
        scale : array
            Per-species density scale normalising the error estimate
        """

    @staticmethod
    def error_norm(error, scale, tolerance) -> float:
        return float(jnp.max(jnp.abs(error / scale))) / tolerance

    def __repr__(self):
        return f"{type(self).__name__}()"


# Kaps-Rentrop coefficients with Shampine's parameters
GAM = 1.0 / 2.0
A21 = 2.0
A31 = 48.0 / 25.0
A32 = 6.0 / 25.0
C21 = -8.0
C31 = 372.0 / 25.0
C32 = 12.0 / 5.0
C41 = -112.0 / 125.0
C42 = -54.0 / 125.0
C43 = -2.0 / 5.0
B1 = 19.0 / 9.0
B2 = 1.0 / 2.0
B3 = 25.0 / 108.0
B4 = 125.0 / 108.0
E1 = 17.0 / 54.0
E2 = 7.0 / 36.0
E3 = 0.0
E4 = 125.0 / 108.0


@eqx.filter_jit
def _rosenbrock_step(model, y, dydx, jac, h):
    lu = jsl.lu_factor(jnp.eye(y.shape[0]) / (GAM * h) - jac)
    g1 = jsl.lu_solve(lu, dydx)
    dysav = model.derivs(y + A21 * g1)
    g2 = jsl.lu_solve(lu, dysav + C21 * g1 / h)
    dysav = model.derivs(y + A31 * g1 + A32 * g2)
    g3 = jsl.lu_solve(lu, dysav + (C31 * g1 + C32 * g2) / h)
    g4 = jsl.lu_solve(lu, dysav + (C41 * g1 + C42 * g2 + C43 * g3) / h)
    y_new = y + B1 * g1 + B2 * g2 + B3 * g3 + B4 * g4
    error = E1 * g1 + E2 * g2 + E3 * g3 + E4 * g4
    return y_new, error


class KapsRentrop(StiffSolver):
    """Fourth-order Rosenbrock method with an embedded third-order error estimate."""

    name = "kaps_rentrop"

    SAFETY = 0.9
    GROW = 1.5
    PGROW = -0.25
    SHRNK = 0.5
    PSHRNK = -1.0 / 3.0
    ERRCON = 0.1296
    MAXTRY = 40

    def __call__(self, model, densities, rates, trial_step, tolerance, scale) -> StepResult:
        y = jnp.asarray(densities)
        dydx = jnp.asarray(rates)
        scale = jnp.asarray(scale)
        jac = model.jacobi(y)
        h = float(trial_step)

        for _ in range(self.MAXTRY):
            y_new, error = _rosenbrock_step(model, y, dydx, jac, jnp.asarray(h))
            errmax = self.error_norm(error, scale, tolerance)

            if errmax <= 1.0:
                if errmax > self.ERRCON:
                    h_next = self.SAFETY * h * errmax**self.PGROW
                else:
                    h_next = self.GROW * h
                return StepResult(True, np.array(y_new, dtype=float), h, h_next)

            if math.isfinite(errmax):
                h = max(self.SAFETY * h * errmax**self.PSHRNK, self.SHRNK * h)
            else:
                h = self.SHRNK * h
            if h <= TINY:
                return StepResult(False, message="step size underflow in kaps_rentrop")

        return StepResult(False, message="exceeded MAXTRY in kaps_rentrop")


@eqx.filter_jit
def _semi_implicit_midpoint(model, y, dydx, jac, htot, nstep):
    h = htot / nstep
    lu = jsl.lu_factor(jnp.eye(y.shape[0]) - h * jac)
    delta = jsl.lu_solve(lu, h * dydx)
    ytemp = y + delta

    def body(_, carry):
        ytemp, delta = carry
        yout = jsl.lu_solve(lu, h * model.derivs(ytemp) - delta)
        delta = delta + 2.0 * yout
        return ytemp + delta, delta

    ytemp, delta = jax.lax.fori_loop(1, nstep, body, (ytemp, delta))
    yout = jsl.lu_solve(lu, h * model.derivs(ytemp) - delta)
    return ytemp + yout


class SemiImplicitExtrapolation(StiffSolver):
    """Bader-Deuflhard semi-implicit extrapolation.

    Each attempt integrates the step with the semi-implicit midpoint rule on
    an increasing sequence of substeps and extrapolates the results to zero
    substep size. The error estimate is the change of the last extrapolation.
    """

    name = "bader_deuflhard"

    NSEQ = (2, 6, 10, 14, 22, 34, 50, 70)
    SAFE1 = 0.25
    SAFE2 = 0.7
    REDMAX = 1.0e-5
    REDMIN = 0.7
    SCALMX = 0.1
    MAXTRY = 30

    def __init__(self, kmax: int = 7):
        if not 2 <= kmax <= len(self.NSEQ):
            raise ValueError(f"kmax must be between 2 and {len(self.NSEQ)}")
        self.kmax = kmax

    def __call__(self, model, densities, rates, trial_step, tolerance, scale) -> StepResult:
        y = jnp.asarray(densities)
        dydx = jnp.asarray(rates)
        scale = jnp.asarray(scale)
        jac = model.jacobi(y)
        h = float(trial_step)

        for _ in range(self.MAXTRY):
            y_new, errmax, k = self._extrapolate(model, y, dydx, jac, h, scale, tolerance)

            if errmax <= 1.0:
                factor = self.SAFE2 / max(
                    (errmax / self.SAFE1) ** (1.0 / (2 * k + 1)), self.SCALMX
                )
                return StepResult(True, np.array(y_new, dtype=float), h, h * factor)

            if math.isfinite(errmax):
                red = self.SAFE2 / (errmax / self.SAFE1) ** (1.0 / (2 * k + 1))
                red = min(max(red, self.REDMAX), self.REDMIN)
            else:
                red = self.REDMIN
            h *= red
            if h <= TINY:
                return StepResult(False, message="step size underflow in bader_deuflhard")

        return StepResult(False, message="exceeded MAXTRY in bader_deuflhard")

    def _extrapolate(self, model, y, dydx, jac, h, scale, tolerance):
        """Run the extrapolation table until a column meets the tolerance.

        Returns the best estimate, its error norm and the column reached.
        """
        table = []
        errmax = math.inf
        estimate = y
        for k in range(self.kmax):
            nstep = self.NSEQ[k]
            row = [_semi_implicit_midpoint(model, y, dydx, jac, jnp.asarray(h), nstep)]
            # Neville extrapolation in (h/n)^2 towards zero
            for j in range(1, k + 1):
                ratio = (nstep / self.NSEQ[k - j]) ** 2
                row.append(row[j - 1] + (row[j - 1] - table[j - 1]) / (ratio - 1.0))
            table = row
            estimate = row[-1]
            if k == 0:
                continue
            errmax = self.error_norm(row[-1] - row[-2], scale, tolerance)
            if not math.isfinite(errmax):
                return estimate, errmax, k
            if errmax <= 1.0:
                return estimate, errmax, k
        return estimate, errmax, self.kmax - 1


def _scaled_vector_field(t, z, args):
    model, scale = args
    return model.derivs(z * scale) / scale


class DiffraxSolver(StiffSolver):
    """One Diffrax integration over the trial step.

    The system is normalised by the density scale so that a scalar tolerance
    applies to every species.
    """

    name = "kvaerno5"

    def __init__(self, solver: Optional[dx.AbstractSolver] = None, max_steps: int = 4096):
        self.solver = solver if solver is not None else dx.Kvaerno5()
        self.max_steps = max_steps

    def __call__(self, model, densities, rates, trial_step, tolerance, scale) -> StepResult:
        scale = jnp.asarray(scale)
        h = float(trial_step)
        solution = dx.diffeqsolve(
            dx.ODETerm(_scaled_vector_field),
            self.solver,
            t0=jnp.asarray(0.0),
            t1=jnp.asarray(h),
            dt0=jnp.asarray(h),
            y0=jnp.asarray(densities) / scale,
            args=(model, scale),
            stepsize_controller=dx.PIDController(rtol=tolerance, atol=tolerance),
            max_steps=self.max_steps,
            throw=False,
        )
        if not bool(solution.result == dx.RESULTS.successful):
            return StepResult(False, message=f"diffrax: {solution.result}")

        y_new = np.array(solution.ys[-1] * scale, dtype=float)
        if not np.all(np.isfinite(y_new)):
            return StepResult(False, message="diffrax: non-finite densities")

        n_steps = int(solution.stats["num_accepted_steps"])
        h_next = 1.5 * h if n_steps <= 2 else h
        return StepResult(True, y_new, h, h_next)


def get_solver(solver_name: str) -> StiffSolver:
    """Get a stiff solver instance from its name.

    Parameters
    ----------
    solver_name : str
        Solver identifier: 'bader_deuflhard', 'kaps_rentrop', 'kvaerno5'

    Returns:
    -------
    solver : StiffSolver
        Configured solver instance

    Notes:
    -----
    - bader_deuflhard: semi-implicit extrapolation, efficient at tight tolerances
    - kaps_rentrop: 4th-order Rosenbrock, robust fallback
    - kvaerno5: Diffrax ESDIRK method, Jacobian from automatic differentiation
    """
    solvers = {
        "bader_deuflhard": SemiImplicitExtrapolation,
        "kaps_rentrop": KapsRentrop,
        "kvaerno5": DiffraxSolver,
    }

    if solver_name.lower() not in solvers:
        raise ValueError(
            f"Unknown solver: {solver_name}. Available: {list(solvers.keys())}"
        )

    return solvers[solver_name.lower()]()
