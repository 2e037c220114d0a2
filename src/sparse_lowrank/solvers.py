import logging
import time

import numpy as np
from tqdm import trange

from .active_set import ActiveSetStore, get_solver
from .errors import (
    ConfigurationError,
    EmptyActiveSetError,
    InvariantViolationError,
    OracleError,
)
from .history import HistoryRecorder, IterationRecord, Status
from .oracles import get_oracle
from .utils import check_params

logger = logging.getLogger(__name__)

# relative tolerance on the oracle's reported correlation
ORACLE_RTOL = 1e-6
# an atom enters only if its correlation beats lambda by more than rounding
ATOM_RTOL = 1e-9


# ----------------------------------------------------------------
# Column generation (generalized conditional gradient) driver
# ----------------------------------------------------------------
class ColumnGeneration:
    """
    Minimize 0.5*||y - x||^2 + lambda*||x||_1 + mu*||x||_tr by column
    generation over atoms of the penalty.

    Each iteration re-optimizes the coefficients of the active atoms with
    the inner solver, drops the atoms whose coefficient vanished, asks the
    oracle for the atom most correlated with the negative gradient, adds it
    when its correlation exceeds lambda, and stops once the duality gap is
    below epsStop.

    `callback(driver, record)` is called once per iteration with the
    IterationRecord; returning False stops the run.
    """

    def __init__(self, y, params: dict, callback=None):
        y = np.asarray(y, dtype=float)
        if y.ndim > 2:
            raise ConfigurationError(f"Observation must be a vector or a matrix, got {y.ndim} dimensions")
        self.y_shape = y.shape
        if y.ndim == 2:
            shape = y.shape
        else:
            shape = (params or {}).get('shape') or (y.size, 1)
        self.param = check_params(params, shape=shape)
        if int(np.prod(self.param['shape'])) != y.size:
            raise ConfigurationError(f"Shape {self.param['shape']} does not match {y.size} observations")

        self.y        = y.ravel()
        self.lam      = self.param['lambda']
        self.callback = callback

        # strategies are resolved once, here
        self.oracle = get_oracle(self.param['lmo'])
        solver_cls  = get_solver(self.param['method'])
        self.inner  = solver_cls(self.y, self.param)

        self.active_set = ActiveSetStore(self.y.size, self.param['max_nb_atoms'])
        self.recorder   = HistoryRecorder(self.param['max_nb_iter'],
                                          track_pivots=solver_cls.track_pivots)
        self.x         = np.zeros(self.y.size)
        self.dual      = self.inner.initial_dual()
        self.iteration = 0
        self.status    = Status.NOT_SOLVED
        self.history   = None

    # ------------------------------------------------------------
    def _reoptimize(self) -> int:
        k = self.active_set.atom_count
        if k == 0:
            raise EmptyActiveSetError("All atoms have been thrown away", atom_count=0)

        # atoms inserted last round carry a zero coefficient: that is their warm start
        coeffs, _, dual, nb_pivot = self.inner(
            self.active_set.coeffs, self.x, self.dual, self.active_set, self.param)
        coeffs = np.asarray(coeffs, dtype=float).ravel()
        if coeffs.size != k:
            raise InvariantViolationError(
                f"Inner solver returned {coeffs.size} coefficients for {k} atoms", atom_count=k)

        # hard threshold small negative values (numerical noise)
        self.active_set.set_coefficients(np.maximum(coeffs, 0.0))
        self.active_set.prune()
        self.x    = self.active_set.reconstruct()
        self.dual = dual
        return int(nb_pivot or 0)

    def _check_atom(self, z, maxval, atom):
        if atom.shape != z.shape:
            raise OracleError(f"Oracle returned an atom with {atom.size} entries, expected {z.size}",
                              atom_count=self.active_set.atom_count)
        corr = float(atom @ z)
        if not np.isfinite(maxval) or maxval < 0:
            raise OracleError(f"Oracle returned an invalid maximal correlation {maxval}",
                              atom_count=self.active_set.atom_count)
        if abs(corr - maxval) > ORACLE_RTOL * max(1.0, abs(maxval)):
            raise OracleError(f"New atom wrong: correlation {corr} differs from reported {maxval}",
                              atom_count=self.active_set.atom_count)

    def _dual_gap(self, g, maxval, tau) -> float:
        c = 1.0 if maxval <= self.lam else self.lam / maxval
        dg = 0.5 * (1 - c) ** 2 * (g @ g) + self.lam * tau + c * (g @ self.x)
        return float(max(dg, 0.0))

    def _step(self, nb_pivot, start) -> IterationRecord:
        g    = self.x - self.y
        tau  = self.active_set.tau
        loss = 0.5 * float(g @ g)
        pen  = self.lam * tau
        active_var = int(np.sum(self.active_set.coeffs > 0))

        # new atom
        z = -g
        maxval, atom = self.oracle(z, self.param)
        maxval = float(maxval)
        atom   = np.asarray(atom, dtype=float).ravel()
        self._check_atom(z, maxval, atom)

        atom_added = maxval > self.lam * (1 + ATOM_RTOL)
        if atom_added:
            self.active_set.insert(atom)
        else:
            logger.debug("Iteration %d: no atom above lambda (maxval=%.3e)", self.iteration, maxval)

        dg = self._dual_gap(g, maxval, tau)
        return IterationRecord(
            iteration=self.iteration,
            obj=loss + pen,
            loss=loss,
            pen=pen,
            dg=dg,
            tt=time.perf_counter() - start,
            nb_pivot=nb_pivot,
            active_var=active_var,
            maxval=maxval,
            atom_added=atom_added,
            atom_count=self.active_set.atom_count,
        )

    # ------------------------------------------------------------
    def run(self):
        """
        Run the outer loop. Returns (x, active_set, history, iterations),
        with x shaped like the observation.
        """
        p = self.param
        start  = time.perf_counter()
        status = Status.MAX_ITER_REACHED
        error  = None
        current = 1

        bar = trange(p['max_nb_iter'], desc='CG', disable=not p['verbose'])
        try:
            for _ in bar:
                current = self.iteration + 1
                nb_pivot = self._reoptimize() if self.iteration > 0 else 0
                self.iteration += 1

                record = self._step(nb_pivot, start)
                self.recorder.record(self.iteration, record)
                bar.set_postfix(dg=f"{record.dg:.2e}", atoms=record.atom_count)

                keep_going = self.callback is None or self.callback(self, record) is not False
                if record.dg <= p['epsStop']:
                    status = Status.CONVERGED
                    logger.info("Terminating successfully with small duality gap %.3e after %d iterations",
                                record.dg, self.iteration)
                    break
                if not keep_going:
                    status = Status.INTERRUPTED
                    logger.info("Stopped by callback after %d iterations", self.iteration)
                    break
                if p['max_time'] > 0 and record.tt >= p['max_time']:
                    status = Status.TIME_LIMIT_REACHED
                    logger.info("Time limit of %.1fs reached after %d iterations", p['max_time'], self.iteration)
                    break
            else:
                logger.info("Max number of iterations (%d) reached, duality gap %.3e",
                            p['max_nb_iter'], self.recorder.dg[self.recorder.last - 1])
        except InvariantViolationError as err:
            if err.iteration is None:
                err.iteration = current
            if err.atom_count is None:
                err.atom_count = self.active_set.atom_count
            if p['raise_on_error']:
                raise
            logger.error("Column generation failed: %s", err)
            status = Status.FAILED
            error  = err
        finally:
            bar.close()

        self.status  = status
        self.history = self.recorder.finalize(self.recorder.last, status=status, error=error)
        return self.x.reshape(self.y_shape), self.active_set, self.history, self.iteration


def solve(y, params: dict, callback=None):
    """
    Estimate a sparse and low-rank matrix from the observation y.

    Returns (x, active_set, history, iterations); history.status tells
    CONVERGED apart from MAX_ITER_REACHED and the other stopping reasons.
    """
    return ColumnGeneration(y, params, callback=callback).run()
