"""
Tests for the column generation driver.

This module tests:
- the termination scenarios (zero input, single atom, iteration cap, pruning)
- the invariants checked at every iteration
- error handling and configuration
- convergence on synthetic sparse and low-rank instances
"""

import numpy as np
import pytest

from sparse_lowrank import (
    ActiveSetSolver,
    AtomCapacityExceededError,
    ColumnGeneration,
    ConfigurationError,
    EmptyActiveSetError,
    InvariantViolationError,
    OracleError,
    Status,
    solve,
)


# =============================================================================
# Test doubles
# =============================================================================

def first_entry_oracle(z, param):
    """Always proposes the first canonical vector, reporting ||z|| as its correlation."""
    atom = np.zeros_like(z)
    atom[0] = 1.0
    return float(np.linalg.norm(z)), atom


def lying_oracle(z, param):
    atom = np.zeros_like(z)
    atom[0] = 1.0
    return float(z[0]) + 1.0, atom


class ScriptedSolver(ActiveSetSolver):
    """Returns fixed coefficients depending on the number of active atoms."""

    track_pivots = True
    script = {1: [2.0], 2: [-0.5, 1.5]}

    def __call__(self, coeffs, x, dual, active_set, param):
        c = np.array(self.script[active_set.atom_count], dtype=float)
        x = active_set.atoms @ c
        return c, x, self.y - x, 1


class GrowingSolver(ActiveSetSolver):
    """Returns one coefficient too many."""

    def __call__(self, coeffs, x, dual, active_set, param):
        c = np.ones(active_set.atom_count + 1)
        return c, x, dual, 0


# =============================================================================
# Scenarios
# =============================================================================

class TestScenarios:

    def test_zero_observation_converges_immediately(self, params):
        y = np.zeros((3, 4))
        x, active_set, hist, iterations = solve(y, params)

        assert iterations == 1
        assert hist.status is Status.CONVERGED
        assert len(hist) == 1
        assert hist.dg[0] == 0.0
        assert x.shape == (3, 4)
        np.testing.assert_array_equal(x, np.zeros((3, 4)))
        assert active_set.atom_count == 0

    def test_single_atom_sufficient(self):
        y = np.array([[3.0, 0.0], [0.0, 0.0]])
        params = {'lambda': 1.0, 'mu': 1.0, 'lmo': first_entry_oracle}
        x, active_set, hist, iterations = solve(y, params)

        assert hist.status is Status.CONVERGED
        assert iterations == 2
        assert active_set.atom_count == 1
        np.testing.assert_allclose(active_set.coeffs, [2.0])
        np.testing.assert_allclose(x, [[2.0, 0.0], [0.0, 0.0]])
        assert hist.dg[-1] == pytest.approx(0.0, abs=1e-12)
        assert hist.dg[0] == pytest.approx(0.5 * (1 - 1 / 3.0) ** 2 * 9.0)

    def test_iteration_cap(self, params, rng):
        y = rng.randn(5, 4)
        x, active_set, hist, iterations = solve(y, dict(params, max_nb_iter=1))

        assert iterations == 1
        assert hist.status is Status.MAX_ITER_REACHED
        assert not hist.converged
        assert len(hist) == 1
        assert hist.dg[0] > params.get('epsStop', 1e-5)

    def test_pruning_keeps_nonnegative_atom(self):
        # l1 oracle on y picks e0 first (3 > 2), then e1
        y = np.array([[3.0, 2.0], [0.0, 0.0]])
        params = {'lambda': 1.0, 'mu': 1.0, 'lmo': 'l1', 'method': ScriptedSolver}
        seen = []

        def stop_at_third(driver, record):
            seen.append((record.iteration, record.active_var,
                         driver.active_set.atoms[:, 0].copy(),
                         driver.active_set.coeffs[0] if driver.active_set.atom_count else None,
                         driver.x.copy()))
            return record.iteration < 3

        _, _, hist, iterations = solve(y, params, callback=stop_at_third)

        assert iterations == 3
        assert hist.status is Status.INTERRUPTED
        assert [s[1] for s in seen] == [0, 1, 1]
        _, _, first_atom, coeff, x = seen[-1]
        np.testing.assert_array_equal(first_atom, [0.0, 1.0, 0.0, 0.0])
        assert coeff == 1.5
        np.testing.assert_allclose(x, [0.0, 1.5, 0.0, 0.0])


# =============================================================================
# Invariants along a run
# =============================================================================

@pytest.mark.parametrize("method", ['asqp', 'bcd'])
@pytest.mark.parametrize("lmo", ['l1', 'l1_trace'])
def test_invariants_hold_every_iteration(synthetic, method, lmo):
    Y, _ = synthetic
    params = {'lambda': 0.3, 'mu': 0.6, 'method': method, 'lmo': lmo,
              'max_nb_iter': 40, 'max_nb_atoms': 60}
    checks = []

    def check(driver, record):
        store = driver.active_set
        checks.append(record.iteration)
        assert store.atom_count <= 60
        assert len(store.coeffs) == store.atom_count
        assert np.all(store.coeffs >= 0)
        np.testing.assert_allclose(store.reconstruct(), driver.x, atol=1e-10)
        np.testing.assert_allclose(store.gram, store.atoms.T @ store.atoms, atol=1e-10)
        assert record.dg >= 0

    _, _, hist, iterations = solve(Y, params, callback=check)

    assert checks == list(range(1, iterations + 1))
    assert len(hist) == iterations
    assert np.all(hist.dg >= 0)
    assert np.all(np.diff(hist.tt) >= 0)
    if method == 'asqp':
        assert len(hist.nb_pivot) == iterations
        assert hist.active_var[0] == 0
    else:
        assert hist.nb_pivot is None


# =============================================================================
# Convergence
# =============================================================================

class TestConvergence:

    def test_lasso_atoms_match_soft_thresholding(self, rng):
        y = rng.randn(6, 5)
        x, _, hist, _ = solve(y, {'lambda': 0.7, 'mu': 1.0, 'lmo': 'l1'})

        assert hist.status is Status.CONVERGED
        expected = np.sign(y) * np.maximum(np.abs(y) - 0.7, 0.0)
        np.testing.assert_allclose(x, expected, atol=1e-6)

    def test_rank_one_observation(self, rank_one):
        y, u, v = rank_one
        x, active_set, hist, iterations = solve(y, {'lambda': 1.0, 'mu': 0.5})

        assert hist.status is Status.CONVERGED
        assert iterations == 2
        assert active_set.atom_count == 1
        np.testing.assert_allclose(x, 4.5 * np.outer(u, v), atol=1e-8)

    @pytest.mark.parametrize("method", ['asqp', 'bcd'])
    def test_solvers_agree(self, rng, method):
        y = rng.randn(6, 5)
        x, _, hist, _ = solve(y, {'lambda': 0.7, 'mu': 1.0, 'lmo': 'l1', 'method': method, 'ws': True})
        assert hist.converged
        expected = np.sign(y) * np.maximum(np.abs(y) - 0.7, 0.0)
        np.testing.assert_allclose(x, expected, atol=1e-5)

    @pytest.mark.parametrize("method", ['asqp', 'bcd'])
    def test_column_vector_with_redundant_atoms(self, method):
        # in a 5x1 matrix every rank-one atom is a combination of the sparse ones
        y = np.random.RandomState(0).randn(5, 1) * 3
        params = {'lambda': 0.3, 'mu': 0.5, 'method': method, 'max_nb_atoms': 40}
        x, active_set, hist, _ = solve(y, params)

        assert hist.status is Status.CONVERGED
        assert hist.dg[-1] <= 1e-5
        assert active_set.atom_count <= y.size + 1
        np.testing.assert_allclose(x.ravel(), active_set.reconstruct(), atol=1e-12)

    @pytest.mark.slow
    def test_sparse_low_rank_synthetic(self, synthetic):
        Y, X_true = synthetic
        params = {'lambda': 0.2, 'mu': 0.4, 'epsStop': 1e-3, 'ws': True}
        x, active_set, hist, _ = solve(Y, params)

        assert hist.status is Status.CONVERGED
        assert hist.dg[-1] <= 1e-3
        assert hist.obj[-1] < hist.obj[0]
        assert np.all(hist.dg >= 0)
        assert active_set.atom_count <= params.get('max_nb_atoms', 500)

    def test_vector_observation_with_shape(self, rank_one):
        y, u, v = rank_one
        x, _, hist, _ = solve(y.ravel(), {'lambda': 1.0, 'mu': 0.5, 'shape': y.shape})
        assert x.shape == (y.size,)
        np.testing.assert_allclose(x, 4.5 * np.outer(u, v).ravel(), atol=1e-8)


# =============================================================================
# Stopping rules and errors
# =============================================================================

class TestStoppingAndErrors:

    def test_time_limit(self, params, rng):
        y = rng.randn(4, 4)
        _, _, hist, iterations = solve(y, dict(params, max_time=1e-12))
        assert hist.status is Status.TIME_LIMIT_REACHED
        assert iterations == 1

    def test_capacity_exceeded_is_fatal(self):
        y = np.array([[3.0, 2.0], [0.0, 0.0]])
        params = {'lambda': 1.0, 'mu': 1.0, 'lmo': 'l1', 'max_nb_atoms': 1}
        with pytest.raises(AtomCapacityExceededError) as excinfo:
            solve(y, params)
        assert excinfo.value.iteration == 2
        assert excinfo.value.atom_count == 1
        assert 'iteration=2' in str(excinfo.value)

    def test_failure_status_when_not_raising(self):
        y = np.array([[3.0, 2.0], [0.0, 0.0]])
        params = {'lambda': 1.0, 'mu': 1.0, 'lmo': 'l1', 'max_nb_atoms': 1,
                  'raise_on_error': False}
        x, active_set, hist, iterations = solve(y, params)

        assert hist.status is Status.FAILED
        assert isinstance(hist.error, AtomCapacityExceededError)
        assert iterations == 2
        assert len(hist) == 1
        np.testing.assert_allclose(x, [[2.0, 0.0], [0.0, 0.0]])
        np.testing.assert_allclose(active_set.reconstruct(), x.ravel())

    def test_oracle_postcondition(self, params):
        y = np.array([[1.0, 2.0]])
        with pytest.raises(OracleError) as excinfo:
            solve(y, dict(params, lmo=lying_oracle))
        assert excinfo.value.iteration == 1

    def test_empty_active_set_on_reoptimization(self, params):
        driver = ColumnGeneration(np.ones((2, 2)), params)
        with pytest.raises(EmptyActiveSetError):
            driver._reoptimize()

    def test_inner_solver_must_keep_atom_count(self, params):
        y = np.array([[3.0, 0.0]])
        with pytest.raises(InvariantViolationError) as excinfo:
            solve(y, dict(params, lmo='l1', method=GrowingSolver))
        assert 'coefficients' in str(excinfo.value)

    @pytest.mark.parametrize("bad", [
        {'method': 'simplex'},
        {'lmo': 'group_lasso'},
        {'max_nb_iter': 0},
        {'shape': (3, 3)},
    ])
    def test_configuration_errors(self, params, bad):
        with pytest.raises(ConfigurationError):
            ColumnGeneration(np.zeros(4), dict(params, **bad))

    def test_three_dimensional_observation(self, params):
        with pytest.raises(ConfigurationError):
            ColumnGeneration(np.zeros((2, 2, 2)), params)

    def test_callback_called_once_per_iteration(self, params, synthetic):
        Y, _ = synthetic
        calls = []
        _, _, _, iterations = solve(Y, dict(params, max_nb_iter=5),
                                    callback=lambda driver, record: calls.append(record.iteration))
        assert calls == list(range(1, iterations + 1))

    def test_driver_state_after_run(self, params):
        driver = ColumnGeneration(np.zeros((2, 3)), params)
        assert driver.status is Status.NOT_SOLVED
        driver.run()
        assert driver.status is Status.CONVERGED
        assert driver.history.converged
