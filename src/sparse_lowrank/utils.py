# utils.py

import math

import numpy as np

from .errors import ConfigurationError

DEFAULTS = {
    'max_nb_iter':    500,
    'max_nb_atoms':   500,
    'epsStop':        1e-5,
    'method':         'asqp',
    'lmo':            'l1_trace',
    'ws':             False,
    'max_time':       0.0,
    'verbose':        False,
    'raise_on_error': True,
    'inner_epsilon':  1e-10,
    'svd':            'svds',
}


def _positive(params, key):
    if key not in params:
        raise ConfigurationError(f"Missing required parameter '{key}'")
    value = params[key]
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Parameter '{key}' must be a number, got {value!r}") from None
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"Parameter '{key}' must be positive and finite, got {value}")
    return value


def check_params(params: dict, shape=None) -> dict:
    """
    Validate a parameter dict and fill in defaults.

    Returns a new dict; the caller's dict is left untouched. Keys this
    function does not know about are kept so that custom oracles and inner
    solvers can read their own settings.
    """
    if params is None:
        raise ConfigurationError("Parameters are required ('lambda' and 'mu' at least)")
    param = dict(DEFAULTS)
    param.update(params)

    param['lambda'] = _positive(param, 'lambda')
    param['mu']     = _positive(param, 'mu')

    for key in ('max_nb_iter', 'max_nb_atoms'):
        value = param[key]
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
            raise ConfigurationError(f"Parameter '{key}' must be an integer >= 1, got {value!r}")
        param[key] = int(value)

    for key in ('epsStop', 'max_time', 'inner_epsilon'):
        value = float(param[key])
        if not value >= 0:
            raise ConfigurationError(f"Parameter '{key}' must be >= 0, got {param[key]!r}")
        param[key] = value

    # warm starting lets the inner solver run longer
    if 'inner_max_iter' not in param:
        param['inner_max_iter'] = 1000 if param['ws'] else 100
    if int(param['inner_max_iter']) < 1:
        raise ConfigurationError(f"Parameter 'inner_max_iter' must be >= 1, got {param['inner_max_iter']!r}")
    param['inner_max_iter'] = int(param['inner_max_iter'])

    if param['svd'] not in ('svds', 'dense'):
        raise ConfigurationError(f"Unknown svd method '{param['svd']}'")

    if shape is not None:
        param['shape'] = tuple(int(s) for s in shape)
    return param


def make_synthetic(n=50, m=40, rank=3, density=0.3, noise=0.1, seed=0):
    """
    Generate a matrix that is both sparse and low rank, plus Gaussian noise.

    The factors are sparse, so their product is low rank with a sparse
    support. Returns Y (observation) and X_true.
    """
    rng = np.random.RandomState(seed)
    U = rng.randn(n, rank) * (rng.rand(n, rank) < density)
    V = rng.randn(m, rank) * (rng.rand(m, rank) < density)
    X_true = U @ V.T
    Y = X_true + noise * rng.randn(n, m)
    return Y, X_true


def nuclear_norm(X: np.ndarray) -> float:
    X = np.atleast_2d(X)
    if X.size == 0:
        return 0.0
    return float(np.linalg.svd(X, compute_uv=False).sum())


def primal_objective(x, y, lam, mu) -> float:
    """0.5*||y - x||^2 + lam*||x||_1 + mu*||x||_tr for matrices x, y."""
    x = np.atleast_2d(x)
    diff = np.asarray(y).reshape(x.shape) - x
    return float(0.5 * np.sum(diff ** 2) + lam * np.abs(x).sum() + mu * nuclear_norm(x))


def evaluate(X_true, X_pred, mask=None):
    """
    RMSE between X_pred and X_true, on the entries where mask is True
    (all entries when no mask is given).
    """
    diff = np.asarray(X_pred) - np.asarray(X_true)
    if mask is not None:
        diff = diff[mask]
    return float(np.sqrt(np.mean(diff ** 2))) if diff.size else 0.0
