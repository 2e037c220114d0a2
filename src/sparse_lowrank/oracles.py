# oracles.py
"""
Atom oracles (linear minimization oracles).

An oracle takes the negative gradient `z` of the loss, as a vector of
length n*m, and the parameter dict, and returns `(maxval, atom)` where
`atom` maximizes `<z, atom>` over the atoms of the penalty and
`maxval == <z, atom>`.

Atoms are scaled so that each one costs `lambda` per unit of coefficient:
sparse atoms are signed canonical vectors (cost lambda*||.||_1) and
low-rank atoms are (lambda/mu) * u v^T (cost mu*||.||_tr). The driver's
penalty bookkeeping `lambda * sum(coeffs)` relies on this.
"""

import logging

import numpy as np
from scipy.sparse.linalg import ArpackError, ArpackNoConvergence, svds

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _dense_top_pair(Z):
    u, s, vt = np.linalg.svd(Z, full_matrices=False)
    return u[:, 0], float(s[0]), vt[0, :]


def top_singular_pair(Z: np.ndarray, method='svds'):
    """Return (u, sigma, v) with Z v = sigma u for the largest singular value."""
    if method not in ('svds', 'dense'):
        raise ConfigurationError(f"Unknown svd method '{method}'")
    # ARPACK needs k < min(Z.shape); tiny or all-zero matrices go dense
    if method == 'dense' or min(Z.shape) < 2 or not np.any(Z):
        return _dense_top_pair(Z)
    try:
        u, s, vt = svds(Z, k=1)
    except (ArpackNoConvergence, ArpackError) as err:
        logger.warning("svds failed on a %dx%d matrix (%s), using the dense SVD", *Z.shape, err)
        return _dense_top_pair(Z)
    return u[:, 0], float(s[0]), vt[0, :]


def _shape(z, param):
    shape = param.get('shape')
    if shape is None:
        return (z.size, 1)
    return tuple(shape)


# ----------------------------------------------------------------
# Oracles
# ----------------------------------------------------------------
def l1_oracle(z: np.ndarray, param: dict):
    """Best signed canonical vector: the L1 ball's vertex along z."""
    z = np.asarray(z, dtype=float).ravel()
    i = int(np.argmax(np.abs(z)))
    atom = np.zeros_like(z)
    atom[i] = 1.0 if z[i] >= 0 else -1.0
    return float(abs(z[i])), atom


def trace_oracle(z: np.ndarray, param: dict):
    """Best rank-one atom (lambda/mu) * u v^T of the trace-norm ball."""
    z = np.asarray(z, dtype=float).ravel()
    scale = param['lambda'] / param['mu']
    u, s, v = top_singular_pair(z.reshape(_shape(z, param)), param.get('svd', 'svds'))
    atom = scale * np.outer(u, v).ravel()
    return float(scale * s), atom


def l1_trace_oracle(z: np.ndarray, param: dict):
    """
    Oracle for the sparse plus low-rank gauge.

    The atoms are the union of the L1 atoms and the scaled rank-one atoms,
    so the maximum is the larger of the two oracles.
    """
    val_l1, atom_l1 = l1_oracle(z, param)
    val_tr, atom_tr = trace_oracle(z, param)
    if val_tr > val_l1:
        return val_tr, atom_tr
    return val_l1, atom_l1


ORACLES = {
    'l1':       l1_oracle,
    'trace':    trace_oracle,
    'l1_trace': l1_trace_oracle,
}


def get_oracle(lmo):
    """Resolve an oracle by registry name; callables are returned as is."""
    if callable(lmo):
        return lmo
    if isinstance(lmo, str) and lmo in ORACLES:
        return ORACLES[lmo]
    raise ConfigurationError(f"Unknown lmo '{lmo}' (known: {', '.join(sorted(ORACLES))})")
