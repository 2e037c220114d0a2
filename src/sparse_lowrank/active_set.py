# active_set.py

import numpy as np
from scipy.linalg import lstsq

from .errors import AtomCapacityExceededError, ConfigurationError, EmptyActiveSetError


# ----------------------------------------------------------------
# Fixed-capacity store for atoms, coefficients and their Gram matrix
# ----------------------------------------------------------------
class ActiveSetStore:
    """
    Arena holding the active atoms as columns of a preallocated
    (dim, capacity) buffer, with the cached Gram matrix H = A^T A.

    Only the leading `atom_count` columns (and the leading
    atom_count x atom_count block of H) are valid. The buffers are never
    reallocated: insert appends a column, compact shifts the kept columns
    to the front.
    """

    def __init__(self, dim: int, capacity: int):
        self.dim        = int(dim)
        self.capacity   = int(capacity)
        self._atoms     = np.zeros((self.dim, self.capacity))
        self._gram      = np.zeros((self.capacity, self.capacity))
        self.coeffs     = np.zeros(0)
        self.atom_count = 0

    def __len__(self):
        return self.atom_count

    def __repr__(self):
        return f"ActiveSetStore(atom_count={self.atom_count}, capacity={self.capacity}, dim={self.dim})"

    @property
    def atoms(self) -> np.ndarray:
        return self._atoms[:, :self.atom_count]

    @property
    def gram(self) -> np.ndarray:
        k = self.atom_count
        return self._gram[:k, :k]

    def insert(self, atom, coefficient: float = 0.0) -> int:
        """
        Append `atom` as the next column and return its index.

        The new atom enters with `coefficient` (zero by default), which is
        the warm start the next re-optimization receives for it; with a zero
        coefficient the reconstructed iterate is unchanged.
        """
        k = self.atom_count
        if k >= self.capacity:
            raise AtomCapacityExceededError(
                f"Cannot insert atom: active set capacity {self.capacity} reached",
                atom_count=k)
        atom = np.asarray(atom, dtype=float).ravel()
        if atom.shape != (self.dim,):
            raise ValueError(f"Atom has {atom.size} entries, expected {self.dim}")

        cross = self._atoms[:, :k].T @ atom
        self._atoms[:, k] = atom
        self._gram[k, :k] = cross
        self._gram[:k, k] = cross
        self._gram[k, k]  = atom @ atom
        self.coeffs = np.append(self.coeffs, float(coefficient))
        self.atom_count = k + 1
        return k

    def compact(self, keep_mask, require_nonempty: bool = False) -> np.ndarray:
        """
        Drop the atoms whose mask entry is False, keeping the order of the
        others. Returns the indices (before compaction) of the kept atoms.
        """
        k = self.atom_count
        keep_mask = np.asarray(keep_mask, dtype=bool).ravel()
        if keep_mask.shape != (k,):
            raise ValueError(f"keep_mask has {keep_mask.size} entries, expected {k}")
        keep = np.flatnonzero(keep_mask)
        kk = keep.size
        if kk == 0 and require_nonempty:
            raise EmptyActiveSetError("All atoms have been thrown away", atom_count=k)
        if kk == k:
            return keep

        self._atoms[:, :kk] = self._atoms[:, keep]
        self._atoms[:, kk:k] = 0.0
        self._gram[:kk, :kk] = self._gram[np.ix_(keep, keep)]
        self._gram[kk:k, :k] = 0.0
        self._gram[:k, kk:k] = 0.0
        self.coeffs = self.coeffs[keep]
        self.atom_count = kk
        return keep

    def prune(self, tol: float = 0.0) -> np.ndarray:
        """Drop atoms whose coefficient is <= tol."""
        return self.compact(self.coeffs > tol)

    def set_coefficients(self, coeffs) -> None:
        coeffs = np.asarray(coeffs, dtype=float).ravel()
        if coeffs.shape != (self.atom_count,):
            raise ValueError(f"Got {coeffs.size} coefficients for {self.atom_count} atoms")
        self.coeffs = coeffs.copy()

    def reconstruct(self) -> np.ndarray:
        """x = atoms[:, :atom_count] @ coeffs"""
        if self.atom_count == 0:
            return np.zeros(self.dim)
        return self.atoms @ self.coeffs

    @property
    def tau(self) -> float:
        return float(np.sum(self.coeffs))


# ----------------------------------------------------------------
# Inner solvers: re-optimize the coefficients over the active set
# ----------------------------------------------------------------
class ActiveSetSolver:
    """
    Solve  min_{c >= 0} 0.5*||y - A c||^2 + lambda*sum(c)  over the atoms A
    of the active set, warm-started from the previous coefficients.

    Calling the solver returns (coeffs, x, dual, nb_pivot); `dual` is the
    residual y - x at the returned coefficients. The atom count is never
    changed, and tiny negative coefficients are left for the caller to clip.
    """

    name = None
    track_pivots = False

    def __init__(self, y: np.ndarray, param: dict):
        self.y        = np.asarray(y, dtype=float).ravel()
        self.lam      = param['lambda']
        self.epsilon  = param['inner_epsilon']
        self.max_iter = param['inner_max_iter']

    def initial_dual(self) -> np.ndarray:
        """Dual state at x = 0."""
        return self.y.copy()

    def _finish(self, coeffs, active_set):
        x = active_set.atoms @ coeffs
        return coeffs, x, self.y - x, None

    def __call__(self, coeffs, x, dual, active_set, param):
        raise NotImplementedError


def _descend_on_support(H, q, c, passive, epsilon, tol):
    """
    Move c towards the minimizer of 0.5 c'Hc + q'c restricted to the
    passive set, blocking coordinates that reach zero on the way.

    When H[P, P] is singular and -q[P] is outside its range, the objective
    decreases without bound along the least-squares residual (which lies in
    the null space of H[P, P]), so c slides along it until a coordinate
    hits zero. Returns (c, passive, nb_pivot).
    """
    k = q.size
    c = np.where(passive, c, 0.0)
    nb_pivot = 0
    while passive.any():
        idx = np.flatnonzero(passive)
        H_pp = H[np.ix_(idx, idx)]
        z_p = lstsq(H_pp, -q[idx])[0]
        residual = H_pp @ z_p + q[idx]

        if np.linalg.norm(residual) > tol and np.any(residual > 0):
            # null-space descent direction
            direction = np.zeros(k)
            direction[idx] = -residual
            neg = idx[direction[idx] < 0]
            ratios = c[neg] / -direction[neg]
        else:
            z = np.zeros(k)
            z[idx] = z_p
            if np.all(z_p > epsilon):
                return z, passive, nb_pivot
            direction = z - c
            neg = idx[z_p <= epsilon]
            ratios = c[neg] / np.maximum(c[neg] - z[neg], np.finfo(float).tiny)

        block = neg[np.argmin(ratios)]
        c = c + ratios.min() * direction
        passive[block] = False
        passive &= c > epsilon
        c[~passive] = 0.0
        nb_pivot += 1
    return c, passive, nb_pivot


def _kkt_violation(grad, c):
    """Largest violation of the optimality conditions of a nonnegative QP."""
    if grad.size == 0:
        return 0.0
    violation = np.maximum(-grad, 0.0)
    support = c > 0
    violation[support] = np.abs(grad[support])
    return float(violation.max())


class ASQPSolver(ActiveSetSolver):
    """
    Primal active-set QP (Lawson-Hanson style).

    Coefficients outside the passive set are held at zero; each pivot either
    frees the coordinate with the most negative gradient or blocks one that
    hit zero while moving towards the minimizer on the passive set. Linearly
    dependent atoms are handled by stepping along the null space of the
    passive Gram block.
    """

    name = 'asqp'
    track_pivots = True

    def __call__(self, coeffs, x, dual, active_set, param):
        H = active_set.gram
        q = self.lam - active_set.atoms.T @ self.y   # gradient at c = 0
        k = q.size
        tol = self.epsilon * max(1.0, float(np.max(np.abs(q), initial=0.0)))

        c = np.array(coeffs, dtype=float).ravel()
        passive = c > self.epsilon
        c[~passive] = 0.0
        nb_pivot = 0

        for _ in range(self.max_iter):
            c, passive, pivots = _descend_on_support(H, q, c, passive, self.epsilon, tol)
            nb_pivot += pivots

            if k == 0:
                break
            w = -(H @ c + q)
            w[passive] = -np.inf
            j = int(np.argmax(w))
            if w[j] <= tol:
                break
            passive[j] = True
            nb_pivot += 1

        c, x, dual, _ = self._finish(c, active_set)
        return c, x, dual, nb_pivot


class BlockCoordinateSolver(ActiveSetSolver):
    """
    Cyclic projected coordinate descent on the coefficients, using the Gram cache.

    Every few sweeps the support found so far is solved exactly, which
    removes the small weights coordinate descent leaves on redundant atoms.
    """

    name = 'bcd'
    refine_every = 10

    def __call__(self, coeffs, x, dual, active_set, param):
        H = active_set.gram
        q = self.lam - active_set.atoms.T @ self.y
        tol = self.epsilon * max(1.0, float(np.max(np.abs(q), initial=0.0)))
        c = np.maximum(np.array(coeffs, dtype=float).ravel(), 0.0)
        Hc = H @ c
        diag = np.diag(H)

        sweeps = 0
        for sweeps in range(1, self.max_iter + 1):
            max_change = 0.0
            for i in range(c.size):
                if diag[i] <= 0:
                    continue
                new = max(0.0, c[i] - (Hc[i] + q[i]) / diag[i])
                delta = new - c[i]
                if delta != 0.0:
                    Hc += delta * H[:, i]
                    c[i] = new
                    max_change = max(max_change, abs(delta))

            if max_change <= self.epsilon or sweeps % self.refine_every == 0:
                c, _, _ = _descend_on_support(H, q, c, c > self.epsilon, self.epsilon, tol)
                Hc = H @ c
                if _kkt_violation(Hc + q, c) <= tol:
                    break

        c, x, dual, _ = self._finish(c, active_set)
        return c, x, dual, sweeps


SOLVERS = {
    'asqp': ASQPSolver,
    'bcd':  BlockCoordinateSolver,
}


def get_solver(method):
    """Resolve an inner solver class by registry name; ActiveSetSolver subclasses pass through."""
    if isinstance(method, type) and issubclass(method, ActiveSetSolver):
        return method
    if isinstance(method, str) and method in SOLVERS:
        return SOLVERS[method]
    raise ConfigurationError(f"Unknown method '{method}' (known: {', '.join(sorted(SOLVERS))})")
