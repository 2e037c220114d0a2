# history.py

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional

import numpy as np
import pandas as pd


class Status(Enum):
    NOT_SOLVED         = auto()
    CONVERGED          = auto()   # duality gap below epsStop
    MAX_ITER_REACHED   = auto()
    TIME_LIMIT_REACHED = auto()
    INTERRUPTED        = auto()   # trace callback asked to stop
    FAILED             = auto()   # invariant violation with raise_on_error=False


FIELDS = ('obj', 'loss', 'pen', 'dg', 'tt', 'nb_pivot', 'active_var')


@dataclass
class IterationRecord:
    """Scalars recorded at the end of one outer iteration."""
    iteration:  int
    obj:        float
    loss:       float
    pen:        float
    dg:         float
    tt:         float
    nb_pivot:   int = 0
    active_var: int = 0
    maxval:     float = 0.0
    atom_added: bool = False
    atom_count: int = 0


@dataclass
class History:
    """
    Per-iteration diagnostics of a run, index i holding iteration i+1.

    `nb_pivot` and `active_var` are only tracked for the asqp inner solver
    and are None otherwise.
    """
    obj:        np.ndarray
    loss:       np.ndarray
    pen:        np.ndarray
    dg:         np.ndarray
    tt:         np.ndarray
    nb_pivot:   Optional[np.ndarray] = None
    active_var: Optional[np.ndarray] = None
    status:     Status = Status.NOT_SOLVED
    error:      Optional[Exception] = None

    def __len__(self):
        return len(self.obj)

    @property
    def converged(self) -> bool:
        return self.status is Status.CONVERGED

    def to_frame(self) -> pd.DataFrame:
        columns = {name: getattr(self, name) for name in FIELDS
                   if getattr(self, name) is not None}
        df = pd.DataFrame(columns)
        df.index = pd.RangeIndex(1, len(df) + 1, name='iteration')
        return df


class HistoryRecorder:
    """
    Preallocated, append-only storage for the history series.

    Iterations are numbered from 1. Nothing recorded is ever overwritten.
    """

    def __init__(self, max_nb_iter: int, track_pivots: bool = True):
        self.max_nb_iter  = max_nb_iter
        self.track_pivots = track_pivots
        self.obj        = np.zeros(max_nb_iter)
        self.loss       = np.zeros(max_nb_iter)
        self.pen        = np.zeros(max_nb_iter)
        self.dg         = np.zeros(max_nb_iter)
        self.tt         = np.zeros(max_nb_iter)
        self.nb_pivot   = np.zeros(max_nb_iter, dtype=int)
        self.active_var = np.zeros(max_nb_iter, dtype=int)
        self.last       = 0

    def record(self, iteration: int, fields) -> None:
        """Store `fields` (an IterationRecord or a mapping) for `iteration`."""
        if iteration != self.last + 1:
            raise ValueError(f"History is append-only: expected iteration {self.last + 1}, got {iteration}")
        if iteration > self.max_nb_iter:
            raise ValueError(f"Iteration {iteration} beyond history capacity {self.max_nb_iter}")
        if isinstance(fields, IterationRecord):
            fields = {name: getattr(fields, name) for name in FIELDS}
        i = iteration - 1
        for name in FIELDS:
            if name in fields:
                getattr(self, name)[i] = fields[name]
        self.last = iteration

    def finalize(self, actual_iterations: int, status=Status.NOT_SOLVED, error=None) -> History:
        """Truncate every series to the iterations actually run (at least one)."""
        k = min(max(1, actual_iterations), self.max_nb_iter)
        return History(
            obj=self.obj[:k].copy(),
            loss=self.loss[:k].copy(),
            pen=self.pen[:k].copy(),
            dg=self.dg[:k].copy(),
            tt=self.tt[:k].copy(),
            nb_pivot=self.nb_pivot[:k].copy() if self.track_pivots else None,
            active_var=self.active_var[:k].copy() if self.track_pivots else None,
            status=status,
            error=error,
        )
