from .active_set import (
    ActiveSetSolver,
    ActiveSetStore,
    ASQPSolver,
    BlockCoordinateSolver,
    SOLVERS,
    get_solver,
)
from .errors import (
    AtomCapacityExceededError,
    ConfigurationError,
    EmptyActiveSetError,
    InvariantViolationError,
    OracleError,
    SparseLowRankError,
)
from .history import History, HistoryRecorder, IterationRecord, Status
from .oracles import (
    ORACLES,
    get_oracle,
    l1_oracle,
    l1_trace_oracle,
    top_singular_pair,
    trace_oracle,
)
from .solvers import ColumnGeneration, solve
from .utils import check_params, evaluate, make_synthetic, nuclear_norm, primal_objective

__version__ = "0.1.0"

__all__ = [
    'ActiveSetSolver', 'ActiveSetStore', 'ASQPSolver', 'BlockCoordinateSolver',
    'SOLVERS', 'get_solver',
    'AtomCapacityExceededError', 'ConfigurationError', 'EmptyActiveSetError',
    'InvariantViolationError', 'OracleError', 'SparseLowRankError',
    'History', 'HistoryRecorder', 'IterationRecord', 'Status',
    'ORACLES', 'get_oracle', 'l1_oracle', 'l1_trace_oracle',
    'top_singular_pair', 'trace_oracle',
    'ColumnGeneration', 'solve',
    'check_params', 'evaluate', 'make_synthetic', 'nuclear_norm', 'primal_objective',
]
