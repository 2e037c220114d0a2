# errors.py


class SparseLowRankError(Exception):
    """Base class for every error raised by sparse_lowrank."""


class ConfigurationError(SparseLowRankError, ValueError):
    """Unknown selector or parameter out of range. Raised before the first iteration."""


class InvariantViolationError(SparseLowRankError):
    """
    Bookkeeping went wrong inside the column generation loop.

    `iteration` and `atom_count` are filled in by the driver when the error
    crosses it, so a traceback says where the run broke.
    """

    def __init__(self, message, iteration=None, atom_count=None):
        super().__init__(message)
        self.message    = message
        self.iteration  = iteration
        self.atom_count = atom_count

    def __str__(self):
        context = []
        if self.iteration is not None:
            context.append(f"iteration={self.iteration}")
        if self.atom_count is not None:
            context.append(f"atom_count={self.atom_count}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class EmptyActiveSetError(InvariantViolationError):
    pass


class AtomCapacityExceededError(InvariantViolationError):
    pass


class OracleError(InvariantViolationError):
    """The atom oracle returned an atom that does not achieve its reported value."""
