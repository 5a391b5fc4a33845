"""
Error Taxonomy
==============
Every failure in the package is either a precondition check that rejects its
input or a terminal solver failure that aborts the current stage. Nothing is
retried.

Classes:
    CompositionError: Invalid term collection handed to a composite.
    NullInputError: The collection holds no usable term.
    DimensionMismatchError: Terms disagree on the size of the variable space.
    UnsupportedOperationError: A term does not provide the requested derivative.
    LinearSolveError: Factorization or back-substitution did not succeed.
    OptimizationError: The nonlinear solver terminated in the failed state.
    ConfigurationError: A required option is missing or has the wrong type.
"""


class GeomoptError(Exception):
    """Base class for all errors raised by geomopt."""


class CompositionError(GeomoptError, ValueError):
    """A composite energy or constraint was built from an invalid collection."""


class NullInputError(CompositionError):
    """The term collection is empty or contains only ``None`` entries."""


class DimensionMismatchError(CompositionError):
    """Two terms of one composite report different variable counts."""

    def __init__(self, expected: int, found: int, position: int) -> None:
        super().__init__(
            f"Term at position {position} has nx={found}, expected nx={expected}."
        )
        self.expected = expected
        self.found = found
        self.position = position


class UnsupportedOperationError(GeomoptError, NotImplementedError):
    """
    A term does not provide the requested operation.

    First-order callers never ask for it; callers that need second-order
    information must treat it as fatal.
    """

    def __init__(self, term: object, operation: str) -> None:
        super().__init__(f"{type(term).__name__} does not support '{operation}'.")
        self.term = term
        self.operation = operation


class LinearSolveError(GeomoptError, RuntimeError):
    """The sparse factorization or the solve did not report success."""


class OptimizationError(GeomoptError, RuntimeError):
    """The nonlinear optimizer ended in the failed state."""


class ConfigurationError(GeomoptError, KeyError):
    """A required option is missing, ill-typed, or names an unknown backend."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0]) if self.args else ""
