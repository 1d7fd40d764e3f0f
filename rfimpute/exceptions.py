"""Exceptions raised by the imputers."""


class ImputationError(Exception):
    """Base class for imputation-related exceptions."""

    pass


class ConfigurationError(ImputationError, ValueError):
    """Raised when an imputer option name or value is not valid."""

    pass


class FitStateError(ImputationError, RuntimeError):
    """Raised when predict is called before fit, or fit is repeated."""

    pass


class ShapeMismatchError(ImputationError, ValueError):
    """Raised when a table does not match the schema seen at fit time."""

    pass


class TypeCoercionError(ImputationError, TypeError):
    """Raised when a value cannot be converted to its column's declared type."""

    def __init__(self, column, kind, value):
        self.column = column
        self.kind = kind
        self.value = value
        super().__init__(
            f"Cannot convert {value!r} ({type(value).__name__}) to the "
            f"{kind} type of column '{column}'."
        )


class TrainingDataExhaustedError(ImputationError, ValueError):
    """Raised when a column has no observed values to train a model on."""

    def __init__(self, column):
        self.column = column
        super().__init__(
            f"Column '{column}' has no observed values: cannot train a model to impute it."
        )
