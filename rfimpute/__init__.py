# rfimpute - chained Random-Forest imputation of mixed-type tables
# recursive passages, replicable multiple imputations, arbitrary per-column learners

from .exceptions import (
    ConfigurationError,
    FitStateError,
    ImputationError,
    ShapeMismatchError,
    TrainingDataExhaustedError,
    TypeCoercionError,
)
from .imputer import (
    GeneralImputer,
    GeneralImputerConfig,
    ImputationInfo,
    ImputerConfig,
    RFImputer,
    RFImputerConfig,
)
from .schema import ColumnKind

__version__ = "0.1.0"
__all__ = [
    "RFImputer",
    "RFImputerConfig",
    "GeneralImputer",
    "GeneralImputerConfig",
    "ImputerConfig",
    "ImputationInfo",
    "ColumnKind",
    "ImputationError",
    "ConfigurationError",
    "FitStateError",
    "ShapeMismatchError",
    "TypeCoercionError",
    "TrainingDataExhaustedError",
]
