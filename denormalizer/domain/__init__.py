"""Domain primitives for change propagation.

This module contains the value types the rest of the worker is written
against:

- ChangeEvent: One observed mutation on a watched collection
- OperationType: Closed set of mutation kinds (insert, update, delete)
- Exceptions for configuration, connectivity and resume failures
"""

from .change import ChangeEvent, OperationType
from .exceptions import (
    ConfigurationError,
    DenormalizerError,
    MissingDocumentImageError,
    ResumePositionError,
    SourceUnavailableError,
    StreamStartupError,
)

__all__ = [
    "ChangeEvent",
    "OperationType",
    "ConfigurationError",
    "DenormalizerError",
    "MissingDocumentImageError",
    "ResumePositionError",
    "SourceUnavailableError",
    "StreamStartupError",
]
