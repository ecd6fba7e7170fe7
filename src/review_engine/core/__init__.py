"""Core configuration and error types for the review engine."""

from review_engine.core.config import (
    MIN_EXPECTED_REVIEWS,
    AssignmentConfig,
    EngineConfig,
    ExecutionConfig,
    FinalizationConfig,
    load_config,
)
from review_engine.core.errors import (
    ConcurrencyPendingError,
    ConfigurationError,
    ExecutionError,
    InfeasibleAssignmentError,
    NotFoundError,
    PermissionDeniedError,
    ReviewEngineError,
    StateError,
    ValidationError,
)

__all__ = [
    "MIN_EXPECTED_REVIEWS",
    "AssignmentConfig",
    "EngineConfig",
    "ExecutionConfig",
    "FinalizationConfig",
    "load_config",
    "ConcurrencyPendingError",
    "ConfigurationError",
    "ExecutionError",
    "InfeasibleAssignmentError",
    "NotFoundError",
    "PermissionDeniedError",
    "ReviewEngineError",
    "StateError",
    "ValidationError",
]
