from .client import (
    TIMEOUT_EXIT_CODE,
    ExecutionClient,
    ExecutionResult,
    FakeExecutionClient,
    HttpExecutionClient,
    TestCase,
    TestResult,
    create_execution_client,
)
from .outputs import detect_language, normalize_output, parse_array

__all__ = [
    "TIMEOUT_EXIT_CODE",
    "ExecutionClient",
    "ExecutionResult",
    "FakeExecutionClient",
    "HttpExecutionClient",
    "TestCase",
    "TestResult",
    "create_execution_client",
    "detect_language",
    "normalize_output",
    "parse_array",
]
