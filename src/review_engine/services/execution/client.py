"""Code execution service clients."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from review_engine.core.config import ExecutionConfig
from review_engine.core.errors import ExecutionError

from .outputs import normalize_output

logger = structlog.get_logger()

TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class TestCase:
    __test__ = False

    input: str
    expected_output: str | None = None


@dataclass(frozen=True)
class TestResult:
    """Outcome of running code against one test case."""

    __test__ = False

    passed: bool
    actual_output: str | None = None
    stderr: str = ""
    exit_code: int = 0

    @property
    def timed_out(self) -> bool:
        return self.exit_code == TIMEOUT_EXIT_CODE


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one batch; ``test_results`` follows the order of the test cases."""

    is_compiled: bool
    test_results: list[TestResult] = field(default_factory=list)
    compile_error: str | None = None


class ExecutionClient(ABC):
    """Abstract base class for async code execution clients."""

    @abstractmethod
    async def execute(
        self,
        code: str,
        language: str,
        test_cases: Sequence[TestCase],
    ) -> ExecutionResult:
        """Compile ``code`` and run it against every test case.

        Args:
            code: Program source.
            language: Language identifier (cpp, python, java, javascript).
            test_cases: Inputs, with the expected outputs when known.

        Returns:
            ExecutionResult with one TestResult per test case.

        Raises:
            ExecutionError: When the service itself fails.
        """

    async def close(self) -> None:  # noqa: B027
        """Close any resources. Override if needed."""


Program = Callable[[str], "str | tuple[str, int]"]


def _echo(test_input: str) -> str:
    return test_input


class FakeExecutionClient(ExecutionClient):
    """In-process execution client for tests and dry runs.

    ``programs`` maps source text to a Python callable taking the raw input
    and returning the output, or ``(output, exit_code)``. A callable that
    raises counts as a runtime error. Unknown sources echo their input.
    """

    def __init__(
        self,
        programs: dict[str, Program] | None = None,
        uncompilable: Sequence[str] = (),
        unavailable: Sequence[str] = (),
    ) -> None:
        self.programs = dict(programs or {})
        self.uncompilable = set(uncompilable)
        self.unavailable = set(unavailable)
        self.calls: list[tuple[str, str, list[TestCase]]] = []

    async def execute(
        self,
        code: str,
        language: str,
        test_cases: Sequence[TestCase],
    ) -> ExecutionResult:
        self.calls.append((code, language, list(test_cases)))
        if code in self.unavailable:
            msg = "Execution service unavailable"
            raise ExecutionError(msg)
        if code in self.uncompilable:
            return ExecutionResult(is_compiled=False, compile_error="compilation failed")

        program = self.programs.get(code, _echo)
        results = []
        for case in test_cases:
            try:
                produced = program(case.input)
            except Exception as e:
                results.append(TestResult(passed=False, stderr=str(e), exit_code=1))
                continue
            output, exit_code = produced if isinstance(produced, tuple) else (produced, 0)
            passed = exit_code == 0 and (
                case.expected_output is None
                or normalize_output(output) == normalize_output(case.expected_output)
            )
            results.append(TestResult(passed=passed, actual_output=output, exit_code=exit_code))
        return ExecutionResult(is_compiled=True, test_results=results)


class HttpExecutionClient(ExecutionClient):
    """Client for an HTTP code execution service.

    The service accepts ``POST {base_url}/execute`` with the code, language
    and test cases, and answers with ``is_compiled`` and one result per test
    case. HTTP status errors are retried with exponential backoff.
    """

    def __init__(self, config: ExecutionConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        headers = {"Content-Type": "application/json"}
        api_key = config.get_api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_seconds, headers=headers
        )

    async def execute(
        self,
        code: str,
        language: str,
        test_cases: Sequence[TestCase],
    ) -> ExecutionResult:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.max_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(httpx.HTTPStatusError),
                reraise=True,
            ):
                with attempt:
                    return await self._call_api(code, language, test_cases)
        except httpx.HTTPError as e:
            msg = f"Code execution request failed: {e}"
            raise ExecutionError(msg, "Check that the execution service is reachable.") from e
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Malformed response from the execution service: {e}"
            raise ExecutionError(msg) from e
        msg = "Code execution was not attempted"
        raise ExecutionError(msg)

    async def _call_api(
        self,
        code: str,
        language: str,
        test_cases: Sequence[TestCase],
    ) -> ExecutionResult:
        logger.info("execution_call", language=language, test_cases=len(test_cases))
        response = await self.client.post(
            "/execute",
            json={
                "code": code,
                "language": language,
                "test_cases": [
                    {"input": case.input, "expected_output": case.expected_output}
                    for case in test_cases
                ],
            },
        )
        response.raise_for_status()

        data = response.json()
        results = [
            TestResult(
                passed=bool(item.get("passed", False)),
                actual_output=_as_text(item.get("actual_output")),
                stderr=item.get("stderr") or "",
                exit_code=int(item.get("exit_code") or 0),
            )
            for item in data.get("test_results", [])
        ]
        logger.debug("execution_response", compiled=data["is_compiled"], results=len(results))
        return ExecutionResult(
            is_compiled=bool(data["is_compiled"]),
            test_results=results,
            compile_error=data.get("compile_error"),
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()


def _as_text(value: object) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


def create_execution_client(
    config: ExecutionConfig | None = None,
    dry_run: bool = False,
) -> ExecutionClient:
    """Create the execution client for the given settings.

    Args:
        config: Execution service settings.
        dry_run: Use the in-process fake instead of the HTTP service.

    Returns:
        ExecutionClient instance.
    """
    if dry_run:
        logger.info("using_fake_execution_client")
        return FakeExecutionClient()
    return HttpExecutionClient(config or ExecutionConfig())
