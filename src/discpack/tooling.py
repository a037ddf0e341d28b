"""Running external command-line tools and the refresh-then-retry policy."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Pattern, Protocol, Sequence, TypeVar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolOutput:
    """Captured output of a successful tool invocation."""

    stdout: str
    stderr: str


class ToolExecutionError(RuntimeError):
    """Raised when a tool exits non-zero, times out or cannot be started."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        stderr: str = "",
        returncode: int | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.command = tuple(command)
        self.stderr = stderr
        self.returncode = returncode
        self.timed_out = timed_out

    def diagnostic(self) -> str:
        """Return the message plus the tool's trimmed diagnostic output."""

        details = self.stderr.strip()
        if not details:
            return str(self)
        return f"{self}\nDetails: {details[-2000:]}"


class ToolRunner(Protocol):
    def __call__(self, args: Sequence[str], *, timeout: float) -> ToolOutput:
        """Run ``args`` and return its output, raising on failure."""


def run_tool(args: Sequence[str], *, timeout: float) -> ToolOutput:
    """Run ``args`` to completion with a hard ``timeout`` in seconds."""

    command = [str(arg) for arg in args]
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        stderr = exc.stderr if isinstance(exc.stderr, str) else ""
        raise ToolExecutionError(
            f"{command[0]} timed out after {timeout:g} seconds",
            command=command,
            stderr=stderr,
            timed_out=True,
        ) from exc
    except OSError as exc:
        raise ToolExecutionError(
            f"Unable to start {command[0]}: {exc}", command=command
        ) from exc

    if completed.returncode != 0:
        raise ToolExecutionError(
            f"{command[0]} exited with status {completed.returncode}",
            command=command,
            stderr=completed.stderr or "",
            returncode=completed.returncode,
        )

    return ToolOutput(stdout=completed.stdout or "", stderr=completed.stderr or "")


class ToolFailureCategory(str, Enum):
    """Classification of a failed tool invocation."""

    TRANSIENT = "transient"
    AUTHORIZATION = "authorization"

    def is_retryable(self) -> bool:
        return self is ToolFailureCategory.TRANSIENT


DEFAULT_AUTHORIZATION_PATTERNS = (
    r"sign in to confirm",
    r"\bsign[ -]?in\b",
    r"\blog[ -]?in (?:required|to)\b",
    r"confirm your age",
    r"age[- ]restricted",
    r"\bconsent\b",
    r"--cookies",
    r"members[- ]only",
)


class ToolFailureClassifier:
    """Classify tool failures by matching their diagnostic output."""

    def __init__(self, patterns: Sequence[str] = DEFAULT_AUTHORIZATION_PATTERNS) -> None:
        if not patterns:
            raise ValueError("at least one authorization pattern must be provided")
        self._patterns: list[Pattern[str]] = [
            re.compile(pattern, re.IGNORECASE) for pattern in patterns
        ]

    def classify(self, error: Exception) -> ToolFailureCategory:
        text = error.stderr if isinstance(error, ToolExecutionError) else ""
        text = f"{text}\n{error}"
        if any(pattern.search(text) for pattern in self._patterns):
            return ToolFailureCategory.AUTHORIZATION
        return ToolFailureCategory.TRANSIENT


class AuthorizationRequired(RuntimeError):
    """Raised when a tool failure is classified as an authorization wall."""

    def __init__(self, error: Exception) -> None:
        super().__init__(str(error))
        self.error = error


T = TypeVar("T")


def call_with_tool_refresh(
    step: Callable[[], T],
    *,
    refresh: Callable[[], None],
    classifier: ToolFailureClassifier | None = None,
    description: str = "tool step",
) -> T:
    """Run ``step`` at most twice, refreshing the tool between attempts.

    Authorization failures raise :class:`AuthorizationRequired` straight away
    and are never retried. Any other failure triggers one call to ``refresh``
    and one more attempt; a second failure propagates unchanged.
    """

    error_classifier = classifier or ToolFailureClassifier()

    try:
        return step()
    except ToolExecutionError as error:
        if not error_classifier.classify(error).is_retryable():
            raise AuthorizationRequired(error) from error
        logger.warning(
            "%s failed, refreshing tools and retrying once",
            description,
            extra={"diagnostic": error.diagnostic()},
        )

    try:
        refresh()
    except ToolExecutionError as refresh_error:
        logger.warning(
            "Tool refresh failed; retrying with the installed version",
            extra={"diagnostic": refresh_error.diagnostic()},
        )

    try:
        return step()
    except ToolExecutionError as error:
        if not error_classifier.classify(error).is_retryable():
            raise AuthorizationRequired(error) from error
        raise


__all__ = [
    "AuthorizationRequired",
    "DEFAULT_AUTHORIZATION_PATTERNS",
    "ToolExecutionError",
    "ToolFailureCategory",
    "ToolFailureClassifier",
    "ToolOutput",
    "ToolRunner",
    "call_with_tool_refresh",
    "run_tool",
]
