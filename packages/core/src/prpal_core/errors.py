"""Failure taxonomy for the external review tool.

The tool reports problems as free text on stdout/stderr with a non-zero exit
code, so classification is substring matching. The order of the checks below
matters: an auth failure message frequently mentions the model name too.

Cancellation is deliberately not a ProcessError. A cancelled review is a
normal outcome chosen by the user and must never be recorded as ``failed``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

TOOL_NAME = "opencode"
INSTALL_URL = "https://opencode.ai/docs"
INSTALL_COMMAND = "curl -fsSL https://opencode.ai/install | bash"

_DETAILS_LIMIT = 500


class ProcessErrorType(str, enum.Enum):
    NOT_INSTALLED = "NOT_INSTALLED"
    VERSION_MISMATCH = "VERSION_MISMATCH"
    API_KEY_MISSING = "API_KEY_MISSING"
    API_KEY_INVALID = "API_KEY_INVALID"
    RATE_LIMITED = "RATE_LIMITED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    CONTEXT_TOO_LONG = "CONTEXT_TOO_LONG"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    PROCESS_CRASHED = "PROCESS_CRASHED"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN = "UNKNOWN"


_RECOVERABLE = {ProcessErrorType.TIMEOUT, ProcessErrorType.NETWORK_ERROR, ProcessErrorType.RATE_LIMITED}


@dataclass(frozen=True)
class ErrorAction:
    """What the user can do about a failure."""

    label: str
    action_type: str  # "open_settings" | "retry" | "open_url" | "dismiss"
    payload: str | None = None


class ProcessError(Exception):
    def __init__(
        self,
        error_type: ProcessErrorType,
        message: str,
        details: str | None = None,
        action: ErrorAction | None = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.details = details
        self.action = action

    @property
    def recoverable(self) -> bool:
        return self.error_type in _RECOVERABLE

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ReviewCancelled(Exception):
    """Raised inside a review run once its cancellation has been requested."""

    def __init__(self, item_id: str | None = None):
        super().__init__(f"Review cancelled: {item_id}" if item_id else "Review cancelled")
        self.item_id = item_id


class ItemNotFoundError(KeyError):
    """The requested item is not in the item store."""


class ReviewInProgressError(RuntimeError):
    """A review for this item is already running."""


# --------------------------------------------------------------------------- #
# Classification                                                              #
# --------------------------------------------------------------------------- #


def _is_api_key_error(text: str) -> bool:
    return "api key" in text or "unauthorized" in text or "401" in text


def _is_rate_limit_error(text: str) -> bool:
    return "rate limit" in text or "429" in text or "too many" in text


def _is_model_error(text: str) -> bool:
    return "model" in text and ("not found" in text or "invalid" in text)


def _is_context_error(text: str) -> bool:
    return "context" in text or "too long" in text or "token limit" in text


def _is_network_error(text: str) -> bool:
    return any(marker in text for marker in ("network", "econnrefused", "econnreset", "timeout"))


def classify_failure(exit_code: int, stdout: str, stderr: str) -> ProcessError:
    """Map a non-zero exit into the most specific ProcessError we can recognise."""
    combined = f"{stdout}\n{stderr}".lower()

    if _is_api_key_error(combined):
        return ProcessError(
            ProcessErrorType.API_KEY_MISSING,
            f"{TOOL_NAME} API key not configured",
            f"Add your provider API key. Run: {TOOL_NAME} auth login",
            ErrorAction("Open Settings", "open_settings"),
        )
    if _is_rate_limit_error(combined):
        return ProcessError(
            ProcessErrorType.RATE_LIMITED,
            "API rate limit exceeded",
            "Wait a minute and retry the review",
            ErrorAction("Retry Now", "retry"),
        )
    if _is_model_error(combined):
        return ProcessError(
            ProcessErrorType.MODEL_NOT_FOUND,
            "Selected model not available",
            stderr[:_DETAILS_LIMIT],
            ErrorAction("Change Model", "open_settings"),
        )
    if _is_context_error(combined):
        return ProcessError(
            ProcessErrorType.CONTEXT_TOO_LONG,
            "PR diff too large for model context",
            "Try reviewing with a smaller diff",
            ErrorAction("Review Partial", "retry"),
        )
    if _is_network_error(combined):
        return ProcessError(
            ProcessErrorType.NETWORK_ERROR,
            "Network error",
            "Check your internet connection",
            ErrorAction("Retry", "retry"),
        )

    return ProcessError(
        ProcessErrorType.UNKNOWN,
        f"{TOOL_NAME} exited with code {exit_code}",
        (stderr or stdout)[-_DETAILS_LIMIT:],
    )


def timeout_error(timeout_seconds: float) -> ProcessError:
    minutes = max(1, round(timeout_seconds / 60))
    return ProcessError(
        ProcessErrorType.TIMEOUT,
        "Review timed out",
        f"Review took longer than {minutes} minute{'s' if minutes > 1 else ''}. "
        "Try a smaller PR or increase timeout_seconds.",
        ErrorAction("Retry", "retry"),
    )


def not_installed_error(path: str | None = None) -> ProcessError:
    where = f" at {path}" if path else ""
    return ProcessError(
        ProcessErrorType.NOT_INSTALLED,
        f"{TOOL_NAME} not installed{where}",
        f"Install: {INSTALL_COMMAND}",
        ErrorAction("Install Instructions", "open_url", INSTALL_URL),
    )


def crashed_error(exc: OSError, path: str) -> ProcessError:
    return ProcessError(
        ProcessErrorType.PROCESS_CRASHED,
        f"Could not start {path}",
        f"{type(exc).__name__}: {exc}",
    )
