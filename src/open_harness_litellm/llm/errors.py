"""Exceptions raised by the chat client and the request orchestrator."""

from __future__ import annotations

from typing import Any

from open_harness_litellm.types import CostBreakdown, TimeSegment, TokenUsage


class ProviderConfigurationError(RuntimeError):
    """The provider cannot run a request because it is not configured."""


class ChatCompletionError(Exception):
    """A chat-completion call failed at the transport or HTTP level."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body

    @property
    def error(self) -> dict[str, Any] | None:
        """Structured provider error (``{"message", "type", "code"}``) if any."""
        if isinstance(self.body, dict):
            err = self.body.get("error")
            if isinstance(err, dict):
                return err
        return None


def extract_provider_error(exc: BaseException) -> tuple[str, str | None, Any]:
    """Return ``(message, type, code)`` for *exc*.

    Structured fields from an ``error`` payload win over the exception text.
    """
    message = str(exc) or type(exc).__name__
    error_type: str | None = None
    error_code: Any = None

    err = getattr(exc, "error", None)
    if isinstance(err, dict):
        message = err.get("message") or message
        error_type = err.get("type")
        error_code = err.get("code")
    return message, error_type, error_code


class ProviderRequestError(Exception):
    """The single enriched failure propagated out of a request.

    Carries the timing so far, the provider's structured error fields and
    the partial token/cost/segment telemetry accumulated before the failure.
    """

    def __init__(
        self,
        message: str,
        timing: dict[str, Any],
        error_type: str | None = None,
        error_code: Any = None,
        tokens: TokenUsage | None = None,
        cost: CostBreakdown | None = None,
        time_segments: list[TimeSegment] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.timing = timing
        self.error_type = error_type
        self.error_code = error_code
        self.tokens = tokens or TokenUsage()
        self.cost = cost or CostBreakdown()
        self.time_segments = list(time_segments or [])
