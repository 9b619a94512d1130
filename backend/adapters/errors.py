"""
Errors surfaced by provider adapters.

Adapters never retry. Any provider exception, timeout, or unusable response
is converted to UpstreamError at the adapter boundary so callers handle a
single failure type.
"""


class UpstreamError(RuntimeError):
    """Generation or synthesis failed, timed out, or returned nothing usable."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"{operation}: {reason}")
        self.operation = operation
        self.reason = reason
