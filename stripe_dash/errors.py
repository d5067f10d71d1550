from __future__ import annotations


class StripeDashError(Exception):
    """Base class for errors raised by the data source."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class MissingCredentialError(StripeDashError):
    """Save & test attempted without a usable API key."""

    def __init__(self, message: str = "API key is missing") -> None:
        super().__init__(message)


class MetricNotFoundError(StripeDashError, KeyError):
    """A metric kind is not part of the current catalog."""

    def __init__(self, kind: object) -> None:
        super().__init__(f"Metric '{kind}' is not in the catalog.")
        self.kind = kind


class UpstreamError(StripeDashError):
    """The Stripe API call failed. The message is passed through unmodified."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
