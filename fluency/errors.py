"""Exception hierarchy shared by the fluency services."""

from __future__ import annotations

from typing import Optional


class FluencyError(RuntimeError):
    """Base class for every error raised by fluency."""


class StoreError(FluencyError):
    """Raised when a local storage invariant would be violated."""


class ConfigError(FluencyError):
    """Raised when configuration cannot be loaded or saved."""


class Disconnected(FluencyError):
    """The configured server could not be reached."""


class ProviderError(FluencyError):
    """Failure reported by a transcription, speech or tone provider."""


class NoCredential(ProviderError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No {name} API key configured. Run `fluency secret set {name}` first.")


class InvalidResponse(ProviderError):
    def __init__(self, detail: str = "Invalid response from API") -> None:
        super().__init__(detail)


class RemoteError(ProviderError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"API Error: {message}")


class TransportError(ProviderError):
    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Network error: {cause}")
