"""
Custom exception hierarchy for PromptForge.

All project-specific exceptions inherit from PromptForgeError.
"""

from typing import Any, Optional


class PromptForgeError(Exception):
    """Base exception for PromptForge."""

    pass


class ConfigError(PromptForgeError):
    """Invalid or missing configuration (empty model set, zero weights, bad YAML)."""

    pass


class AuthError(PromptForgeError):
    """Missing or rejected provider credential. Never retried."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class ProviderError(PromptForgeError):
    """Non-2xx response or vendor-reported failure."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.payload = payload


class FormatError(PromptForgeError):
    """A model reply could not be parsed into the expected structured shape."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class PipelineStateError(PromptForgeError):
    """A pipeline stage was entered before its predecessor produced output."""

    pass


class ReportingError(PromptForgeError):
    """Error while writing a comparison report."""

    pass
