"""Exception types raised by the analysis pipeline."""

from typing import Optional


class AnalysisError(Exception):
    """Base class for analysis pipeline errors."""


class ProviderError(AnalysisError):
    """Non-2xx answer or transport failure from an AI provider.

    ``status_code`` is ``None`` when the request never got an HTTP answer
    (connection reset, DNS, timeout).
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseFormatError(AnalysisError):
    """Provider answered 2xx but the content is empty, truncated or not JSON."""


class ProviderConfigError(AnalysisError):
    """Unknown provider or missing API key."""


class FindingWriteError(AnalysisError):
    """Findings for a category could not be stored."""


class DocumentChangedError(AnalysisError):
    """The stored document was replaced while an analysis was running."""


class UploadError(ValueError):
    """Uploaded file is not a usable assessment document."""
