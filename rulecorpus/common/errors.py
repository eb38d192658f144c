"""
Exceptions shared by the pipeline stages.

Per-document errors (network, validation, extraction) are caught by the stage
orchestrators and turned into run-report rows. Only ConfigError is fatal.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from rulecorpus.ingestion.models import FetchResult


class RuleCorpusError(Exception):
    """Base exception for the rulecorpus pipeline."""


class ConfigError(RuleCorpusError):
    """Manifest or required input is unreadable or malformed. Aborts the run."""


class FetchError(RuleCorpusError):
    """A document could not be retrieved."""


class NetworkError(FetchError):
    """Timeout, DNS or connection failure."""


class TooManyRedirectsError(FetchError):
    """The redirect chain exceeded the configured bound."""


class InvalidURLError(FetchError):
    """The URL cannot be parsed into a request. Not retried."""


class ContentValidationError(FetchError):
    """
    The response was not an acceptable PDF (wrong mime, undersized payload or
    missing %PDF- signature). Keeps the rejected result for the run report.
    """

    def __init__(self, message: str, result: "FetchResult"):
        super().__init__(message)
        self.result = result


class ExtractionError(RuleCorpusError):
    """A PDF could not be opened or parsed."""

    def __init__(self, identifier: str, message: str, path: Optional[str] = None):
        super().__init__(f"[{identifier}] {message}")
        self.identifier = identifier
        self.path = path
