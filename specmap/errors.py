"""Error kinds raised by the mapping scanner and its collaborators."""
from __future__ import annotations

from typing import Optional

from specmap.models import ScanDiagnostics


class MappingScanError(Exception):
    """Base class for scan failures.

    ``diagnostics`` is attached by the scanner when a run aborts so callers can
    show the prompts and raw provider output that led to the failure.
    """

    def __init__(self, message: str, diagnostics: Optional[ScanDiagnostics] = None):
        super().__init__(message)
        self.diagnostics = diagnostics


class ProviderError(MappingScanError):
    """Network, auth or rate-limit failure from the AI provider."""


class AiNotConfiguredError(ProviderError):
    """No API key is available for the AI provider."""


class MalformedResponse(MappingScanError):
    """Provider output is not the expected JSON array of mapping records."""

    def __init__(self, message: str, raw_text: str = "", diagnostics: Optional[ScanDiagnostics] = None):
        super().__init__(message, diagnostics)
        self.raw_text = raw_text


class UnresolvedObjectReference(MappingScanError):
    """A mapping record could not be matched to a feature id."""

    def __init__(self, object_title: str, object_id: str = ""):
        super().__init__(f"Could not resolve mapping record '{object_title}' to a known object")
        self.object_title = object_title
        self.object_id = object_id


class PersistenceError(MappingScanError):
    """Writing the mapping index failed; the previous snapshot is still in place."""


class ScanInProgressError(MappingScanError):
    """Another scan is already running against the same workspace."""


class ScanCancelledError(MappingScanError):
    """The run was cancelled before it committed."""


class ObjectNotFoundError(MappingScanError, LookupError):
    """The requested object id is not part of the feature tree."""


class EmptyFeatureTreeError(MappingScanError):
    """The workspace has no objects to scan."""
