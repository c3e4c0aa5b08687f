from __future__ import annotations


class EditPipelineError(Exception):
    """Base class for failures surfaced by the editorial pipeline."""


class ConfigurationError(EditPipelineError, ValueError):
    """Invalid settings or an invalid range construction."""


class ExternalServiceError(EditPipelineError, RuntimeError):
    """Model loading, media probing, frame acquisition or inference failed."""
