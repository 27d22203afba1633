"""Exceptions raised around quote rendering."""

from __future__ import annotations


class QuoteServiceError(RuntimeError):
    """Base class for failures the HTTP layer reports to the caller."""

    code = "quote_service_error"


class DependencyError(QuoteServiceError):
    """Raised when a required runtime dependency is missing."""

    code = "missing_dependency"


class TemplateNotFoundError(QuoteServiceError):
    code = "template_not_found"

    def __init__(self, path: str) -> None:
        super().__init__(f"HTML template not found: {path}")
        self.path = path


class RenderError(QuoteServiceError):
    """Chromium failed to launch, load the page, or print it."""

    code = "render_failed"
