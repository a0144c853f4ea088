# errors.py
"""
Exception taxonomy for the conversation engine.

Local errors (classification, selection) are recovered inside a turn.
Remote errors (AI service, catalog, configuration) are wrapped in an
`OrchestrationError` carrying the phase and operation, and surface to the
HTTP layer as an error status.
"""

from typing import Optional


class MerchmateError(Exception):
    """Base class for all errors raised by merchmate."""


class ClassificationFailure(MerchmateError):
    """The AI response could not be parsed into a known classification."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class AIServiceError(MerchmateError):
    """A call to the generative-AI backend failed (HTTP, network or timeout)."""


class AnalysisFailure(AIServiceError):
    """Image analysis failed. Never fatal; the analysis field is left out."""


class DesignGenerationError(AIServiceError):
    """Image generation failed. Carries the prompt length, never the prompt."""

    def __init__(self, prompt_length: int, reason: str):
        super().__init__(f"Design generation failed (prompt length {prompt_length}): {reason}")
        self.prompt_length = prompt_length
        self.reason = reason


class CatalogError(MerchmateError):
    """A Printify catalog or commerce call failed."""


class NoProviderError(CatalogError):
    def __init__(self, entry_id: int):
        super().__init__(f"No print provider available for blueprint {entry_id}")
        self.entry_id = entry_id


class NoVariantsError(CatalogError):
    def __init__(self, entry_id: int, provider_id: int):
        super().__init__(f"No variants for blueprint {entry_id} with provider {provider_id}")
        self.entry_id = entry_id
        self.provider_id = provider_id


class ProductConfigurationError(MerchmateError):
    """Wraps the failure of any configuration step with the step's own message."""

    def __init__(self, step: str, message: str):
        super().__init__(f"Product Configuration Error ({step}): {message}")
        self.step = step
        self.detail = message


class SelectionError(MerchmateError):
    """The user picked a product index outside the page they were shown."""

    def __init__(self, index: int, page_size: int):
        super().__init__(f"Selection {index} is out of range for a page of {page_size}")
        self.index = index
        self.page_size = page_size


class PhaseError(MerchmateError):
    """An out-of-band operation was requested in a phase that does not allow it."""

    def __init__(self, phase: str, operation: str):
        super().__init__(f"{operation} is not available during {phase}")
        self.phase = phase
        self.operation = operation


class OrchestrationError(MerchmateError):
    """A delegate failed mid-turn. The conversation phase is not rolled back."""

    def __init__(self, phase: str, operation: str, cause: Exception):
        super().__init__(f"{operation} failed during {phase}: {cause}")
        self.phase = phase
        self.operation = operation
        self.cause = cause
