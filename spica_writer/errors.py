"""Error taxonomy for the authoring core.

Operations raise immediately when an id cannot be resolved. Self-healing
paths (redundant moves, reorders with stale ids, load-time repair) log a
warning instead of raising.
"""

from __future__ import annotations


class SpicaError(Exception):
    """Base class for all errors raised by the authoring core."""

    code = "SPICA_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(SpicaError):
    """Raised when a referenced entity id does not exist in the store."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id


class InvalidResponseError(SpicaError):
    """Raised when an LLM reply does not have the expected structure.

    `index` is the position of the offending tab entry, or None when the
    reply as a whole is malformed.
    """

    code = "INVALID_RESPONSE"

    def __init__(self, message: str, index: int | None = None) -> None:
        if index is not None:
            message = f"tab {index}: {message}"
        super().__init__(message)
        self.index = index


class UnknownPromptTypeError(SpicaError):
    """Raised when a prompt type key is not registered."""

    code = "UNKNOWN_PROMPT_TYPE"

    def __init__(self, key: str) -> None:
        super().__init__(f"Unknown prompt type: {key}")
        self.key = key


class RequestInFlightError(SpicaError):
    """Raised when a prompt is submitted while another is still pending."""

    code = "REQUEST_IN_FLIGHT"


class ProjectLoadError(SpicaError):
    """Raised when a project file exists but cannot be parsed."""

    code = "PROJECT_LOAD_FAILED"


class ConsistencyError(SpicaError):
    """Raised by ConsistencyReport.check() when hard invariants are violated."""

    code = "INCONSISTENT_STORE"

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class ConsistencyWarning(UserWarning):
    """Soft inconsistency found by the validator. Never fatal."""
