from __future__ import annotations

INVALID_TRANSITION = "invalid_transition"


class MantisError(RuntimeError):
    pass


class CatalogUnavailable(MantisError):
    """The NLU catalog seed could not be read or did not validate."""


class EntityExtractionUnavailable(MantisError):
    """No entity extraction collaborator is wired, or it failed mid-call."""

    def __init__(self, message: str, *, entity_type: str | None = None) -> None:
        super().__init__(message)
        self.entity_type = entity_type
