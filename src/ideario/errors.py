"""Error taxonomy for Ideario.

Every error carries a stable ``code`` so the server and the CLI can report
failures without inspecting the class hierarchy.
"""

from __future__ import annotations


class IdearioError(Exception):
    """Base class for all Ideario errors."""

    code = "error"


class ValidationError(IdearioError):
    """Malformed or missing required input."""

    code = "validation_error"


class FileTooLarge(ValidationError):
    """Raised when an upload exceeds the configured size limit."""

    code = "file_too_large"


class UnsupportedType(ValidationError):
    """Raised when an upload's MIME type is not on the allow-list."""

    code = "unsupported_type"


class PermissionDenied(IdearioError):
    """The actor is not allowed to perform the action."""

    code = "permission_denied"


class InvalidState(IdearioError):
    """The entity is not in a state that allows the action."""

    code = "invalid_state"


class InvalidTransition(IdearioError):
    """The requested status change is not an edge of the lifecycle."""

    code = "invalid_transition"


class AlreadyOwned(IdearioError):
    """The idea already has an owner."""

    code = "already_owned"


class NotFound(IdearioError):
    """A referenced entity does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class BackendError(IdearioError):
    """Opaque failure reported by the persistence gateway or object store."""

    code = "backend_error"


class ConflictError(BackendError):
    """A uniqueness constraint or update precondition was violated."""

    code = "conflict"


class ObjectExistsError(ConflictError):
    """An object already exists at the requested storage path."""

    code = "object_exists"


class AuthError(IdearioError):
    """Authentication provider failure (bad credentials, expired session)."""

    code = "auth_error"
