from __future__ import annotations


class AuthorizationEngineError(Exception):
    pass


class ValidationError(AuthorizationEngineError):
    pass


class ForbiddenError(AuthorizationEngineError):
    pass


class NotFoundError(AuthorizationEngineError):
    pass


class ConflictError(AuthorizationEngineError):
    pass


class AuthError(AuthorizationEngineError):
    pass


class StorageError(AuthorizationEngineError):
    """Transient persistence failure; the previous state is still authoritative."""
