from __future__ import annotations


class DomainError(ValueError):
    """Base class for failures the caller can correct."""


class ValidationError(DomainError):
    pass


class NotFoundError(DomainError):
    pass


class ConflictError(DomainError):
    pass


class AuthorizationError(DomainError):
    pass
