"""Voting backend client and voting services."""

from app.services.backend_rpc import backend_client
from app.services.errors import (
    BackendError,
    InvalidTokenError,
    NotFoundError,
    TokenMismatchError,
    VoteError,
    VoteValidationError,
)

__all__ = [
    "backend_client",
    "BackendError",
    "InvalidTokenError",
    "NotFoundError",
    "TokenMismatchError",
    "VoteError",
    "VoteValidationError",
]
