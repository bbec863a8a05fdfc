"""Exceptions shared by the voting services.

Each error carries the HTTP status the JSON routes answer with, so routers
can translate them without a lookup table.
"""

from typing import Optional


class VoteError(Exception):
    """Base class for voting portal errors."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class VoteValidationError(VoteError):
    """Missing or malformed input, rejected before any backend call."""

    status_code = 400


class TokenError(VoteError):
    """The voting link cannot be used. Terminal for the session."""

    status_code = 401


class InvalidTokenError(TokenError):
    """No unrevoked, unexpired token matches."""

    status_code = 401


class TokenMismatchError(TokenError):
    """Token exists but belongs to another campaign."""

    status_code = 403


class NotFoundError(VoteError):
    """No context, weather or assignments for the given keys."""

    status_code = 404


class BackendError(VoteError):
    """Hosted backend or transport failure. Recoverable by retrying."""

    status_code = 500

    @property
    def is_authorization_error(self) -> bool:
        """True when the backend rejected the token itself."""
        if self.status_code in (401, 403):
            return True
        lowered = self.message.lower()
        return "token" in lowered and any(
            word in lowered for word in ("invalid", "expired", "revoked")
        )


class SubmissionInProgressError(VoteError):
    """A vote for this session is already being submitted."""

    status_code = 409
