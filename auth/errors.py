"""
auth/errors.py -- Exception taxonomy for the authentication layer.

Every failure the auth layer can report is one of four kinds. Each is raised
at the point of detection and propagates unchanged to the HTTP boundary
(api/main.py), which is the only place they are turned into responses.

  ValidationError  -- user-correctable input problem (bad username, password
                      mismatch, username taken). Re-display the form.
  AuthError        -- login failed. The message never says whether the
                      username or the password was wrong.
  StoreError       -- the credential store failed for reasons not caused by
                      the user. Never retried here.
  ForbiddenError   -- the authorization engine refused the operation. Raised
                      before the guarded route body runs.

Each carries a stable machine-readable `code` and a display `message`, the
same pair the API error envelope exposes.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthLayerError(Exception):
    """Base class for every error raised by auth/."""

    code: str = "error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(AuthLayerError):
    code = "validation_error"


class AuthError(AuthLayerError):
    """Failed login.

    `reason` ("not_found" or "bad_credentials") is kept for server-side logs
    only. code and message are identical for both reasons so a caller cannot
    probe which usernames exist.
    """

    code = "bad_credentials"
    GENERIC_MESSAGE = "Incorrect username or password."

    def __init__(self, reason: str) -> None:
        super().__init__(self.GENERIC_MESSAGE)
        self.reason = reason


class StoreError(AuthLayerError):
    code = "store_error"


class DuplicateUserError(StoreError):
    """A unique constraint on the username rejected the insert."""

    code = "duplicate_user"


class ForbiddenError(AuthLayerError):
    """The authorization engine returned False.

    `authenticated` tells the boundary whether a principal was present:
    False means "no session" (401), True means "wrong role" (403).
    """

    def __init__(self, message: str = "Not authorized to perform this action.", *, authenticated: bool) -> None:
        super().__init__(message, code="forbidden" if authenticated else "unauthorized")
        self.authenticated = authenticated
