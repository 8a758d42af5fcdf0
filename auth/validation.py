"""
auth/validation.py -- Syntactic checks on user-supplied credentials.

These run before any store access: a username that fails here never reaches
a SQL query, and the caller gets a ValidationError it can show next to the form.
"""

from __future__ import annotations

import re

from auth.errors import ValidationError
from auth.passwords import MAX_PASSWORD_BYTES
from core.config import Settings, get_settings

_USERNAME_CHARS = re.compile(r"^[A-Za-z0-9_.\-]+$")


def validate_username(username: str, settings: Settings | None = None) -> str:
    """Return the stripped username or raise ValidationError."""
    settings = settings or get_settings()
    name = (username or "").strip()
    if not name:
        raise ValidationError("Username is required.")
    if len(name) < settings.username_min_length:
        raise ValidationError(f"Username must be at least {settings.username_min_length} characters.")
    if len(name) > settings.username_max_length:
        raise ValidationError(f"Username must be at most {settings.username_max_length} characters.")
    if not _USERNAME_CHARS.match(name):
        raise ValidationError("Username may only contain letters, digits, '_', '.' and '-'.")
    if name[0].isdigit():
        raise ValidationError("Username must not begin with a number.")
    return name


def validate_new_password(password: str, confirmation: str) -> None:
    if password != confirmation:
        raise ValidationError("Passwords do not match.")
    if not password:
        raise ValidationError("Password is required.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
