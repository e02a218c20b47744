"""Password generation and display masking."""

from __future__ import annotations

import secrets

CHARSET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!@#$%^&*()_+"
MASK_CHAR = "•"


def generate_password(length: int = 12) -> str:
    """Random password drawn from CHARSET.

    Raises:
        ValueError: If length is less than 1
    """
    if length < 1:
        raise ValueError("Password length must be at least 1")
    return "".join(secrets.choice(CHARSET) for _ in range(length))


def mask_password(password: str) -> str:
    return MASK_CHAR * len(password)
