# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Secret generation, hashing and format checks.

Secrets are 32 random bytes rendered as 64 lowercase hex characters. Only
the SHA-256 hex digest of a secret is ever persisted.
"""

import hashlib
import re
import secrets as _secrets

SECRET_BYTES = 32
SECRET_LENGTH = SECRET_BYTES * 2

_SECRET_PATTERN = re.compile(rf"[0-9a-f]{{{SECRET_LENGTH}}}")


def generate_secret() -> str:
    """Return a new 256-bit secret as lowercase hex."""
    return _secrets.token_hex(SECRET_BYTES)


def hash_secret(secret: str) -> str:
    """Return the SHA-256 hex digest of a secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def is_valid_secret_format(secret: str | None) -> bool:
    """
    Check that a presented value looks like a generated secret.

    Uppercase hex is rejected: generated secrets are always lowercase, and
    accepting both would make two spellings hash differently.
    """
    if not secret:
        return False
    return _SECRET_PATTERN.fullmatch(secret) is not None


__all__ = [
    "SECRET_LENGTH",
    "generate_secret",
    "hash_secret",
    "is_valid_secret_format",
]
