# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Token lifecycle: secret codec, issuance and validation.
"""

from .codec import SECRET_LENGTH, generate_secret, hash_secret, is_valid_secret_format
from .issuer import TokenIssuer
from .validator import TokenValidator

__all__ = [
    "SECRET_LENGTH",
    "TokenIssuer",
    "TokenValidator",
    "generate_secret",
    "hash_secret",
    "is_valid_secret_format",
]
