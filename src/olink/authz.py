# src/olink/authz.py
from __future__ import annotations

"""Confirmation authorization.

Setting a verification flag requires proof that the caller acts for the
principal that owns that flag (record.sender for the sender flag,
record.recipient for the recipient flag). The protocol depends only on the
AuthorizationCheck protocol; credential material is injected per deployment.
"""

import hashlib
import hmac
import secrets
from typing import Dict, Protocol

_PBKDF2_ITERATIONS = 200_000


class AuthorizationCheck(Protocol):
    def authorize(self, principal: str, credential: str) -> bool: ...


def hash_credential(credential: str, *, salt: bytes | None = None, iterations: int = _PBKDF2_ITERATIONS) -> str:
    """Return "pbkdf2_sha256$<iterations>$<salt_hex>$<hash_hex>"."""
    salt = salt if salt is not None else secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", credential.encode("utf-8"), salt, int(iterations))
    return f"pbkdf2_sha256${int(iterations)}${salt.hex()}${dk.hex()}"


def check_credential(credential: str, encoded: str) -> bool:
    try:
        scheme, iters_s, salt_hex, hash_hex = encoded.split("$")
        if scheme != "pbkdf2_sha256":
            return False
        dk = hashlib.pbkdf2_hmac("sha256", credential.encode("utf-8"), bytes.fromhex(salt_hex), int(iters_s))
    except (ValueError, AttributeError):
        return False
    return hmac.compare_digest(dk.hex(), hash_hex)


class PinAuthorizer:
    """Per-principal PIN check backed by salted PBKDF2 hashes.

    `hashes` maps principal id -> hash_credential() output. Unknown principals
    and empty credentials are always refused.
    """

    def __init__(self, hashes: Dict[str, str] | None = None, *, iterations: int = _PBKDF2_ITERATIONS) -> None:
        self._hashes: Dict[str, str] = dict(hashes or {})
        self._iterations = int(iterations)

    def enroll(self, principal: str, credential: str) -> None:
        if not principal.strip() or not credential:
            raise ValueError("principal and credential are required")
        self._hashes[principal.strip()] = hash_credential(credential, iterations=self._iterations)

    def authorize(self, principal: str, credential: str) -> bool:
        if not isinstance(principal, str) or not isinstance(credential, str) or not credential:
            return False
        encoded = self._hashes.get(principal.strip())
        if not encoded:
            return False
        return check_credential(credential, encoded)
