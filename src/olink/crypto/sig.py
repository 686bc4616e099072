# src/olink/crypto/sig.py
from __future__ import annotations

import base64
from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat


def _decode_bytes(s: str) -> bytes:
    if not isinstance(s, str):
        raise ValueError("expected str")
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2, validate=True)
    except Exception as e:
        raise ValueError("not hex or base64") from e


def _load_private_key(privkey: str) -> Ed25519PrivateKey:
    pk_b = _decode_bytes(privkey)

    # Some wallets store the 64-byte expanded key; the seed is its first half.
    if len(pk_b) == 64:
        pk_b = pk_b[:32]

    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")

    return Ed25519PrivateKey.from_private_bytes(pk_b)


def _public_hex(key: Ed25519PrivateKey) -> str:
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def generate_keypair() -> Tuple[str, str]:
    """Create a fresh Ed25519 keypair.

    Returns:
      (privkey_hex, pubkey_hex) where the private key is the 32-byte seed.
    """
    sk = Ed25519PrivateKey.generate()
    seed = sk.private_bytes_raw()
    return seed.hex(), _public_hex(sk)


def public_key_for(privkey: str) -> str:
    """Derive the hex public key for an encoded private key seed."""
    return _public_hex(_load_private_key(privkey))


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key.

    privkey: hex or base64/base64url string representing 32-byte seed or 64-byte private key.
    encoding: "hex" (default) or "b64".
    """
    key = _load_private_key(privkey)
    sig_b = key.sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        sig_b = _decode_bytes(sig)
        pk_b = _decode_bytes(pubkey)
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False
