"""Hashing, key derivation, and AES-GCM helpers for the login handshake.

Every value the handshake computes from user-supplied strings lives here:

* :func:`make_date_nonce` -- the timestamp nonce sent with a login request.
* :func:`request_fingerprint` -- SHA-512 fingerprint submitted instead of
  the username and email.
* :func:`derive_request_key` -- the 32-byte AES-256 key the service uses to
  encrypt the approval code. Derived locally; never transmitted.
* :func:`decrypt_approval_code` / :func:`encrypt_approval_code` -- AES-GCM
  over ``nonce || ciphertext || tag``, base64 encoded.
* :func:`compute_sync_id` -- SHA-256 correlation id binding a bearer token
  to the handshake that produced it.
* :func:`codes_match` -- constant-time comparison of approval codes.

Two key-derivation schemes are supported (see
:class:`~duallink.models.KeyDerivation`). The default SHA-512 scheme is
what the authorization service computes; PBKDF2 with a persisted salt is
available for deployments that share the salt with the service.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from duallink.config import atomic_write
from duallink.exceptions import SecurityVerificationFailed

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
SALT_LENGTH = 16

_VERIFICATION_FAILED = (
    "Could not verify the approval code sent by the server. "
    "Security verification failed; start a new login."
)


def make_date_nonce(now: Optional[datetime] = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision.

    Example: ``2025-01-31T09:15:02.417Z``.
    """
    current = now or datetime.now(timezone.utc)
    current = current.astimezone(timezone.utc)
    return current.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def request_fingerprint(
    username: str, email: str, date_nonce: str, connection_name: str
) -> str:
    """SHA-512 hex digest of ``username:email:date_nonce:connection_name``."""
    material = f"{username}:{email}:{date_nonce}:{connection_name}"
    return hashlib.sha512(material.encode("utf-8")).hexdigest()


def _key_material(
    username: str, email: str, connection_name: str, date_nonce: str
) -> bytes:
    # Field order differs from request_fingerprint; the service expects this one.
    return f"{username}:{email}:{connection_name}:{date_nonce}".encode("utf-8")


def derive_request_key(
    username: str,
    email: str,
    connection_name: str,
    date_nonce: str,
    salt: Optional[bytes] = None,
    iterations: int = 600_000,
) -> bytes:
    """Derive the AES-256 key for one login request.

    Without *salt* the key is the first 32 bytes of SHA-512 over the joined
    inputs. With *salt* the same material is stretched with
    PBKDF2-HMAC-SHA256.

    Returns:
        Exactly :data:`KEY_LENGTH` bytes. Deterministic for fixed inputs.
    """
    material = _key_material(username, email, connection_name, date_nonce)
    if salt is None:
        return hashlib.sha512(material).digest()[:KEY_LENGTH]

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(material)


def load_or_create_salt(path: Path) -> bytes:
    """Return the persisted PBKDF2 salt at *path*, creating it on first use.

    The salt is stored hex-encoded with ``0o600`` permissions. A file that
    cannot be parsed is replaced with a fresh salt.
    """
    if path.is_file():
        try:
            salt = bytes.fromhex(path.read_text(encoding="utf-8").strip())
        except (ValueError, OSError):
            salt = b""
        if len(salt) == SALT_LENGTH:
            return salt

    salt = secrets.token_bytes(SALT_LENGTH)
    atomic_write(path, salt.hex() + "\n", mode=0o600)
    return salt


def compute_sync_id(request_id: str, one_time_code: str) -> str:
    """SHA-256 hex digest of *request_id* immediately followed by *one_time_code*."""
    digest = hashlib.sha256()
    digest.update(request_id.encode("utf-8"))
    digest.update(one_time_code.encode("utf-8"))
    return digest.hexdigest()


def encrypt_approval_code(
    code: str, key: bytes, nonce: Optional[bytes] = None
) -> str:
    """Encrypt *code* the way the authorization service does.

    Returns:
        base64 of ``nonce || ciphertext || tag``.
    """
    nonce = nonce or os.urandom(NONCE_LENGTH)
    sealed = AESGCM(key).encrypt(nonce, code.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_approval_code(encrypted: str, key: bytes) -> str:
    """Decrypt and authenticate an approval code from the status endpoint.

    Args:
        encrypted: base64 of ``nonce || ciphertext || tag``.
        key: The request key from :func:`derive_request_key`.

    Returns:
        The plaintext approval code.

    Raises:
        SecurityVerificationFailed: On any decoding, length, key, or tag
            problem. The message is the same for every cause.
    """
    try:
        blob = base64.b64decode(encrypted, validate=True)
    except (binascii.Error, ValueError):
        raise SecurityVerificationFailed(_VERIFICATION_FAILED) from None

    if len(blob) < NONCE_LENGTH + TAG_LENGTH or len(key) != KEY_LENGTH:
        raise SecurityVerificationFailed(_VERIFICATION_FAILED)

    nonce, sealed = blob[:NONCE_LENGTH], blob[NONCE_LENGTH:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, sealed, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, UnicodeDecodeError):
        raise SecurityVerificationFailed(_VERIFICATION_FAILED) from None


def codes_match(expected: str, provided: str) -> bool:
    """Compare two approval codes byte-for-byte in constant time. Case-sensitive."""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))
