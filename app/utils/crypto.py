"""
Crypto utilities — bcrypt password hashing and webhook signatures.

Password hashing:
  Supports both bcrypt ($2b$) and legacy werkzeug (scrypt/pbkdf2) hashes
  for accounts imported from the previous system.

Webhook signatures:
  Payment callbacks are signed with HMAC-SHA256 over the raw request body.
"""

import hashlib
import hmac

import bcrypt
from werkzeug.security import check_password_hash


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and legacy werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def sign_payload(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of *payload* keyed by *secret*."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: str | None) -> bool:
    """Constant-time comparison of a received signature.

    Compared as bytes: a header carrying non-ASCII text is simply a mismatch.
    """
    if not signature:
        return False
    expected = sign_payload(secret, payload).encode("ascii")
    received = signature.strip().encode("utf-8", "surrogateescape")
    return hmac.compare_digest(expected, received)
