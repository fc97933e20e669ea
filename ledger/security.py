"""
Password hashing for sign-in.

Stored format: "pbkdf2$<iterations>$<salt_b64>$<hash_b64>" (PBKDF2-HMAC-SHA256).
"""

import base64
import hmac
import os
import secrets
from hashlib import pbkdf2_hmac

PBKDF2_ITERATIONS = 100_000


def _b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def _b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"))


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = os.urandom(16)
    digest = pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"pbkdf2${iterations}${_b64e(salt)}${_b64e(digest)}"


def verify_password(password: str, stored: str) -> bool:
    try:
        prefix, iters_str, salt_b64, digest_b64 = stored.split("$", 3)
        if prefix != "pbkdf2":
            return False
        salt = _b64d(salt_b64)
        expected = _b64d(digest_b64)
        iterations = int(iters_str)
    except ValueError:
        return False

    candidate = pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(candidate, expected)


def new_session_token() -> str:
    return secrets.token_urlsafe(32)
