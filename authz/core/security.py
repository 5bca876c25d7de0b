"""
Password & token hashing helpers.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).  `bcrypt.checkpw` compares in constant
  time.
- Refresh tokens are tracked server-side by their SHA-256 digest, never
  by the raw bearer string.
- Neither the plaintext nor the stored hash is ever logged.
"""

import functools
import hashlib

import bcrypt
from fastapi.security import OAuth2PasswordBearer

from authz.core.config import settings

# ── Password hashing ────────────────────────────────────────────────

# bcrypt only looks at the first 72 bytes; bcrypt>=5 refuses anything longer.
MAX_PASSWORD_BYTES = 72


def password_fits_bcrypt(plain: str) -> bool:
    return len(plain.encode("utf-8")) <= MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


@functools.lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("dummy-password-for-timing")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt comparison so unknown emails cost the same as bad passwords."""
    verify_password(plain, _dummy_hash())


# ── Token hashing (for refresh tokens) ──────────────────────────────


def hash_token(token: str) -> str:
    """SHA-256 hash — suitable for high-entropy tokens like JWTs."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ── Bearer extraction ───────────────────────────────────────────────
# auto_error=False so a missing header surfaces as our own
# AuthenticationError instead of FastAPI's generic 401.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)
