"""
Token service — access & refresh token lifecycle.

Two token classes, each an HS256 JWT signed with its own secret:

- Access:  {sub, email, role_ids, iat, exp, type="access"}, short-lived,
  stateless.  Valid while the signature checks out, `now < exp`, and
  the user still exists and is active.
- Refresh: {sub, iat, exp, type="refresh", jti}, long-lived.  Its digest
  is stored in the user's outstanding set at issuance; it is valid only
  while that row exists.

Expiry is exclusive: a token checked exactly at `exp` is expired.  The
check is done here against the injected clock rather than by jose, so
tests can pin time.

Already-issued access tokens survive logout until they expire; only the
refresh side is revocable.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from jose.exceptions import JOSEError
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.config import Settings, settings
from authz.core.errors import AuthenticationError, AuthFailure, TokenGenerationError
from authz.models.user import User
from authz.services import refresh_token_service, user_service

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenConfig:
    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    rotate_refresh_tokens: bool = True

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "TokenConfig":
        return cls(
            access_secret=s.ACCESS_TOKEN_SECRET,
            refresh_secret=s.REFRESH_TOKEN_SECRET,
            algorithm=s.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=s.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=s.REFRESH_TOKEN_EXPIRE_DAYS),
            rotate_refresh_tokens=s.ROTATE_REFRESH_TOKENS,
        )


@dataclass
class AccessClaims:
    user_id: uuid.UUID
    email: str
    role_ids: list[str] = field(default_factory=list)
    issued_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


class TokenService:
    def __init__(self, config: TokenConfig, clock: Callable[[], datetime] = _utcnow):
        self.config = config
        self._clock = clock

    # ── Encoding ─────────────────────────────────────────────────────

    def _sign(self, claims: dict[str, Any], secret: str) -> str:
        try:
            return jwt.encode(claims, secret, algorithm=self.config.algorithm)
        except (JOSEError, ValueError, TypeError) as exc:
            logger.error("Token signing failed (algorithm=%s): %s", self.config.algorithm, exc)
            raise TokenGenerationError("Failed to generate token") from exc

    def _stamp(self, ttl: timedelta) -> tuple[int, int]:
        issued = int(self._clock().timestamp())
        return issued, issued + int(ttl.total_seconds())

    def issue_access_token(self, user: User) -> str:
        """Sign an access token.  `user.roles` must be loaded."""
        iat, exp = self._stamp(self.config.access_ttl)
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "role_ids": [str(r.id) for r in user.roles],
            "iat": iat,
            "exp": exp,
            "type": ACCESS,
        }
        return self._sign(claims, self.config.access_secret)

    async def issue_refresh_token(self, user: User, db: AsyncSession) -> str:
        """Sign a refresh token and add it to the user's outstanding set."""
        iat, exp = self._stamp(self.config.refresh_ttl)
        claims = {
            "sub": str(user.id),
            "iat": iat,
            "exp": exp,
            "type": REFRESH,
            # Keeps two tokens issued in the same second distinct
            "jti": uuid.uuid4().hex,
        }
        token = self._sign(claims, self.config.refresh_secret)
        await refresh_token_service.add_refresh_token(
            user.id, token, datetime.fromtimestamp(exp, tz=timezone.utc), db,
        )
        return token

    async def issue_token_pair(self, user: User, db: AsyncSession) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user),
            refresh_token=await self.issue_refresh_token(user, db),
            expires_in=int(self.config.access_ttl.total_seconds()),
        )

    # ── Decoding ─────────────────────────────────────────────────────

    def _decode(self, token: str, secret: str, expected_type: str) -> dict[str, Any]:
        if not token:
            raise AuthenticationError("Access token required", AuthFailure.MISSING_TOKEN)
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.config.algorithm],
                # jose turns any required claim into a verified one, so `exp`
                # is left optional here and checked against our clock below
                options={"verify_exp": False, "require_sub": True},
            )
        except JWTError:
            raise AuthenticationError("Invalid token", AuthFailure.INVALID_TOKEN)

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise AuthenticationError("Invalid token", AuthFailure.INVALID_TOKEN)
        if self._clock().timestamp() >= exp:
            raise AuthenticationError("Token expired", AuthFailure.EXPIRED)
        if payload.get("type") != expected_type:
            raise AuthenticationError("Invalid token type", AuthFailure.INVALID_TOKEN)
        return payload

    @staticmethod
    def _subject(payload: dict[str, Any]) -> uuid.UUID:
        try:
            return uuid.UUID(str(payload["sub"]))
        except (KeyError, ValueError):
            raise AuthenticationError("Invalid token payload", AuthFailure.INVALID_TOKEN)

    def verify_access_token(self, token: str) -> AccessClaims:
        """Check signature, expiry and type.  Does not look the user up."""
        payload = self._decode(token, self.config.access_secret, ACCESS)
        iat = payload.get("iat")
        return AccessClaims(
            user_id=self._subject(payload),
            email=payload.get("email", ""),
            role_ids=list(payload.get("role_ids") or []),
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if isinstance(iat, (int, float)) else None,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    async def _load_active_user(self, user_id: uuid.UUID, db: AsyncSession) -> User:
        user = await user_service.load_user_with_roles(user_id, db)
        if user is None:
            raise AuthenticationError("User not found or inactive", AuthFailure.PRINCIPAL_NOT_FOUND)
        if not user.is_active:
            raise AuthenticationError("User not found or inactive", AuthFailure.PRINCIPAL_INACTIVE)
        return user

    async def authenticate(self, token: str, db: AsyncSession) -> User:
        """Resolve a bearer access token to an active, fully-loaded user."""
        claims = self.verify_access_token(token)
        return await self._load_active_user(claims.user_id, db)

    async def verify_refresh_token(self, token: str, db: AsyncSession) -> User:
        payload = self._decode(token, self.config.refresh_secret, REFRESH)
        user_id = self._subject(payload)

        if not await refresh_token_service.is_refresh_token_outstanding(user_id, token, db):
            raise AuthenticationError("Refresh token revoked", AuthFailure.REVOKED)

        user = await user_service.load_user_with_roles(user_id, db)
        if user is None:
            raise AuthenticationError("User not found or inactive", AuthFailure.PRINCIPAL_NOT_FOUND)
        if not user.is_active:
            # Should already be empty.  Commit the sweep: the request is about
            # to fail and roll back
            await refresh_token_service.remove_all_refresh_tokens(user.id, db)
            await db.commit()
            raise AuthenticationError("User not found or inactive", AuthFailure.PRINCIPAL_INACTIVE)
        return user

    # ── Lifecycle ────────────────────────────────────────────────────

    async def refresh_access_token(self, refresh_token: str, db: AsyncSession) -> tuple[User, TokenPair]:
        """
        Mint a new access token from a valid refresh token.

        With rotation on, the presented token is removed and a new one
        issued.  Losing the delete race to a concurrent refresh with the
        same token counts as reuse and is rejected.
        """
        user = await self.verify_refresh_token(refresh_token, db)
        access = self.issue_access_token(user)

        if self.config.rotate_refresh_tokens:
            removed = await refresh_token_service.remove_refresh_token(user.id, refresh_token, db)
            if not removed:
                raise AuthenticationError("Refresh token revoked", AuthFailure.REVOKED)
            refresh = await self.issue_refresh_token(user, db)
        else:
            refresh = refresh_token

        return user, TokenPair(
            access_token=access,
            refresh_token=refresh,
            expires_in=int(self.config.access_ttl.total_seconds()),
        )

    async def logout(self, user: User, refresh_token: str, db: AsyncSession) -> bool:
        """Drop one refresh token.  Idempotent: an unknown token is a no-op."""
        return await refresh_token_service.remove_refresh_token(user.id, refresh_token, db)

    async def global_logout(self, user: User, db: AsyncSession) -> int:
        """Drop every refresh token the user holds.  Returns how many were removed."""
        return await refresh_token_service.remove_all_refresh_tokens(user.id, db)


_default_service: TokenService | None = None


def get_token_service() -> TokenService:
    """FastAPI dependency — one service per process, built from settings."""
    global _default_service
    if _default_service is None:
        _default_service = TokenService(TokenConfig.from_settings())
    return _default_service
