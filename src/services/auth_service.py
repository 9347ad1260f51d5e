"""Token issuance/verification and password hashing.

Access and refresh credentials are HS256 JWTs signed with separate secrets
and bound to the configured issuer and audience. Verification collapses
every failure (expiry, signature, issuer, audience, type, missing claims)
into ``None`` so callers can only ever see "valid claims" or "unauthenticated".
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional
from uuid import uuid4

import bcrypt
import jwt
import structlog

from src.config import get_settings
from src.models.auth import TokenClaims
from src.models.user import Role, User

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
RESET_TOKEN_BYTES = 32
_REQUIRED_CLAIMS = ["exp", "iat", "sub", "iss", "aud", "jti"]


@lru_cache
def _dummy_hash() -> str:
    """Hash compared against when the account does not exist.

    Keeps the unknown-email path as slow as the wrong-password path.
    """
    return bcrypt.hashpw(b"blog-timing-equalizer", bcrypt.gensalt()).decode("utf-8")


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest used to store and look up opaque tokens."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_reset_token() -> str:
    """Random reset token unrelated to any credential (256 bits)."""
    return secrets.token_hex(RESET_TOKEN_BYTES)


class AuthService:
    """Service for password hashing and access/refresh credential signing."""

    def __init__(self):
        self.settings = get_settings()

    # -----------------------------------------------------------------------
    # Passwords
    # -----------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string
        """
        salt = bcrypt.gensalt(rounds=self.settings.bcrypt_rounds)
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        A malformed stored hash (e.g. the placeholder of an external-identity
        account) never matches.
        """
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError:
            return False

    def authenticate(self, password: str, password_hash: Optional[str]) -> bool:
        """Check a login password with timing equalization.

        Always runs exactly one bcrypt comparison, against a dummy hash when
        the account was not found.
        """
        if password_hash is None:
            self.verify_password(password, _dummy_hash())
            return False
        return self.verify_password(password, password_hash)

    # -----------------------------------------------------------------------
    # Token issuance
    # -----------------------------------------------------------------------

    @property
    def access_token_lifetime(self) -> timedelta:
        return self.settings.access_token_lifetime

    def refresh_token_lifetime(self, remember_me: bool) -> timedelta:
        """Long lifetime when the caller chose remember-me, short otherwise."""
        if remember_me:
            return self.settings.refresh_token_lifetime_long
        return self.settings.refresh_token_lifetime_short

    def issue_access(self, user: User, now: Optional[datetime] = None) -> str:
        """Create a signed short-lived access credential.

        Args:
            user: Identity to encode (id, role, email, name)
            now: Issuance time, defaults to the current UTC time

        Returns:
            Encoded JWT string
        """
        token = self._encode(
            user,
            token_type=ACCESS_TOKEN_TYPE,
            secret=self.settings.jwt_access_secret,
            lifetime=self.access_token_lifetime,
            now=now,
        )
        logger.debug(
            "access_token_created",
            user_id=str(user.id),
            expires_seconds=int(self.access_token_lifetime.total_seconds()),
        )
        return token

    def issue_refresh(
        self, user: User, remember_me: bool, now: Optional[datetime] = None
    ) -> str:
        """Create a signed refresh credential with the remember-me lifetime."""
        return self._encode(
            user,
            token_type=REFRESH_TOKEN_TYPE,
            secret=self.settings.jwt_refresh_secret,
            lifetime=self.refresh_token_lifetime(remember_me),
            now=now,
        )

    def _encode(
        self,
        user: User,
        token_type: str,
        secret: str,
        lifetime: timedelta,
        now: Optional[datetime],
    ) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "role": user.role.value,
            "email": user.email,
            "name": user.name,
            "typ": token_type,
            "jti": uuid4().hex,
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "iat": now,
            "exp": now + lifetime,
        }
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    # -----------------------------------------------------------------------
    # Token verification
    # -----------------------------------------------------------------------

    def verify_access(self, token: str) -> Optional[TokenClaims]:
        """Verify an access credential. Returns claims or None on any failure."""
        return self._decode(token, self.settings.jwt_access_secret, ACCESS_TOKEN_TYPE)

    def verify_refresh(self, token: str) -> Optional[TokenClaims]:
        """Verify a refresh credential. Returns claims or None on any failure."""
        return self._decode(token, self.settings.jwt_refresh_secret, REFRESH_TOKEN_TYPE)

    def _decode(self, token: str, secret: str, expected_type: str) -> Optional[TokenClaims]:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                audience=self.settings.jwt_audience,
                issuer=self.settings.jwt_issuer,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError as e:
            logger.debug("token_rejected", token_type=expected_type, reason=type(e).__name__)
            return None

        if payload.get("typ") != expected_type:
            logger.debug("token_rejected", token_type=expected_type, reason="wrong_type")
            return None

        try:
            return TokenClaims(
                subject=payload["sub"],
                role=Role(payload.get("role")),
                token_type=payload["typ"],
                jti=payload["jti"],
                email=payload.get("email"),
                name=payload.get("name"),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (ValueError, TypeError):
            logger.debug("token_rejected", token_type=expected_type, reason="bad_claims")
            return None
