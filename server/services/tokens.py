"""API key validation and JWT issuance for API clients."""

import hashlib
import hmac
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any

from jose import jwt, JWTError

from core.config import Settings
from core.logging import get_logger

logger = get_logger(__name__)


def key_fingerprint(api_key: str) -> str:
    """Short hash used to identify a key in logs without exposing it."""
    return hashlib.sha256(api_key.encode()).hexdigest()[:12]


class TokenService:
    """Exchanges allow-listed API keys for signed, time-bounded bearer tokens."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._algorithm = "HS256"

    def is_valid_api_key(self, api_key: Optional[str]) -> bool:
        """Constant-time membership check against the configured allow-list."""
        if not api_key:
            return False
        candidate = api_key.encode()
        matched = False
        # No early exit: every configured key is compared.
        for valid_key in self.settings.api_keys:
            if hmac.compare_digest(candidate, valid_key.encode()):
                matched = True
        return matched

    def issue_token(self, api_key: str, now: Optional[datetime] = None) -> str:
        """Create a JWT for ``api_key`` valid for TOKEN_EXPIRE_DAYS."""
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "api_key": api_key,
            "role": self.settings.token_role,
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "iat": issued_at,
            "exp": issued_at + timedelta(days=self.settings.token_expire_days),
        }
        logger.info("Token issued", key=key_fingerprint(api_key))
        return jwt.encode(payload, self.settings.jwt_signing_key, algorithm=self._algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Verify signature, issuer, audience and lifetime.
        Returns the claims, or None if the token is not acceptable.
        """
        try:
            return jwt.decode(
                token,
                self.settings.jwt_signing_key,
                algorithms=[self._algorithm],
                audience=self.settings.jwt_audience,
                issuer=self.settings.jwt_issuer,
            )
        except JWTError as e:
            logger.debug("Token verification failed", error=str(e))
            return None
