"""Identity provider adapter: bearer token verification."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
import requests

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class JwtValidator:
    def __init__(
        self,
        jwks_url: Optional[str] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        secret: Optional[str] = None,
    ):
        self.jwks_url = jwks_url
        self.issuer = issuer
        self.audience = audience
        self.secret = secret
        self._jwks_cache: Optional[Dict[str, Any]] = None
        self._jwks_last_fetch: Optional[datetime] = None

    @property
    def configured(self) -> bool:
        return bool(self.secret or self.jwks_url)

    def _fetch_jwks(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        if self._jwks_cache and self._jwks_last_fetch and (now - self._jwks_last_fetch) < timedelta(hours=1):
            return self._jwks_cache

        try:
            response = requests.get(self.jwks_url, timeout=10)
            response.raise_for_status()
            self._jwks_cache = response.json()
            self._jwks_last_fetch = now
            return self._jwks_cache
        except Exception as e:
            logger.error(f"Failed to fetch JWKS from {self.jwks_url}: {e}")
            if self._jwks_cache:
                return self._jwks_cache
            raise IdentityError("Identity provider unavailable", status_code=503)

    def validate_token(self, token: str) -> Dict[str, Any]:
        """Verify signature, expiry, issuer and audience; return the claims."""
        if not self.configured:
            raise IdentityError("Identity provider not configured", status_code=503)
        try:
            if self.secret and not self.jwks_url:
                return jwt.decode(
                    token,
                    self.secret,
                    algorithms=["HS256"],
                    audience=self.audience,
                    issuer=self.issuer,
                    options={"require": ["sub", "exp"]},
                )

            kid = jwt.get_unverified_header(token).get("kid")
            public_key = None
            for key in self._fetch_jwks().get("keys", []):
                if key.get("kid") == kid:
                    public_key = jwt.algorithms.RSAAlgorithm.from_jwk(key)
                    break
            if public_key is None:
                raise IdentityError("Invalid token key ID")

            return jwt.decode(
                token,
                public_key,
                algorithms=["RS256"],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise IdentityError("Token expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            raise IdentityError("Invalid token")
