"""Bearer token validation against an OIDC provider's JWKS."""

from typing import Any, Dict, Optional

import jwt
from pydantic import BaseModel

from . import log

logger = log.get_logger(__name__)


class AuthClientConfig(BaseModel):
    jwk_url: Optional[str] = None
    audience: Optional[str] = None
    issuer: Optional[str] = None


class AuthClient:
    def __init__(self, config: AuthClientConfig):
        self.config = config
        self._jwk_client = jwt.PyJWKClient(config.jwk_url) if config.jwk_url else None
        if not self._jwk_client:
            logger.warning("AUTH_OIDC_JWK_URL not set, every token will be rejected")

    def decode_jwt(self, token: str) -> Optional[Dict[str, Any]]:
        """Return the token's claims, or None when it does not verify."""
        if not self._jwk_client:
            return None
        try:
            signing_key = self._jwk_client.get_signing_key_from_jwt(token)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256", "ES256"],
                audience=self.config.audience,
                issuer=self.config.issuer,
                options={"verify_aud": bool(self.config.audience)},
            )
        except jwt.PyJWTError as e:
            logger.info(f"Rejected bearer token: {e}")
            return None
