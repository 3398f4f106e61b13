"""
Bearer token authentication

Tokens are issued by the external OpenID Connect provider. With
OIDC_JWKS_URL set they are verified against the provider's signing keys;
otherwise (development, tests) against the shared AUTH_JWT_SECRET.
"""

import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from config import Config
from database import get_db
from models import User
from services.user_service import user_service
from utils.exception_handler import AuthenticationError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class TokenVerifier:

    def __init__(self):
        self._jwks_client: Optional[jwt.PyJWKClient] = None

    def _get_jwks_client(self) -> jwt.PyJWKClient:
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(Config.OIDC_JWKS_URL, cache_keys=True)
        return self._jwks_client

    def decode(self, token: str) -> Dict[str, Any]:
        options = {"verify_aud": bool(Config.OIDC_AUDIENCE), "require": ["sub", "exp"]}
        try:
            if Config.OIDC_JWKS_URL:
                signing_key = self._get_jwks_client().get_signing_key_from_jwt(token)
                claims = jwt.decode(
                    token,
                    signing_key.key,
                    algorithms=["RS256"],
                    audience=Config.OIDC_AUDIENCE,
                    issuer=Config.OIDC_ISSUER,
                    options=options,
                )
            else:
                claims = jwt.decode(
                    token,
                    Config.AUTH_JWT_SECRET,
                    algorithms=[Config.AUTH_JWT_ALGORITHM],
                    audience=Config.OIDC_AUDIENCE,
                    options=options,
                )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.PyJWTError as e:
            logger.warning(f"⚠️ AUTH_TOKEN_REJECTED: {e}")
            raise AuthenticationError("Invalid authentication token")

        if not claims.get("sub"):
            raise AuthenticationError("Invalid authentication token")
        return claims


token_verifier = TokenVerifier()


def get_token_claims(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")
    return token_verifier.decode(credentials.credentials)


def get_current_user(claims: Dict[str, Any] = Depends(get_token_claims), db: Session = Depends(get_db)) -> User:
    return user_service.upsert_from_claims(db, claims)
