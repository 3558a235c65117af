"""
Identity provider token verification.

Handles:
- HS256 verification with a shared secret (development/testing)
- RS256 verification against the provider's JWKS (production), with
  issuer/audience validation and a refetch on unknown key ids (rotation)
- Subject extraction from the 'sub' claim

The verifier is consumed through the IdentityVerifier protocol so the gate
never depends on how tokens are checked.
"""
import json
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
import jwt
from jwt.algorithms import RSAAlgorithm

from studyhub.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"
FIREBASE_JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
JWKS_TTL_SECONDS = 3600


@dataclass(frozen=True)
class VerifiedIdentity:
    subject_id: str
    email: Optional[str] = None


class IdentityVerificationError(Exception):
    """Token is invalid, expired, malformed or cannot be checked."""


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> VerifiedIdentity:
        """
        Validate a bearer token and return the stable subject.

        Raises:
            IdentityVerificationError: on any verification failure
        """
        ...


def resolve_jwks_url(issuer: Optional[str], jwks_url: Optional[str]) -> Optional[str]:
    if jwks_url:
        return jwks_url
    if not issuer:
        return None
    if issuer.startswith(FIREBASE_ISSUER_PREFIX):
        return FIREBASE_JWKS_URL
    return f"{issuer.rstrip('/')}/.well-known/jwks.json"


def _default_fetch_jwks(url: str) -> Dict[str, Any]:
    response = httpx.get(url, timeout=5.0)
    response.raise_for_status()
    return response.json()


class JwtIdentityVerifier:
    """Verify identity-provider JWTs with PyJWT."""

    def __init__(
        self,
        *,
        secret: Optional[str] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        jwks_url: Optional[str] = None,
        jwks_fetcher: Optional[Callable[[str], Dict[str, Any]]] = None,
        leeway: int = 0,
    ):
        self.secret = secret
        self.issuer = issuer
        self.audience = audience
        self.jwks_url = resolve_jwks_url(issuer, jwks_url)
        self.leeway = leeway
        self._fetch_jwks = jwks_fetcher or _default_fetch_jwks
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at = 0.0

    @classmethod
    def from_settings(cls, cfg) -> "JwtIdentityVerifier":
        return cls(
            secret=cfg.AUTH_JWT_SECRET,
            issuer=cfg.AUTH_ISSUER,
            audience=cfg.AUTH_AUDIENCE,
            jwks_url=cfg.AUTH_JWKS_URL,
        )

    def verify(self, token: str) -> VerifiedIdentity:
        if not self.secret and not self.jwks_url:
            raise ConfigurationError("AUTH_JWT_SECRET or AUTH_JWKS_URL/AUTH_ISSUER must be configured")

        try:
            if self.secret:
                claims = self._decode(token, self.secret, ["HS256"])
            else:
                claims = self._decode(token, self._public_key_for(token), ["RS256"])
        except jwt.ExpiredSignatureError as e:
            raise IdentityVerificationError("Token expired") from e
        except jwt.PyJWTError as e:
            raise IdentityVerificationError(f"Invalid token: {e}") from e

        subject_id = claims.get("sub")
        if not subject_id or not isinstance(subject_id, str):
            raise IdentityVerificationError("No 'sub' claim in token")

        return VerifiedIdentity(subject_id=subject_id, email=claims.get("email"))

    def _decode(self, token: str, key, algorithms) -> Dict[str, Any]:
        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=self.audience,
            issuer=self.issuer,
            leeway=self.leeway,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_aud": self.audience is not None,
                "verify_iss": self.issuer is not None,
                "require": ["exp", "sub"],
            },
        )

    def _public_key_for(self, token: str):
        kid = jwt.get_unverified_header(token).get("kid")
        if not kid:
            raise jwt.InvalidTokenError("Token missing 'kid' in header")

        key = self._find_key(self._get_jwks(), kid)
        if key is None:
            # Unknown kid: the provider may have rotated keys since the last fetch
            key = self._find_key(self._get_jwks(force=True), kid)
        if key is None:
            raise jwt.InvalidTokenError(f"Key ID '{kid}' not found in JWKS")

        return RSAAlgorithm.from_jwk(json.dumps(key))

    @staticmethod
    def _find_key(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                return key
        return None

    def _get_jwks(self, force: bool = False) -> Dict[str, Any]:
        fresh = self._jwks is not None and (time.time() - self._jwks_fetched_at) < JWKS_TTL_SECONDS
        if fresh and not force:
            return self._jwks
        try:
            self._jwks = self._fetch_jwks(self.jwks_url)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch JWKS: {e}")
            raise jwt.InvalidTokenError("Signing keys unavailable") from e
        self._jwks_fetched_at = time.time()
        return self._jwks
