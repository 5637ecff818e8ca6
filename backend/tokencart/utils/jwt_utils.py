"""JWT utilities - key loading, token signing, verification, revocation and JWKS"""
import json
import secrets
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, NamedTuple, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jose import jwk, jwt
from jose.utils import base64url_decode, base64url_encode

from tokencart.config import Settings
from tokencart.errors import AuthError, AuthFailure, KeyUnavailableError
from tokencart.utils.logger import logger
from tokencart.utils.revocation import RevocationList

TOKEN_TYPE = "access"

_EC_CURVES = {"ES256": ec.SECP256R1, "ES384": ec.SECP384R1}


# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------

class SigningKeys(NamedTuple):
    """Key material for one algorithm. For HS* both halves are the shared secret."""

    algorithm: str
    signing: Any
    verifying: Any


def _read_private_pem(settings: Settings) -> Optional[bytes]:
    if settings.JWT_PRIVATE_KEY:
        return settings.JWT_PRIVATE_KEY.encode()
    if settings.JWT_PRIVATE_KEY_FILE:
        try:
            return Path(settings.JWT_PRIVATE_KEY_FILE).read_bytes()
        except OSError as exc:
            raise KeyUnavailableError(f"cannot read JWT_PRIVATE_KEY_FILE: {exc.strerror}") from exc
    return None


def _generate_private_key(algorithm: str) -> Any:
    if algorithm.startswith("ES"):
        return ec.generate_private_key(_EC_CURVES[algorithm]())
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def load_signing_keys(settings: Settings) -> SigningKeys:
    """Load (or, when allowed, generate) the signing key for ``JWT_ALGORITHM``.

    Raises:
        KeyUnavailableError: no usable key is configured and auto-generation is
            disabled, or the configured key cannot be parsed or does not match
            the algorithm.
    """
    algorithm = settings.JWT_ALGORITHM

    if settings.uses_shared_secret:
        secret = settings.JWT_SECRET_KEY
        if not secret:
            if not settings.JWT_AUTO_GENERATE_KEY:
                raise KeyUnavailableError(f"JWT_SECRET_KEY is required for {algorithm}")
            secret = secrets.token_urlsafe(64)
            logger.warning(
                "JWT_SECRET_KEY not set - generated an ephemeral secret. "
                "All tokens will be invalidated on restart."
            )
        return SigningKeys(algorithm=algorithm, signing=secret, verifying=secret)

    pem = _read_private_pem(settings)
    if pem is None:
        if not settings.JWT_AUTO_GENERATE_KEY:
            raise KeyUnavailableError(f"JWT_PRIVATE_KEY or JWT_PRIVATE_KEY_FILE is required for {algorithm}")
        private_key = _generate_private_key(algorithm)
        logger.warning(
            f"No JWT private key configured - generated an ephemeral {algorithm} key. "
            "All tokens will be invalidated on restart. Set JWT_PRIVATE_KEY to persist it."
        )
    else:
        try:
            private_key = serialization.load_pem_private_key(pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise KeyUnavailableError("configured JWT private key could not be loaded") from exc
        logger.info("JWT signing key loaded from configuration")

    expected = ec.EllipticCurvePrivateKey if algorithm.startswith("ES") else rsa.RSAPrivateKey
    if not isinstance(private_key, expected):
        raise KeyUnavailableError(f"configured JWT private key does not match {algorithm}")

    return SigningKeys(algorithm=algorithm, signing=private_key, verifying=private_key.public_key())


# ---------------------------------------------------------------------------
# Token records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of an access token."""

    principal_id: str
    token_id: str
    issued_at: int
    expires_at: int
    role: str


@dataclass(frozen=True)
class IssuedToken:
    token: str
    token_id: str
    principal_id: str
    issued_at: int
    expires_at: int

    @property
    def expires_in(self) -> int:
        return self.expires_at - self.issued_at


# ---------------------------------------------------------------------------
# Token authority
# ---------------------------------------------------------------------------

class TokenAuthority:
    """Issues, verifies and revokes signed, time-bound access tokens.

    Token lifecycle: issued -> valid -> expired | revoked. Verification checks,
    in order and before any claim is trusted:

    1. shape (three dot-separated segments)          -> ``malformed``
    2. signature over the raw signing input           -> ``bad_signature``
    3. header/payload parse and required claims       -> ``malformed``
    4. ``now >= exp``                                 -> ``expired``
    5. ``jti`` in the revocation set                  -> ``revoked``

    The clock is injectable so expiry can be tested deterministically.
    """

    def __init__(
        self,
        keys: SigningKeys,
        revocations: RevocationList,
        default_ttl: int = 3600,
        key_id: Optional[str] = None,
        default_role: str = "customer",
        clock: Callable[[], float] = time.time,
    ):
        self.algorithm = keys.algorithm
        self.default_ttl = default_ttl
        self.key_id = key_id
        self.default_role = default_role
        self._signing_key = keys.signing
        self._verifier = jwk.construct(keys.verifying, keys.algorithm)
        self._asymmetric = not keys.algorithm.startswith("HS")
        self._revocations = revocations
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        revocations: RevocationList,
        clock: Callable[[], float] = time.time,
    ) -> "TokenAuthority":
        return cls(
            keys=load_signing_keys(settings),
            revocations=revocations,
            default_ttl=settings.JWT_ACCESS_EXPIRE_SECONDS,
            key_id=settings.JWT_KEY_ID,
            default_role=settings.DEFAULT_ROLE,
            clock=clock,
        )

    # -- issuance ------------------------------------------------------------

    def issue(self, principal_id: str, ttl: Optional[int] = None, role: Optional[str] = None) -> IssuedToken:
        """Sign a token for ``principal_id`` valid for ``ttl`` seconds from now."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        now = int(self._clock())
        token_id = uuid.uuid4().hex
        payload: Dict[str, Any] = {
            "sub": principal_id,
            "jti": token_id,
            "iat": now,
            "exp": now + ttl,
            "type": TOKEN_TYPE,
            "role": role or self.default_role,
        }
        headers = {"kid": self.key_id} if self.key_id else None

        token = jwt.encode(payload, self._signing_key, algorithm=self.algorithm, headers=headers)

        logger.info(
            f"Issued token for {principal_id}",
            extra={"principal_id": principal_id, "token_id": token_id, "action": "issue_token"},
        )
        return IssuedToken(
            token=token,
            token_id=token_id,
            principal_id=principal_id,
            issued_at=now,
            expires_at=now + ttl,
        )

    # -- verification --------------------------------------------------------

    def verify(self, token: str) -> TokenClaims:
        """Return the token's claims or raise :class:`AuthError` with the failure reason."""
        claims = self._decode(token)

        if self._clock() >= claims.expires_at:
            raise AuthError(AuthFailure.EXPIRED, principal_id=claims.principal_id)

        if self._revocations.contains(claims.token_id):
            raise AuthError(AuthFailure.REVOKED, principal_id=claims.principal_id)

        return claims

    def _decode(self, token: str) -> TokenClaims:
        """Check shape and signature, then parse. Expiry and revocation are not checked."""
        if not isinstance(token, str):
            raise AuthError(AuthFailure.MALFORMED)

        segments = token.split(".")
        if len(segments) != 3 or not segments[0] or not segments[1]:
            raise AuthError(AuthFailure.MALFORMED)
        header_b64, payload_b64, signature_b64 = segments

        try:
            signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
            raw_signature = signature_b64.encode("ascii")
            signature = base64url_decode(raw_signature)
        except ValueError:
            raise AuthError(AuthFailure.BAD_SIGNATURE)

        # Non-canonical base64 (stray trailing bits, discarded characters) decodes
        # to the same bytes; require the exact encoding that was signed.
        if not signature or base64url_encode(signature) != raw_signature:
            raise AuthError(AuthFailure.BAD_SIGNATURE)
        try:
            signature_ok = self._verifier.verify(signing_input, signature)
        except ValueError:
            # EC keys reject raw signatures of the wrong length
            signature_ok = False
        if not signature_ok:
            raise AuthError(AuthFailure.BAD_SIGNATURE)

        try:
            header = json.loads(base64url_decode(header_b64.encode("ascii")))
            payload = json.loads(base64url_decode(payload_b64.encode("ascii")))
        except ValueError:
            raise AuthError(AuthFailure.MALFORMED)

        if not isinstance(header, dict) or header.get("alg") != self.algorithm:
            raise AuthError(AuthFailure.MALFORMED)
        if not isinstance(payload, dict) or payload.get("type") != TOKEN_TYPE:
            raise AuthError(AuthFailure.MALFORMED)

        try:
            return TokenClaims(
                principal_id=str(payload["sub"]),
                token_id=str(payload["jti"]),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                role=str(payload.get("role") or self.default_role),
            )
        except (KeyError, TypeError, ValueError):
            raise AuthError(AuthFailure.MALFORMED)

    # -- revocation ----------------------------------------------------------

    def revoke(self, token: str) -> bool:
        """Revoke a token before its natural expiry. Idempotent.

        Returns False when the token had already expired (nothing to revoke).
        Raises :class:`AuthError` when the token is not one of ours.
        """
        claims = self._decode(token)
        if self._clock() >= claims.expires_at:
            return False

        self._revocations.add(claims.token_id, claims.expires_at)
        logger.info(
            f"Revoked token jti={claims.token_id}",
            extra={"principal_id": claims.principal_id, "token_id": claims.token_id, "action": "revoke_token"},
        )
        return True

    def refresh(self, token: str, ttl: Optional[int] = None) -> IssuedToken:
        """Exchange a valid token for a fresh one; the presented token is revoked.

        Revoking the presented token is the claim: of several concurrent
        refreshes of one token only the first to record the revocation gets a
        new token, the rest fail as revoked.
        """
        claims = self.verify(token)
        if not self._revocations.add(claims.token_id, claims.expires_at):
            raise AuthError(AuthFailure.REVOKED, principal_id=claims.principal_id)
        issued = self.issue(claims.principal_id, ttl=ttl, role=claims.role)
        logger.info(
            f"Refreshed token jti={claims.token_id} -> jti={issued.token_id}",
            extra={"principal_id": claims.principal_id, "token_id": issued.token_id, "action": "refresh_token"},
        )
        return issued

    def prune_revocations(self) -> int:
        """Forget revocation records for tokens that have expired naturally."""
        return self._revocations.prune(self._clock())

    # -- JWKS ----------------------------------------------------------------

    def jwks(self) -> Dict[str, Any]:
        """Public verification keys in JWKS format (empty for shared-secret algorithms)."""
        if not self._asymmetric:
            return {"keys": []}

        key_entry: Dict[str, Any] = dict(self._verifier.to_dict())
        key_entry["use"] = "sig"
        key_entry["alg"] = self.algorithm
        if self.key_id:
            key_entry["kid"] = self.key_id
        return {"keys": [key_entry]}
