"""HS256 bearer token codec.

Tokens are standard three-segment JWTs (``header.payload.signature``, each
segment unpadded base64url). The payload carries the subject id, the
operation ids granted at issuance, the subject's audit flag and the
``iat``/``exp`` epoch seconds. Operations are a snapshot: changing a user's
grants server-side has no effect on tokens already issued.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

from userauth.logging import get_logger
from userauth.service.errors import ExpiredTokenError, InvalidTokenError

logger = get_logger(__name__)

ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenPayload:
    sub: str
    operations: Tuple[str, ...]
    audit: bool
    iat: int
    exp: int

    def to_claims(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "operations": list(self.operations),
            "audit": self.audit,
            "iat": self.iat,
            "exp": self.exp,
        }

    @classmethod
    def from_claims(cls, claims: Any) -> "TokenPayload":
        if not isinstance(claims, dict):
            raise InvalidTokenError()
        sub = claims.get("sub")
        operations = claims.get("operations")
        audit = claims.get("audit")
        iat = claims.get("iat")
        exp = claims.get("exp")
        if not isinstance(sub, str) or not sub:
            raise InvalidTokenError()
        if not isinstance(operations, list) or not all(
            isinstance(op, str) for op in operations
        ):
            raise InvalidTokenError()
        if not isinstance(audit, bool):
            raise InvalidTokenError()
        if not _is_timestamp(iat) or not _is_timestamp(exp) or exp <= iat:
            raise InvalidTokenError()
        return cls(
            sub=sub, operations=tuple(operations), audit=audit, iat=iat, exp=exp
        )


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _sign(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return _encode_segment(digest)


def encode(payload: TokenPayload, secret: str) -> str:
    header = {"alg": ALGORITHM, "typ": "JWT"}
    header_enc = _encode_segment(json.dumps(header, separators=(",", ":")).encode())
    payload_enc = _encode_segment(
        json.dumps(payload.to_claims(), separators=(",", ":")).encode()
    )
    signing_input = f"{header_enc}.{payload_enc}"
    return f"{signing_input}.{_sign(signing_input, secret)}"


def issue(
    user_id: str,
    operations: Iterable[str],
    audit: bool,
    *,
    secret: str,
    ttl_seconds: int,
    now: Optional[float] = None,
) -> Tuple[str, TokenPayload]:
    """Build, sign and return a token together with its payload."""
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")
    issued_at = int(time.time() if now is None else now)
    payload = TokenPayload(
        sub=user_id,
        operations=tuple(operations),
        audit=bool(audit),
        iat=issued_at,
        exp=issued_at + int(ttl_seconds),
    )
    return encode(payload, secret), payload


def decode(token: str, secret: str, *, now: Optional[float] = None) -> TokenPayload:
    """Verify ``token`` and return its payload.

    Raises:
        InvalidTokenError: malformed structure, non-HS256 header, bad
            signature or malformed claims.
        ExpiredTokenError: signature is valid but ``now >= exp``.
    """
    try:
        header_b64, payload_b64, sig_b64 = token.split(".")
    except (AttributeError, ValueError):
        raise InvalidTokenError() from None

    # Reject anything but HS256 before looking at the signature
    try:
        header = json.loads(_decode_segment(header_b64))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        logger.warning("jwt_header_decode_failed")
        raise InvalidTokenError() from None
    if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
        logger.warning(
            "jwt_invalid_algorithm",
            alg=header.get("alg") if isinstance(header, dict) else None,
        )
        raise InvalidTokenError()

    expected_sig = _sign(f"{header_b64}.{payload_b64}", secret)
    if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
        raise InvalidTokenError()

    try:
        claims = json.loads(_decode_segment(payload_b64))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        logger.warning("jwt_payload_decode_failed", error=str(exc))
        raise InvalidTokenError() from None
    payload = TokenPayload.from_claims(claims)

    current = time.time() if now is None else now
    if current >= payload.exp:
        raise ExpiredTokenError()
    return payload
