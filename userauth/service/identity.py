from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Union

from userauth.logging import get_logger
from userauth.service import tokens
from userauth.service.errors import ForbiddenError, NoTokenError, ServerError
from userauth.service.tokens import TokenPayload

logger = get_logger(__name__)


class Operation(str, Enum):
    """Operation ids understood by this service's routes."""

    USER_UPSERT = "UserUpsert"
    USER_DELETE = "UserDelete"
    USER_LIST = "UserList"


ALL_OPERATIONS = tuple(op.value for op in Operation)


@dataclass(frozen=True)
class Identity:
    """Caller identity rebuilt from a verified token on every request."""

    user_id: str
    operations: FrozenSet[str]
    audit: bool

    @classmethod
    def from_payload(cls, payload: TokenPayload) -> "Identity":
        return cls(
            user_id=payload.sub,
            operations=frozenset(payload.operations),
            audit=payload.audit,
        )


def identity_from_token(
    token: Optional[str], secret: str, *, now: Optional[float] = None
) -> Identity:
    """Turn the raw ``x-auth-token`` header value into an Identity.

    Never consults the credential store: all authority comes from the token.
    """
    if token is None or not token.strip():
        raise NoTokenError()
    payload = tokens.decode(token.strip(), secret, now=now)
    return Identity.from_payload(payload)


def _operation_id(operation: Union[Operation, str]) -> str:
    # str-valued enum members hash by name, so compare on the raw value
    if isinstance(operation, Enum):
        return operation.value
    return operation


def check(identity: Identity, required_operation: Union[Operation, str]) -> bool:
    """Allow iff the operation id is one the identity was granted."""
    return _operation_id(required_operation) in identity.operations


def authorize(
    identity: Identity, required_operation: Union[Operation, str], message: str
) -> None:
    """Raise ForbiddenError(message) unless ``identity`` may perform the operation.

    Any failure while evaluating the check is a server error, never an allow.
    """
    try:
        allowed = check(identity, required_operation)
    except Exception as exc:
        logger.error(
            "capability_check_failed",
            operation=str(required_operation),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise ServerError() from exc
    if not allowed:
        logger.warning(
            "capability_denied",
            user_id=identity.user_id,
            operation=_operation_id(required_operation),
        )
        raise ForbiddenError(message)
