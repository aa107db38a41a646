from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import httpx

from userauth.logging import get_logger

logger = get_logger(__name__)


class HttpMethod(str, Enum):
    """Action tag attached to audit events."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class AuditClient:
    """Delivers audit events to the external audit service.

    ``record`` never raises: a delivery failure is reported as ``False`` so the
    caller can decide how to surface it. When auditing is disabled globally
    every call succeeds without I/O.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        url: Optional[str],
        api_key: Optional[str],
        source: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.enabled = enabled
        self.url = url
        self.api_key = api_key
        self.source = source
        self.timeout = timeout
        self._transport = transport

    async def record(self, user_id: str, method: HttpMethod, data: str) -> bool:
        if not self.enabled:
            return True
        if not self.url:
            logger.error("audit_url_missing", user_id=user_id)
            return False
        body = {
            "timeStamp": datetime.now(timezone.utc).isoformat(),
            "userId": user_id,
            "source": self.source,
            "method": HttpMethod(method).value,
            "data": data,
        }
        headers = {"x-api-key": self.api_key or "", "User-Agent": self.source}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "audit_rejected",
                user_id=user_id,
                method=body["method"],
                status_code=exc.response.status_code,
            )
            return False
        except httpx.HTTPError as exc:
            logger.warning(
                "audit_unreachable",
                user_id=user_id,
                method=body["method"],
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        except Exception as exc:
            logger.error(
                "audit_send_failed",
                user_id=user_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        logger.debug("audit_recorded", user_id=user_id, method=body["method"])
        return True
