from __future__ import annotations

from typing import List, Optional, Sequence

import httpx

from userauth.logging import get_logger
from userauth.service.errors import RoleResolutionUnavailableError

logger = get_logger(__name__)


class RoleResolver:
    """Expands role ids into the operation ids they confer via the role service.

    Any failure (unreachable service, error status, unexpected response shape)
    raises ``RoleResolutionUnavailableError``; an empty result is only ever
    returned when no roles were asked for or the service genuinely maps them
    to nothing.
    """

    def __init__(
        self,
        *,
        url: Optional[str],
        api_key: Optional[str],
        source: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.source = source
        self.timeout = timeout
        self._transport = transport

    async def resolve(self, role_ids: Sequence[str]) -> List[str]:
        if not role_ids:
            return []
        if not self.url:
            logger.error("role_service_not_configured", role_count=len(role_ids))
            raise RoleResolutionUnavailableError("Role service is not configured.")
        headers = {"x-api-key": self.api_key or "", "User-Agent": self.source}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.url, json={"roleIds": list(role_ids)}, headers=headers
                )
                response.raise_for_status()
                operations = response.json()
        except httpx.HTTPError as exc:
            logger.error(
                "role_service_unreachable",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise RoleResolutionUnavailableError(
                "RBAC connection refused. Service is probably not running."
            ) from exc
        except ValueError as exc:
            logger.error("role_service_bad_response", error=str(exc))
            raise RoleResolutionUnavailableError(
                "Role service returned an unreadable response."
            ) from exc
        if not isinstance(operations, list) or not all(
            isinstance(op, str) for op in operations
        ):
            logger.error(
                "role_service_bad_response", response_type=type(operations).__name__
            )
            raise RoleResolutionUnavailableError(
                "Role service returned an unexpected response."
            )
        return operations
