"""
MODULE OVERVIEW:
The gateway URL resolver.

WHAT IS HAPPENING HERE:
Before any websocket is opened the bot asks the HTTP API where to connect:
`GET /gateway/index?compress=0|1` with the bot token. The API wraps every
answer as `{code, message, data}`; a non-zero `code` is an API-level failure
even when the HTTP status is 200.
"""
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from kook_gateway.shared.config import settings
from kook_gateway.shared.errors import GatewayResolveError


class GatewayIndexData(BaseModel):
    url: str


class ApiEnvelope(BaseModel):
    code: int
    message: str = ""
    data: Any = None


class GatewayResolver:
    def __init__(
        self,
        token: str,
        compress: bool = False,
        api_base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_s: float | None = None,
    ):
        self.token = token
        self.compress = compress
        self.api_base_url = (api_base_url or settings.API_BASE_URL).rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_s or settings.RESOLVE_TIMEOUT_S)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def resolve(self) -> str:
        try:
            response = await self.client.get(
                f"{self.api_base_url}/gateway/index",
                headers={"Authorization": f"Bot {self.token}"},
                params={"compress": 1 if self.compress else 0},
            )
            response.raise_for_status()
            envelope = ApiEnvelope.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise GatewayResolveError(str(e)) from e

        if envelope.code != 0:
            raise GatewayResolveError(envelope.message, code=envelope.code)
        try:
            return GatewayIndexData.model_validate(envelope.data).url
        except ValidationError as e:
            raise GatewayResolveError(str(e), code=envelope.code) from e
