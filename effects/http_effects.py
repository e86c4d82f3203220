"""
HTTP effects: real-mode implementations of the External Effect Gateway.

Responsibility:
- CRM property update via the Vista update endpoint (POST JSON)
- Generic webhook/API integration call configured on the node
- Translate network errors and non-2xx statuses into EffectResult failures
"""

import json
import logging
from typing import Any

import httpx

from shared.models import EffectResult

logger = logging.getLogger(__name__)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class VistaUpdateEffect:
    """Updates a property in the Vista CRM through its update endpoint."""

    def __init__(
        self,
        url: str,
        auth_token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = (url or "").strip()
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Content-Type": "application/json"}
        if auth_token:
            self.headers["Authorization"] = f"Bearer {auth_token}"

    async def execute(self, payload: dict[str, Any]) -> EffectResult:
        if not self.url:
            return EffectResult(success=False, error="VISTA_UPDATE_URL não configurada")

        try:
            logger.info("Calling Vista update: %s codigo=%s", self.url, payload.get("codigo"))

            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=payload, headers=self.headers)

                body = _response_body(response)
                if response.status_code >= 400:
                    logger.error("Vista update error %s: %s", response.status_code, response.text)
                    error = body.get("error") if isinstance(body, dict) else None
                    return EffectResult(
                        success=False,
                        data={"status_code": response.status_code, "body": body},
                        error=str(error or f"Vista retornou status {response.status_code}"),
                    )

                if isinstance(body, dict) and body.get("success") is False:
                    return EffectResult(success=False, data=body, error=str(body.get("error") or "Falha no Vista"))
                return EffectResult(success=True, data=body)

        except httpx.RequestError as e:
            logger.error("Network error calling Vista '%s': %r", self.url, e)
            return EffectResult(success=False, error=f"Erro de rede ao chamar Vista: {e}")


class HttpIntegrationEffect:
    """Generic webhook/API call described by an integration node."""

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self.transport = transport

    def _request_body(self, body: str | None) -> dict[str, Any]:
        if not body:
            return {"json": {}}
        try:
            return {"json": json.loads(body)}
        except ValueError:
            return {"content": body}

    async def execute(self, payload: dict[str, Any]) -> EffectResult:
        url = str(payload.get("url") or "").strip()
        if not url:
            return EffectResult(success=False, error="URL da integração não configurada")

        method = str(payload.get("method") or "POST").upper()
        headers = {"Content-Type": "application/json", **(payload.get("headers") or {})}
        request_kwargs: dict[str, Any] = {"headers": headers}
        if method != "GET":
            request_kwargs.update(self._request_body(payload.get("body")))

        try:
            logger.info("Calling integration: %s %s", method, url)

            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, **request_kwargs)

                data = {"status_code": response.status_code, "body": _response_body(response)}
                if response.status_code >= 400:
                    logger.error("Integration error %s: %s", response.status_code, response.text)
                    return EffectResult(
                        success=False,
                        data=data,
                        error=f"Integração retornou status {response.status_code}",
                    )
                return EffectResult(success=True, data=data)

        except httpx.RequestError as e:
            logger.error("Network error calling integration '%s': %r", url, e)
            return EffectResult(success=False, error=f"Erro de rede na integração: {e}")
