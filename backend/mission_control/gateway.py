"""HTTP pass-through to the OpenClaw gateway's invoke endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from mission_control import config
from mission_control.log_redact import httpx_event_hooks

logger = logging.getLogger("mission_control.gateway")

INVOKE_PATH = "/api/v1/invoke"


@dataclass(frozen=True)
class GatewayReply:
    status_code: int
    body: Any


def _headers() -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if config.OPENCLAW_GATEWAY_TOKEN:
        headers["Authorization"] = f"Bearer {config.OPENCLAW_GATEWAY_TOKEN}"
    return headers


async def invoke(method: str, params: Any = None, *, transport: httpx.AsyncBaseTransport | None = None) -> GatewayReply:
    """Forward ``{method, params}`` to the gateway and relay its answer.

    Non-2xx answers are relayed with the gateway's status code. Transport
    failures raise :class:`httpx.HTTPError` for the route to convert.
    """
    url = config.gateway_http_url() + INVOKE_PATH
    timeout = httpx.Timeout(timeout=config.GATEWAY_TIMEOUT_SECONDS)
    async with httpx.AsyncClient(timeout=timeout, transport=transport, event_hooks=httpx_event_hooks()) as client:
        response = await client.post(url, json={"method": method, "params": params}, headers=_headers())

    if response.is_success:
        try:
            return GatewayReply(response.status_code, {"result": response.json()})
        except ValueError:
            logger.warning("Gateway returned non-JSON body for method=%s", method)
            return GatewayReply(502, {"error": "Gateway returned a non-JSON response"})

    detail = response.text.strip() or "Gateway request failed"
    logger.warning("Gateway method=%s failed with status=%d", method, response.status_code)
    return GatewayReply(response.status_code, {"error": detail[:500]})
