from __future__ import annotations

import ipaddress
import logging
import os
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger("web")

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_nets(raw: str) -> list[IPNetwork]:
    nets: list[IPNetwork] = []
    for part in (raw or "").split(","):
        s = part.strip()
        if not s:
            continue
        try:
            nets.append(ipaddress.ip_network(s, strict=False))
        except ValueError as exc:
            raise ValueError(f"allowed_net_invalid: {s}") from exc
    return nets


class NetworkAllowlistMiddleware(BaseHTTPMiddleware):
    """Reject requests whose source address is outside ALLOWED_NETS.

    An empty allowlist admits everyone; a malformed one admits no one.
    """

    def __init__(self, app, allowed_nets: Iterable[str]):
        super().__init__(app)
        self.allowed: list[IPNetwork] = []
        self.allowlist_error: str | None = None
        try:
            self.allowed = parse_nets(",".join(allowed_nets))
        except ValueError as exc:
            self.allowlist_error = str(exc)
            logger.error("allowlist_invalid error=%s", exc)

    async def dispatch(self, request: Request, call_next):
        if self.allowlist_error:
            return JSONResponse({"detail": f"allowlist_misconfigured: {self.allowlist_error}"}, status_code=503)

        client_host = request.client.host if request.client else ""
        try:
            ip = ipaddress.ip_address(client_host)
        except ValueError:
            return JSONResponse({"detail": "source_address_unrecognized"}, status_code=403)

        if self.allowed and not any(ip in net for net in self.allowed):
            logger.warning("request_rejected source=%s path=%s", client_host, request.url.path)
            return JSONResponse({"detail": "source_address_not_allowed"}, status_code=403)

        return await call_next(request)


def get_allowed_nets() -> list[str]:
    raw = os.environ.get("ALLOWED_NETS", "127.0.0.1/32,::1/128")
    return [s.strip() for s in raw.split(",") if s.strip()]
