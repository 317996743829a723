import logging
from typing import Any

import requests

from meshsync.sync.errors import RemoteRequestError

API_PREFIX = "/api/v1"

logger = logging.getLogger("remote")


class RemoteClient:
    """Thin blocking client for the hosted library server's REST API."""

    def __init__(self, base_url: str, token: str = "", timeout: int = 30):
        if not base_url:
            raise RemoteRequestError("remote_base_url_missing")
        self.base_url = base_url.rstrip("/")
        self.token = token or ""
        self.timeout = timeout

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{API_PREFIX}/{endpoint.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, method: str, endpoint: str, **kwargs: Any) -> requests.Response:
        url = self._url(endpoint)
        try:
            res = requests.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise RemoteRequestError(f"remote_unreachable: {method} {endpoint}: {exc}") from exc
        if res.status_code >= 400:
            text = (res.text or "").strip()
            logger.warning("remote_request_failed method=%s endpoint=%s status=%s", method, endpoint, res.status_code)
            raise RemoteRequestError(
                f"remote_request_failed_status_{res.status_code}: {method} {endpoint}: {text[:200]}",
                status_code=res.status_code,
            )
        return res

    def request(self, method: str, endpoint: str, data: dict[str, Any] | None = None) -> Any:
        """Send one API call; GET data goes to the query string, anything else as a JSON body."""
        method = method.upper()
        if method == "GET":
            res = self._send(method, endpoint, params=data)
        elif data is None:
            res = self._send(method, endpoint)
        else:
            res = self._send(method, endpoint, json=data)

        text = (res.text or "").strip()
        if not text:
            return None
        try:
            return res.json()
        except ValueError:
            # Some endpoints answer plain text on success.
            if text in {"true", "null", "ok"}:
                return None
            raise RemoteRequestError(f"remote_non_json_response: {method} {endpoint}: {text[:200]}")

    def list_all(self, endpoint: str, page_size: int = 100) -> list[dict[str, Any]]:
        page = 1
        items: list[dict[str, Any]] = []
        while True:
            payload = self.request("GET", endpoint, {"page": page, "page_size": page_size})
            batch = payload.get("items", []) if isinstance(payload, dict) else payload
            if not isinstance(batch, list):
                raise RemoteRequestError(f"remote_invalid_listing: {endpoint}")
            items.extend(item for item in batch if isinstance(item, dict))
            if len(batch) < page_size:
                break
            page += 1
        return items

    def upload(self, endpoint: str, file_name: str, content: bytes, data: dict[str, Any] | None = None) -> Any:
        files = {"file": (file_name, content, "application/octet-stream")}
        res = self._send("POST", endpoint, data=data or {}, files=files)
        return res.json() if (res.text or "").strip() else None

    def download(self, endpoint: str) -> bytes:
        return self._send("GET", endpoint).content
