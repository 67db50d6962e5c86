from __future__ import annotations

import logging
from typing import Literal

import httpx

from caas_broker.config import Settings
from caas_broker.errors import ClusterCallError, ErrorCategory

logger = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]

_RETRYABLE_STATUSES = {408, 429}

NAMESPACES_PATH = "/api/v1/namespaces"
RBAC_NAMESPACES_PATH = "/apis/rbac.authorization.k8s.io/v1/namespaces"


def classify_status(status_code: int | None) -> ErrorCategory:
    if status_code is None or status_code >= 500 or status_code in _RETRYABLE_STATUSES:
        return "retryable"
    return "fatal"


class ClusterClient:
    """Thin HTTP client for the cluster API.

    Non-2xx responses and transport failures are raised as ``ClusterCallError``.
    No retries are attempted here.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        verify: bool = True,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.Client(headers=headers, verify=verify, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> "ClusterClient":
        return cls(
            base_url=settings.api_url,
            token=settings.api_token,
            verify=settings.verify_tls,
            timeout=settings.http_timeout,
            transport=transport,
        )

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def send(self, url: str, body: str | None = None, method: HttpMethod = "GET") -> str:
        logger.debug("Cluster request %s %s", method, url)
        headers = {"Content-Type": "application/yaml"} if body is not None else None
        try:
            response = self._http.request(method, url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise ClusterCallError(
                method=method,
                url=url,
                status_code=None,
                body=str(exc),
                category=classify_status(None),
            ) from exc

        if not response.is_success:
            logger.debug("Cluster response %s %s -> %s", method, url, response.status_code)
            raise ClusterCallError(
                method=method,
                url=url,
                status_code=response.status_code,
                body=response.text,
                category=classify_status(response.status_code),
            )
        return response.text

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ClusterClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
