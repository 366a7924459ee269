# Overview: Outbound HTTP client for pushing hub data to branch nodes.

"""
Branch API client.

Every request carries the branch's outbound credential as a Bearer token and
as X-API-Key, and runs with a bounded timeout (longer for full snapshots).
Transport errors, timeouts and non-2xx answers raise SyncFailedError so the
caller can close its sync log `failed`; nothing is retried here.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import httpx
from flask import current_app

from ..errors import SyncFailedError
from ..models import Branch


# sync_type -> (method, endpoint relative to the branch api_endpoint)
PUSH_ENDPOINTS = {
    "products": ("POST", "chain-core/products/sync"),
    "prices": ("PUT", "chain-core/products/prices"),
    "inventory": ("PUT", "chain-core/inventory"),
}
HEALTH_ENDPOINT = ("GET", "chain-core/health")

# Branch statuses that refuse pushes until the branch reports in again
UNREACHABLE_STATUSES = ("offline", "maintenance")


@dataclass
class BranchResponse:
    status_code: int
    data: Any
    response_time_ms: int


class BranchApiClient:
    def __init__(
        self,
        *,
        timeout: float = 10.0,
        bulk_timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.timeout = timeout
        self.bulk_timeout = bulk_timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config, *, transport: httpx.BaseTransport | None = None) -> "BranchApiClient":
        return cls(
            timeout=float(config.get("BRANCH_PUSH_TIMEOUT_SECONDS", 10.0)),
            bulk_timeout=float(config.get("BRANCH_BULK_TIMEOUT_SECONDS", 60.0)),
            transport=transport,
        )

    def _build_headers(self, branch: Branch) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Branch-Code": branch.code,
        }
        if branch.outbound_api_key:
            headers["Authorization"] = f"Bearer {branch.outbound_api_key}"
            headers["X-API-Key"] = branch.outbound_api_key
        return headers

    def _build_url(self, branch: Branch, endpoint: str) -> str:
        return f"{branch.api_endpoint.rstrip('/')}/{endpoint.lstrip('/')}"

    def request(
        self,
        branch: Branch,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        bulk: bool = False,
    ) -> BranchResponse:
        if not branch.api_endpoint:
            raise SyncFailedError(
                f"Branch {branch.code} has no API endpoint configured",
                {"branch_code": branch.code},
            )
        if branch.network_status in UNREACHABLE_STATUSES and (method, endpoint) != HEALTH_ENDPOINT:
            raise SyncFailedError(
                f"Branch {branch.code} is {branch.network_status}",
                {"branch_code": branch.code, "network_status": branch.network_status},
            )

        url = self._build_url(branch, endpoint)
        timeout = self.bulk_timeout if bulk else self.timeout
        started = time.monotonic()
        try:
            with httpx.Client(transport=self.transport, timeout=timeout) as client:
                response = client.request(method, url, json=json, headers=self._build_headers(branch))
        except httpx.TimeoutException as exc:
            current_app.logger.warning("%s %s timed out after %ss", method, url, timeout)
            raise SyncFailedError(
                f"Branch {branch.code} did not answer within {timeout:g}s",
                {"branch_code": branch.code, "endpoint": endpoint, "unreachable": True},
            ) from exc
        except httpx.HTTPError as exc:
            current_app.logger.warning("%s %s failed: %s", method, url, exc)
            raise SyncFailedError(
                f"Branch {branch.code} is unreachable: {exc}",
                {"branch_code": branch.code, "endpoint": endpoint, "unreachable": True},
            ) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        current_app.logger.info(
            "%s %s -> %s in %sms", method, url, response.status_code, elapsed_ms
        )

        if response.status_code >= 400:
            raise SyncFailedError(
                f"Branch {branch.code} responded with HTTP {response.status_code}",
                {
                    "branch_code": branch.code,
                    "endpoint": endpoint,
                    "status_code": response.status_code,
                    "body": response.text[:500],
                },
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        return BranchResponse(status_code=response.status_code, data=data, response_time_ms=elapsed_ms)

    def push(self, branch: Branch, sync_type: str, payload: dict, *, bulk: bool = False) -> BranchResponse:
        method, endpoint = PUSH_ENDPOINTS[sync_type]
        return self.request(branch, method, endpoint, json=payload, bulk=bulk)

    def health(self, branch: Branch) -> BranchResponse:
        method, endpoint = HEALTH_ENDPOINT
        return self.request(branch, method, endpoint)
