"""HTTP client for the client registry backend."""

from __future__ import annotations

import logging
from typing import Any

import requests

from onboarding.wizard.normalizers import safe

LOGGER = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Backend could not be reached or returned an unusable response."""


class ClientNotFoundError(BackendError):
    pass


class BackendRejectedError(BackendError):
    """Backend refused a create/update request."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: requests.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return safe(response.text) or fallback
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, dict):
            detail = detail.get("message")
        if isinstance(detail, list):
            detail = "; ".join(
                safe(item.get("msg")) if isinstance(item, dict) else safe(item)
                for item in detail
            )
        if safe(detail):
            return safe(detail)
    return fallback


class BackendClient:
    """Duplicate check and client create/read/update calls."""

    def __init__(self, base_url: str, *, api_token: str = "", timeout_sec: int = 15) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_sec = timeout_sec
        self._headers = {"Content-Type": "application/json"}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return requests.request(
                method,
                f"{self._base_url}{path}",
                headers=self._headers,
                timeout=self._timeout_sec,
                **kwargs,
            )
        except requests.RequestException as exc:
            LOGGER.warning("Backend request failed %s %s error=%s", method, path, exc)
            raise BackendError(f"Backend unavailable: {exc}") from exc

    def check_existing(self, registry_numbers: list[str]) -> list[str]:
        """Return the subset of ``registry_numbers`` already registered."""
        numbers = sorted({safe(x) for x in registry_numbers if safe(x)})
        if not numbers:
            return []
        response = self._request(
            "POST",
            "/api/clients/check-registry-numbers",
            json={"registry_numbers": numbers},
        )
        if not response.ok:
            raise BackendError(
                _error_message(response, "Failed to check existing NPIs")
            )
        body = response.json()
        existing = body.get("existing") if isinstance(body, dict) else body
        return [safe(x) for x in existing or [] if safe(x) in numbers]

    def get_client(self, client_id: str) -> dict[str, Any]:
        response = self._request("GET", f"/api/clients/{client_id}")
        if response.status_code == 404:
            raise ClientNotFoundError(f"Client not found: {client_id}")
        if not response.ok:
            raise BackendError(_error_message(response, "Failed to fetch client"))
        return dict(response.json())

    def create_client(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", "/api/clients/", json=payload)
        if not response.ok:
            raise BackendRejectedError(
                response.status_code,
                _error_message(response, "Failed to create client"),
            )
        return dict(response.json())

    def update_client(self, client_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request("PUT", f"/api/clients/{client_id}", json=payload)
        if not response.ok:
            raise BackendRejectedError(
                response.status_code,
                _error_message(response, "Failed to update client"),
            )
        return dict(response.json())
