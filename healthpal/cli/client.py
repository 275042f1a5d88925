"""
HTTP client used by the terminal commands.

Keeps the bearer token on disk between invocations and turns API error
bodies ({"error", "error_code", "details"}) into ApiError.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

DEFAULT_API = "http://localhost:8000/v1"
DEFAULT_TOKEN_FILE = os.path.join("~", ".healthpal", "token")


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, error_code: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class ApiClient:
    def __init__(
        self,
        base_url: str = DEFAULT_API,
        token_file: str = DEFAULT_TOKEN_FILE,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_path = Path(os.path.expanduser(token_file))
        self._http = httpx.Client(base_url=self.base_url, transport=transport, timeout=timeout)

    # --- token storage ---

    @property
    def token(self) -> Optional[str]:
        if not self.token_path.exists():
            return None
        token = self.token_path.read_text().strip()
        return token or None

    def save_token(self, token: str) -> None:
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(token)
        self.token_path.chmod(0o600)

    def clear_token(self) -> None:
        if self.token_path.exists():
            self.token_path.unlink()

    # --- requests ---

    def request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None, auth: bool = True) -> Any:
        headers = {}
        if auth:
            token = self.token
            if not token:
                raise ApiError(401, "Not logged in. Run: healthpal login")
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self._http.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise ApiError(0, f"Cannot reach HealthPal API at {self.base_url}: {e}")

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise ApiError(
                response.status_code,
                body.get("error") or response.reason_phrase or "Request failed",
                body.get("error_code"),
            )
        return response.json()

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return self.request("POST", path, json=json, **kwargs)

    def patch(self, path: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return self.request("PATCH", path, json=json, **kwargs)

    def close(self) -> None:
        self._http.close()
