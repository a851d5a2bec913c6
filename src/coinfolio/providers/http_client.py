"""Thin JSON-over-HTTP client that maps transport failures to provider errors."""

import json
import logging
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter

from coinfolio.core.exceptions import (
    MalformedResponseError,
    ProviderNotFoundError,
    ProviderRequestError,
    RateLimitedError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "coinfolio/0.1",
}


def build_session(pool_size: int = 10) -> requests.Session:
    """Create a Session with connection pooling and no transport-level retries."""
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not worth honouring here
        return None


class JsonHttpClient:
    """
    GET-only JSON client bound to one provider's base URL.

    Retries are not done here; every failure surfaces as a typed ProviderError
    so the retry executor and the fallback logic can decide.
    """

    def __init__(
        self,
        provider_id: str,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 12.0,
    ):
        self.provider_id = provider_id
        self._base_url = base_url.rstrip("/")
        self._session = session or build_session()
        self._timeout = timeout

    def url_for(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def get_json(self, path: str, params: Optional[dict] = None) -> Any:
        url = self.url_for(path)
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.exceptions.Timeout as exc:
            raise TransientNetworkError(self.provider_id, f"timeout calling {path}: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise TransientNetworkError(self.provider_id, f"network error calling {path}: {exc}") from exc

        status = response.status_code
        logger.debug("%s GET %s -> %s", self.provider_id, path, status)

        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitedError(self.provider_id, f"429 from {path}", retry_after=retry_after)
        if status == 404:
            raise ProviderNotFoundError(self.provider_id, path)
        if status >= 500:
            raise TransientNetworkError(self.provider_id, f"HTTP {status} from {path}")
        if status >= 400:
            raise ProviderRequestError(self.provider_id, status, _error_text(response))

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise MalformedResponseError(self.provider_id, f"invalid JSON from {path}: {exc}") from exc


def _error_text(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "")[:200]
    if isinstance(body, dict):
        return str(body.get("msg") or body.get("error") or body)[:200]
    return str(body)[:200]
