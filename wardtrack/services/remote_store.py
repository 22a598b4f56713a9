"""
WardTrack Remote Store Client
Async REST client for the authoritative remote store
"""

import abc
import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from wardtrack.config import settings
from wardtrack.exceptions import RemoteRequestError, RemoteUnavailable

logger = logging.getLogger(__name__)


class RemoteStore(abc.ABC):
    """Authoritative store contract (one REST resource per collection)"""

    @abc.abstractmethod
    async def list(self, collection: str) -> List[Dict[str, Any]]:
        """Return every record in a collection"""

    @abc.abstractmethod
    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Return one record, or None when the remote store does not know it"""

    @abc.abstractmethod
    async def upsert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Create or replace a record by id; returns the stored record"""

    @abc.abstractmethod
    async def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update; returns the stored record"""

    @abc.abstractmethod
    async def delete(self, collection: str, record_id: str) -> None:
        """Delete a record (absent records count as deleted)"""

    async def close(self) -> None:
        return None


def _unwrap_list(body: Any, collection: str) -> List[Dict[str, Any]]:
    """Accept bare lists and `{collection: [...]}` / `{"data": [...]}` envelopes"""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in (collection, "data", "items"):
            if isinstance(body.get(key), list):
                return body[key]
    raise RemoteRequestError(status_code=200, message=f"Unexpected list payload for {collection}")


def _unwrap_one(body: Any) -> Dict[str, Any]:
    """Accept a bare record or a single-key envelope such as `{"patient": {...}}`"""
    if isinstance(body, dict):
        if "id" in body:
            return body
        nested = [v for v in body.values() if isinstance(v, dict)]
        if len(body) == 1 and nested:
            return nested[0]
        return body
    raise RemoteRequestError(status_code=200, message="Unexpected record payload")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)[:200]
    return str(body)[:200]


class HttpRemoteStore(RemoteStore):
    """
    REST client on httpx

    Routes: GET/POST /{collection}, GET/PUT/DELETE /{collection}/{id}.
    Network failures, timeouts and 5xx responses are retried with exponential
    backoff and surface as RemoteUnavailable; other non-2xx responses raise
    RemoteRequestError immediately.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_wait_max: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or settings.remote_api_url).rstrip("/")
        self.max_retries = max_retries or settings.remote_max_retries
        self.retry_wait_max = retry_wait_max
        self._token = token
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.remote_timeout_seconds, connect=5.0)
        )

    def set_token(self, token: Optional[str]) -> None:
        """Bearer credential for subsequent requests (None clears it)"""
        self._token = token

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _send_once(self, method: str, path: str, payload: Optional[Dict[str, Any]]) -> httpx.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self._client.request(method, url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise RemoteUnavailable(f"{method} {path} failed: {exc.__class__.__name__}: {exc}") from exc

        if response.status_code >= 500:
            raise RemoteUnavailable(
                f"{method} {path} returned {response.status_code}: {_error_message(response)}"
            )
        return response

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False
    ) -> Optional[httpx.Response]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=0, max=self.retry_wait_max),
            retry=retry_if_exception_type(RemoteUnavailable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._send_once(method, path, payload)

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteRequestError(status_code=response.status_code, message=_error_message(response))
        return response

    # =========================================================================
    # RemoteStore
    # =========================================================================

    async def list(self, collection: str) -> List[Dict[str, Any]]:
        response = await self._request("GET", collection)
        records = _unwrap_list(response.json(), collection)
        logger.debug(f"Fetched {len(records)} {collection} from remote store")
        return records

    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        response = await self._request("GET", f"{collection}/{record_id}", allow_not_found=True)
        if response is None:
            return None
        return _unwrap_one(response.json())

    async def upsert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", collection, record)
        return self._stored_or_sent(response, record)

    async def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("PUT", f"{collection}/{record_id}", changes)
        return self._stored_or_sent(response, {"id": record_id, **changes})

    async def delete(self, collection: str, record_id: str) -> None:
        await self._request("DELETE", f"{collection}/{record_id}", allow_not_found=True)

    @staticmethod
    def _stored_or_sent(response: httpx.Response, sent: Dict[str, Any]) -> Dict[str, Any]:
        """Some endpoints answer 204 or a status message instead of the record"""
        if response.status_code == 204 or not response.content:
            return sent
        try:
            body = _unwrap_one(response.json())
        except (ValueError, RemoteRequestError):
            return sent
        return body if "id" in body else sent
