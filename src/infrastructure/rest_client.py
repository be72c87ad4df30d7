import aiohttp
import asyncio
import logging
import random
from typing import Any, Dict, List, Optional

from src.domain.exceptions import BackendException, NotFoundError
from src.domain.ports import BackendAdapter, Resource

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)
MAX_RETRIES = 5
TRANSIENT_STATUSES = {500, 502, 503, 504}
NON_IDEMPOTENT_METHODS = {"POST"}


class RestBackend(BackendAdapter):
    """
    Backend adapter for a JSON collection endpoint:
    GET/POST on the collection URL, GET/PUT/DELETE on ``{collection}/{id}``.
    Transient server and connection failures are retried with exponential backoff.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        collection_url: str,
        identity_key: str = "id",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.session = session
        self.collection_url = collection_url.rstrip("/")
        self.identity_key = identity_key
        self.headers = {
            "Accept": "application/json",
            "User-Agent": "grepo-rest-backend",
            **(headers or {}),
        }

    def _item_url(self, identity: str) -> str:
        return f"{self.collection_url}/{identity}"

    async def _request(self, method: str, url: str, identity: Optional[str] = None, payload: Any = None) -> Any:
        """
        Sends one request, retrying transient failures.

        POST is not idempotent: it is only retried when the connection could not be
        opened. A 5xx, a dropped connection or a timeout may mean the server already
        stored the resource, so those fail immediately.

        Returns:
            The decoded JSON body, or None for an empty response.

        Raises:
            NotFoundError: On 404 for an item URL.
            BackendException: After MAX_RETRIES transient failures, or on the first
                ambiguous failure of a POST.
        """
        idempotent = method not in NON_IDEMPOTENT_METHODS

        for attempt in range(MAX_RETRIES):
            try:
                async with self.session.request(
                    method, url, json=payload, headers=self.headers, timeout=REQUEST_TIMEOUT
                ) as response:
                    if response.status == 404 and identity is not None:
                        raise NotFoundError(identity)

                    if response.status in TRANSIENT_STATUSES:
                        if not idempotent:
                            raise BackendException(
                                f"{method} {url} returned {response.status}; not retried as it may have been applied."
                            )
                        await self._backoff(method, url, attempt, f"returned {response.status}")
                        continue

                    response.raise_for_status()
                    if response.status == 204:
                        return None
                    return await response.json()

            except aiohttp.ClientConnectorError as e:
                # The connection was never established, so the request never reached the server
                await self._backoff(method, url, attempt, f"could not connect: {e}")

            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                if not idempotent:
                    raise BackendException(
                        f"{method} {url} failed after the request was sent: {e!r}; not retried."
                    ) from e
                await self._backoff(method, url, attempt, f"failed: {e!r}")

        raise BackendException(f"{method} {url} failed after {MAX_RETRIES} attempts.")

    @staticmethod
    async def _backoff(method: str, url: str, attempt: int, reason: str) -> None:
        sleep_time = (2 ** attempt) + random.uniform(0, 1)
        logger.warning(
            f"{method} {url} {reason}. "
            f"Retrying in {sleep_time:.1f}s (attempt {attempt + 1}/{MAX_RETRIES})..."
        )
        await asyncio.sleep(sleep_time)

    async def fetch_resources(self) -> List[Resource]:
        data = await self._request("GET", self.collection_url)
        if not isinstance(data, list):
            raise BackendException(f"Expected a JSON array from {self.collection_url}.")
        return data

    async def fetch_resource(self, identity: str) -> Optional[Resource]:
        try:
            return await self._request("GET", self._item_url(identity), identity=identity)
        except NotFoundError:
            return None

    async def persist_resource(self, resource: Resource) -> Resource:
        identity = resource.get(self.identity_key)
        if identity is None:
            stored = await self._request("POST", self.collection_url, payload=resource)
        else:
            identity = str(identity)
            stored = await self._request("PUT", self._item_url(identity), identity=identity, payload=resource)

        if not isinstance(stored, dict) or stored.get(self.identity_key) is None:
            raise BackendException(f"Backend response for {self.collection_url} lacks '{self.identity_key}'.")
        return stored

    async def delete_resource(self, identity: str) -> None:
        await self._request("DELETE", self._item_url(identity), identity=identity)
