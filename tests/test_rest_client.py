import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from src.domain.exceptions import BackendException, NotFoundError
from src.infrastructure.rest_client import MAX_RETRIES, RestBackend


def _response(status: int, body=None) -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.raise_for_status = MagicMock()
    response.json = AsyncMock(return_value=body)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=False)
    return response


def _session(*responses) -> AsyncMock:
    session = AsyncMock()
    session.request = MagicMock(side_effect=list(responses))
    return session


class TestRestBackendHeaders(unittest.TestCase):
    def test_custom_headers_are_merged(self) -> None:
        backend = RestBackend(_session(), "https://api.example.com/tasks/", headers={"X-Api-Key": "k"})

        self.assertEqual(backend.headers["X-Api-Key"], "k")
        self.assertIn("Accept", backend.headers)
        self.assertEqual(backend.collection_url, "https://api.example.com/tasks")


class TestRestBackend(unittest.IsolatedAsyncioTestCase):
    async def test_post_without_identity(self) -> None:
        session = _session(_response(201, {"id": "1", "summary": "a"}))
        backend = RestBackend(session, "https://api.example.com/tasks")

        stored = await backend.persist_resource({"summary": "a"})

        self.assertEqual(stored["id"], "1")
        method, url = session.request.call_args.args
        self.assertEqual((method, url), ("POST", "https://api.example.com/tasks"))

    async def test_put_with_identity_and_404_maps_to_not_found(self) -> None:
        session = _session(_response(404))
        backend = RestBackend(session, "https://api.example.com/tasks")

        with self.assertRaises(NotFoundError):
            await backend.persist_resource({"id": "9", "summary": "a"})

        method, url = session.request.call_args.args
        self.assertEqual((method, url), ("PUT", "https://api.example.com/tasks/9"))

    async def test_fetch_resource_returns_none_on_404(self) -> None:
        backend = RestBackend(_session(_response(404)), "https://api.example.com/tasks")

        self.assertIsNone(await backend.fetch_resource("9"))

    async def test_delete_accepts_no_content(self) -> None:
        response = _response(204)
        backend = RestBackend(_session(response), "https://api.example.com/tasks")

        await backend.delete_resource("1")

        response.json.assert_not_awaited()

    async def test_server_error_is_retried(self) -> None:
        session = _session(_response(503), _response(200, [{"id": "1"}]))
        backend = RestBackend(session, "https://api.example.com/tasks")

        with patch("src.infrastructure.rest_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            resources = await backend.fetch_resources()

        self.assertEqual(resources, [{"id": "1"}])
        self.assertEqual(mock_sleep.await_count, 1)

    async def test_gives_up_after_max_retries(self) -> None:
        session = _session(*[_response(502) for _ in range(MAX_RETRIES)])
        backend = RestBackend(session, "https://api.example.com/tasks")

        with patch("src.infrastructure.rest_client.asyncio.sleep", new_callable=AsyncMock):
            with self.assertRaises(BackendException):
                await backend.fetch_resources()

        self.assertEqual(session.request.call_count, MAX_RETRIES)

    async def test_non_list_collection_is_rejected(self) -> None:
        backend = RestBackend(_session(_response(200, {"items": []})), "https://api.example.com/tasks")

        with self.assertRaises(BackendException):
            await backend.fetch_resources()

    async def test_response_without_identity_is_rejected(self) -> None:
        backend = RestBackend(_session(_response(201, {"summary": "a"})), "https://api.example.com/tasks")

        with self.assertRaises(BackendException):
            await backend.persist_resource({"summary": "a"})


class TestRestBackendCreateIsNotRepeated(unittest.IsolatedAsyncioTestCase):
    async def test_post_is_not_resent_after_a_disconnect(self) -> None:
        session = _session(aiohttp.ServerDisconnectedError(), _response(201, {"id": "1", "summary": "a"}))
        backend = RestBackend(session, "https://api.example.com/tasks")

        with patch("src.infrastructure.rest_client.asyncio.sleep", new_callable=AsyncMock):
            with self.assertRaises(BackendException):
                await backend.persist_resource({"summary": "a"})

        self.assertEqual(session.request.call_count, 1)

    async def test_post_is_not_resent_after_a_timeout(self) -> None:
        session = _session(asyncio.TimeoutError(), _response(201, {"id": "1"}))
        backend = RestBackend(session, "https://api.example.com/tasks")

        with patch("src.infrastructure.rest_client.asyncio.sleep", new_callable=AsyncMock):
            with self.assertRaises(BackendException):
                await backend.persist_resource({"summary": "a"})

        self.assertEqual(session.request.call_count, 1)

    async def test_post_is_not_resent_after_a_server_error(self) -> None:
        session = _session(_response(503), _response(201, {"id": "1"}))
        backend = RestBackend(session, "https://api.example.com/tasks")

        with patch("src.infrastructure.rest_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with self.assertRaises(BackendException):
                await backend.persist_resource({"summary": "a"})

        self.assertEqual(session.request.call_count, 1)
        mock_sleep.assert_not_awaited()

    async def test_post_is_retried_when_the_connection_was_never_opened(self) -> None:
        refused = aiohttp.ClientConnectorError(MagicMock(), OSError("connection refused"))
        session = _session(refused, _response(201, {"id": "1", "summary": "a"}))
        backend = RestBackend(session, "https://api.example.com/tasks")

        with patch("src.infrastructure.rest_client.asyncio.sleep", new_callable=AsyncMock):
            stored = await backend.persist_resource({"summary": "a"})

        self.assertEqual(stored["id"], "1")
        self.assertEqual(session.request.call_count, 2)

    async def test_put_is_still_retried_after_a_disconnect(self) -> None:
        session = _session(aiohttp.ServerDisconnectedError(), _response(200, {"id": "1", "summary": "b"}))
        backend = RestBackend(session, "https://api.example.com/tasks")

        with patch("src.infrastructure.rest_client.asyncio.sleep", new_callable=AsyncMock):
            stored = await backend.persist_resource({"id": "1", "summary": "b"})

        self.assertEqual(stored["summary"], "b")
        self.assertEqual(session.request.call_count, 2)
