import unittest

from src.domain.exceptions import NotFoundError
from src.infrastructure.memory_backend import InMemoryBackend


class TestInMemoryBackend(unittest.IsolatedAsyncioTestCase):
    async def test_assigns_sequential_identities_in_insertion_order(self) -> None:
        backend = InMemoryBackend()

        first = await backend.persist_resource({"summary": "a"})
        second = await backend.persist_resource({"summary": "b"})

        self.assertEqual(first["id"], "1")
        self.assertEqual(second["id"], "2")
        self.assertEqual([r["summary"] for r in await backend.fetch_resources()], ["a", "b"])

    async def test_replace_keeps_position(self) -> None:
        backend = InMemoryBackend()
        await backend.persist_resource({"summary": "a"})
        await backend.persist_resource({"summary": "b"})

        await backend.persist_resource({"id": "1", "summary": "a2"})

        self.assertEqual([r["summary"] for r in await backend.fetch_resources()], ["a2", "b"])

    async def test_custom_identity_key(self) -> None:
        backend = InMemoryBackend(identity_key="rowNumber")

        stored = await backend.persist_resource({"summary": "a"})

        self.assertEqual(stored, {"summary": "a", "rowNumber": "1"})
        self.assertEqual(await backend.fetch_resource("1"), stored)

    async def test_returned_resources_do_not_alias_stored_state(self) -> None:
        backend = InMemoryBackend()
        original = {"tags": ["x"]}
        stored = await backend.persist_resource(original)

        original["tags"].append("y")
        stored["tags"].append("z")

        self.assertEqual((await backend.fetch_resource("1"))["tags"], ["x"])

    async def test_unknown_identity_raises(self) -> None:
        backend = InMemoryBackend()

        with self.assertRaises(NotFoundError):
            await backend.persist_resource({"id": "7", "summary": "a"})
        with self.assertRaises(NotFoundError):
            await backend.delete_resource("7")
        self.assertIsNone(await backend.fetch_resource("7"))

    async def test_delete(self) -> None:
        backend = InMemoryBackend()
        await backend.persist_resource({"summary": "a"})

        await backend.delete_resource("1")

        self.assertEqual(await backend.fetch_resources(), [])
