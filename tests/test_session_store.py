import asyncio
import os
import tempfile
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from db_helpers import create_schema, create_sqlite_engine, session_factory_for
from freedom_bot.bot.roles import ExecutorRole
from freedom_bot.bot.session.document import SessionDocument
from freedom_bot.bot.session.middleware import SessionMiddleware
from freedom_bot.bot.session.store import SessionKey, SessionStore
from freedom_bot.db.models import SessionRecord


class SessionStoreSqliteTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine = create_sqlite_engine()
        await create_schema(self.engine)
        self.store = SessionStore(session_factory=session_factory_for(self.engine))

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()

    async def test_save_load_and_delete(self) -> None:
        key = SessionKey("chat", "42")
        document = SessionDocument.default()
        document.executor.role = ExecutorRole.COURIER
        document.city = "almaty"

        db = await self.store.open()
        self.assertIsNone(await self.store.load(db, key))
        await self.store.save(db, key, document)
        await self.store.commit(db)
        await self.store.close(db)

        db = await self.store.open()
        loaded = await self.store.load(db, key, for_update=True)
        self.assertEqual(loaded.executor.role, ExecutorRole.COURIER)
        self.assertEqual(loaded.city, "almaty")
        loaded.city = "astana"
        await self.store.save(db, key, loaded)
        await self.store.commit(db)
        await self.store.close(db)

        db = await self.store.open()
        self.assertEqual((await self.store.load(db, key)).city, "astana")
        await self.store.delete(db, key)
        await self.store.commit(db)
        await self.store.close(db)

        db = await self.store.open()
        self.assertIsNone(await self.store.load(db, key))
        await self.store.close(db)

    async def test_chat_and_user_scopes_do_not_collide(self) -> None:
        chat_doc = SessionDocument.default()
        chat_doc.city = "almaty"
        user_doc = SessionDocument.default()
        user_doc.city = "shymkent"

        db = await self.store.open()
        await self.store.save(db, SessionKey("chat", "42"), chat_doc)
        await self.store.save(db, SessionKey("user", "42"), user_doc)
        await self.store.commit(db)
        await self.store.close(db)

        db = await self.store.open()
        self.assertEqual((await self.store.load(db, SessionKey("chat", "42"))).city, "almaty")
        self.assertEqual((await self.store.load(db, SessionKey("user", "42"))).city, "shymkent")
        await self.store.close(db)


class RowLockTests(unittest.IsolatedAsyncioTestCase):
    async def test_load_for_update_creates_row_before_locking_it(self) -> None:
        db = MagicMock()
        db.execute = AsyncMock(return_value=SimpleNamespace(first=lambda: None))
        store = SessionStore(session_factory=lambda: None)

        await store.load(db, SessionKey("chat", "42"), for_update=True)

        self.assertEqual(db.execute.await_count, 2)
        insert_stmt, select_stmt = (call.args[0] for call in db.execute.await_args_list)
        insert_sql = str(insert_stmt.compile(dialect=postgresql.dialect()))
        select_sql = str(select_stmt.compile(dialect=postgresql.dialect()))
        self.assertIn("INSERT INTO sessions", insert_sql)
        self.assertIn("ON CONFLICT (scope, scope_id) DO NOTHING", insert_sql)
        self.assertIn("FOR UPDATE", select_sql)

    async def test_plain_load_does_not_lock(self) -> None:
        db = MagicMock()
        db.execute = AsyncMock(return_value=SimpleNamespace(first=lambda: None))
        store = SessionStore(session_factory=lambda: None)

        await store.load(db, SessionKey("chat", "42"))

        db.execute.assert_awaited_once()
        compiled = str(db.execute.await_args.args[0].compile(dialect=postgresql.dialect()))
        self.assertNotIn("FOR UPDATE", compiled)


class FirstUpdateRowTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine = create_sqlite_engine()
        await create_schema(self.engine)
        self.store = SessionStore(session_factory=session_factory_for(self.engine))
        self.data = {"event_chat": SimpleNamespace(id=42), "event_from_user": SimpleNamespace(id=42)}

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()

    async def _count_rows(self, db) -> int:
        return await db.scalar(
            select(func.count())
            .select_from(SessionRecord)
            .where(SessionRecord.scope == "chat", SessionRecord.scope_id == "42")
        )

    async def test_row_exists_before_first_handler_runs(self) -> None:
        middleware = SessionMiddleware(store=self.store)
        seen = {}

        async def handler(event, data):
            seen["rows"] = await self._count_rows(data["db"])
            seen["role"] = data["session"].executor.role

        await middleware(handler, object(), dict(self.data))

        self.assertEqual(seen["rows"], 1)
        self.assertIsNone(seen["role"])

    async def test_failed_first_update_leaves_no_row(self) -> None:
        middleware = SessionMiddleware(store=self.store)

        async def handler(event, data):
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            await middleware(handler, object(), dict(self.data))

        db = await self.store.open()
        try:
            self.assertEqual(await self._count_rows(db), 0)
        finally:
            await self.store.close(db)

    async def test_existing_document_is_not_overwritten_by_placeholder(self) -> None:
        document = SessionDocument.default()
        document.city = "almaty"
        db = await self.store.open()
        await self.store.save(db, SessionKey("chat", "42"), document)
        await self.store.commit(db)
        await self.store.close(db)

        db = await self.store.open()
        loaded = await self.store.load(db, SessionKey("chat", "42"), for_update=True)
        await self.store.close(db)

        self.assertEqual(loaded.city, "almaty")


class SerializedUpdatesTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        handle, self.path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(handle)
        self.engine = create_sqlite_engine(self.path, immediate=True)
        await create_schema(self.engine)
        self.store = SessionStore(session_factory=session_factory_for(self.engine))

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()
        os.unlink(self.path)

    async def test_concurrent_updates_for_one_chat_both_persist(self) -> None:
        middleware = SessionMiddleware(store=self.store)
        data = {"event_chat": SimpleNamespace(id=42), "event_from_user": SimpleNamespace(id=42)}

        def appending(message_id: int):
            async def handler(event, handler_data):
                handler_data["session"].ephemeral_messages.append(message_id)
                await asyncio.sleep(0.05)

            return handler

        await asyncio.gather(
            middleware(appending(1), object(), dict(data)),
            middleware(appending(2), object(), dict(data)),
        )

        db = await self.store.open()
        document = await self.store.load(db, SessionKey("chat", "42"))
        await self.store.close(db)
        self.assertEqual(sorted(document.ephemeral_messages), [1, 2])


if __name__ == "__main__":
    unittest.main()
