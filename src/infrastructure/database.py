import uuid
from typing import List, Optional
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.dialects.postgresql import insert, JSONB
from sqlalchemy import Table, Column, String, DateTime, MetaData, delete, select, update, text

from src.domain.exceptions import NotFoundError
from src.domain.ports import BackendAdapter, Resource

# SQLAlchemy core Table definition
metadata = MetaData()


def build_resources_table(name: str) -> Table:
    """Each collection is one table of JSONB payloads keyed by identity."""
    return Table(
        name, metadata,
        Column('id', String, primary_key=True),
        Column('payload', JSONB, nullable=False, server_default=text("'{}'::jsonb")),
        Column('created_at', DateTime(timezone=True), server_default=text('NOW()')),
        Column('updated_at', DateTime(timezone=True), server_default=text('NOW()')),
        extend_existing=True,
    )


class PostgresBackend(BackendAdapter):
    """
    Backend adapter storing resources as JSONB rows in PostgreSQL.
    The identity lives in the primary key column; the payload holds every other key.
    """

    def __init__(self, db_url: str, table_name: str = "resources", identity_key: str = "id"):
        self.engine = create_async_engine(db_url, echo=False)
        self.table = build_resources_table(table_name)
        self.identity_key = identity_key

    async def ensure_schema(self) -> None:
        """Creates the backing table if it does not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all, tables=[self.table])

    def _to_resource(self, row) -> Resource:
        resource = dict(row.payload or {})
        resource[self.identity_key] = row.id
        return resource

    async def fetch_resources(self) -> List[Resource]:
        stmt = select(self.table.c.id, self.table.c.payload).order_by(
            self.table.c.created_at, self.table.c.id
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            return [self._to_resource(row) for row in result.all()]

    async def fetch_resource(self, identity: str) -> Optional[Resource]:
        stmt = select(self.table.c.id, self.table.c.payload).where(self.table.c.id == identity)
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            row = result.first()
        return self._to_resource(row) if row is not None else None

    async def persist_resource(self, resource: Resource) -> Resource:
        """
        Inserts a new row when the resource has no identity, otherwise replaces the payload.

        Raises:
            NotFoundError: If the identity has no row to replace.
        """
        payload = {k: v for k, v in resource.items() if k != self.identity_key}
        identity = resource.get(self.identity_key)

        async with self.engine.begin() as conn:
            if identity is None:
                identity = uuid.uuid4().hex
                await conn.execute(insert(self.table).values(id=identity, payload=payload))
            else:
                identity = str(identity)
                stmt = (
                    update(self.table)
                    .where(self.table.c.id == identity)
                    .values(payload=payload, updated_at=text('NOW()'))
                    .returning(self.table.c.id)
                )
                result = await conn.execute(stmt)
                if result.first() is None:
                    raise NotFoundError(identity)

        return {**payload, self.identity_key: identity}

    async def delete_resource(self, identity: str) -> None:
        stmt = delete(self.table).where(self.table.c.id == identity).returning(self.table.c.id)
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            if result.first() is None:
                raise NotFoundError(identity)
