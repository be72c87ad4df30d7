import asyncio
import os
import sys
import logging
from datetime import datetime, timezone
from typing import Optional

import aiohttp
from dotenv import load_dotenv
from pydantic import Field

from src.application.repository import EntityRepository
from src.domain.models import BaseEntity, EntityMapping, RepositoryChanges
from src.infrastructure.database import PostgresBackend
from src.infrastructure.memory_backend import InMemoryBackend
from src.infrastructure.rest_client import RestBackend

logger = logging.getLogger(__name__)


class TaskEntity(BaseEntity):
    title: str = Field(..., description="Short description of the task")
    done: bool = Field(False, description="Whether the task is completed")
    due: Optional[datetime] = Field(None, description="Optional due date")


TASK_MAPPING = EntityMapping.of(TaskEntity, {
    "id": {"to": "id", "type": "string", "optional": True},
    "title": {"to": "summary", "type": "string"},
    "done": {"to": "status", "type": "boolean"},
    "due": {"to": "due", "type": "date", "optional": True},
})


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def log_changes(changes: RepositoryChanges) -> None:
    for entity in changes.added:
        logger.info(f"Added: {entity}")
    for entity in changes.modified:
        logger.info(f"Modified: {entity}")
    for entity in changes.deleted:
        logger.info(f"Deleted: {entity}")


async def run_demo(repository: EntityRepository) -> None:
    repository.on("changes", log_changes)

    # Prime the snapshot so pre-existing resources are not reported by the first write
    await repository.refresh()

    task = await repository.create(TaskEntity(title="Buy milk", due=datetime.now(timezone.utc)))
    task = await repository.update(task.model_copy(update={"done": True}))

    found = await repository.find_by("title", "Buy milk")
    logger.info(f"Lookup by title returned: {found}")

    await repository.remove(task)
    logger.info(f"{len(await repository.find_all())} tasks remain.")

    repository.remove_all_listeners()


async def main():
    # Load environment variables from .env file
    load_dotenv()
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    db_url = os.getenv("DATABASE_URL")
    api_url = os.getenv("RESOURCE_API_URL")

    try:
        if db_url:
            backend = PostgresBackend(db_url=db_url, table_name="tasks")
            await backend.ensure_schema()
            await run_demo(EntityRepository(backend, TASK_MAPPING))
        elif api_url:
            async with aiohttp.ClientSession() as session:
                backend = RestBackend(session, api_url)
                await run_demo(EntityRepository(backend, TASK_MAPPING))
        else:
            logger.info("DATABASE_URL and RESOURCE_API_URL are not set. Using the in-memory backend.")
            await run_demo(EntityRepository(InMemoryBackend(), TASK_MAPPING))
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting gracefully.")
    except Exception as e:
        logger.exception(f"An unexpected error occurred: {e}")
        sys.exit(1)

if __name__ == "__main__":
    asyncio.run(main())
