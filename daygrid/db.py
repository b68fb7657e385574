from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy import text
from sqlalchemy.pool import NullPool

import atexit
import logging

from . import config

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL

# Use NullPool to avoid connection-pool objects being bound to a specific
# event loop (which can cause 'bound to a different event loop' errors
# when tests create a fresh loop per test).
engine = create_async_engine(DATABASE_URL, echo=False, future=True, poolclass=NullPool)

async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    # models must be imported so their tables are registered on the metadata
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        # Month queries filter on (user_id, date) and order by created_at.
        try:
            await conn.execute(text("CREATE INDEX IF NOT EXISTS ix_task_user_date ON task(user_id, date)"))
        except Exception:
            logger.exception('failed to create ix_task_user_date during init_db')
            raise


def _dispose_sync_engine():
    # Dispose the sync pool at interpreter exit so pool finalizers do not
    # warn about non-checked-in connections during pytest teardown.
    if getattr(engine, 'sync_engine', None) is not None:
        engine.sync_engine.dispose()


atexit.register(_dispose_sync_engine)
