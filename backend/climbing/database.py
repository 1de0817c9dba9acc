from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

settings = get_settings()

# Sums read after a slot lock must see rows committed by the previous lock holder.
engine = create_async_engine(
    settings.database_url,
    echo=settings.echo_sql,
    pool_pre_ping=True,
    pool_recycle=3600,
    isolation_level="READ COMMITTED",
    connect_args={"init_command": f"SET SESSION innodb_lock_wait_timeout = {settings.lock_wait_timeout_seconds}"},
)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
