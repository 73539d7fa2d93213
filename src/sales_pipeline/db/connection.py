"""Async SQLAlchemy engine and session factory for the pipeline database."""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import settings

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def database_url(raw: str) -> str:
    """Rewrite a Postgres URL for the async psycopg driver.

    Hosted databases (anything not on this machine) get ``sslmode=require``
    unless the URL already chooses an SSL mode.
    """
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://"):]
    url = make_url(raw)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")
    if url.host and url.host not in _LOCAL_HOSTS and "sslmode" not in url.query:
        url = url.update_query_dict({"sslmode": "require"})
    return url.render_as_string(hide_password=False)


engine = create_async_engine(
    database_url(settings.database_url),
    echo=settings.sql_echo,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncSession:
    """Yield a session per request; stores commit or roll back themselves."""
    async with async_session() as session:
        yield session
