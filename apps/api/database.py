"""
Async database engine, session factory and store-clock SQL helpers.
"""

from sqlalchemy import DateTime
from sqlalchemy.exc import CompileError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql.expression import FunctionElement

from config import settings


engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session_maker() as session:
        yield session


class utc_now(FunctionElement):
    """Current UTC time as seen by the database server."""

    type = DateTime(timezone=True)
    inherit_cache = True


class utc_minutes_ago(FunctionElement):
    """Database-server UTC time shifted back by a whole number of minutes."""

    type = DateTime(timezone=True)
    inherit_cache = False

    def __init__(self, minutes: int):
        self.minutes = int(minutes)
        super().__init__()


# SQLite stores DateTime as text; match SQLAlchemy's microsecond format so
# server-side and client-side timestamps compare correctly.
_SQLITE_NOW = "strftime('%Y-%m-%d %H:%M:%f000', 'now')"


@compiles(utc_now)
def _utc_now_default(element, compiler, **kw):
    return "CURRENT_TIMESTAMP"


@compiles(utc_now, "postgresql")
def _utc_now_postgresql(element, compiler, **kw):
    return "now()"


@compiles(utc_now, "sqlite")
def _utc_now_sqlite(element, compiler, **kw):
    return _SQLITE_NOW


@compiles(utc_now, "mssql")
def _utc_now_mssql(element, compiler, **kw):
    return "SYSUTCDATETIME()"


@compiles(utc_minutes_ago)
def _utc_minutes_ago_default(element, compiler, **kw):
    raise CompileError(f"utc_minutes_ago is not supported on dialect {compiler.dialect.name}")


@compiles(utc_minutes_ago, "postgresql")
def _utc_minutes_ago_postgresql(element, compiler, **kw):
    return f"(now() - INTERVAL '{element.minutes} minutes')"


@compiles(utc_minutes_ago, "sqlite")
def _utc_minutes_ago_sqlite(element, compiler, **kw):
    return f"strftime('%Y-%m-%d %H:%M:%f000', 'now', '-{element.minutes} minutes')"


@compiles(utc_minutes_ago, "mssql")
def _utc_minutes_ago_mssql(element, compiler, **kw):
    return f"DATEADD(minute, -{element.minutes}, SYSUTCDATETIME())"
