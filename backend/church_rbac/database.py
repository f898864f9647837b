"""Database engine, session factory, and declarative base.

The permission engine does not hold sessions itself: stores receive an
`async_sessionmaker` and open one short session per read or write, so a
save is a single transaction and a read never observes a half-written
role matrix.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from church_rbac.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=20,
    max_overflow=10,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    pass

