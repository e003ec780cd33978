from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from querybot.core.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=False)

# Separate engine for generated SQL; point it at a read-only DB user in production
readonly_engine = create_async_engine(settings.readonly_database_url, echo=False)

# Talk to the DB through async sessions without refreshes after closed conn to avoid errors in async programming
AsyncSessionLocal = async_sessionmaker(
    bind=engine, class_=AsyncSession, expire_on_commit=False
)
ReadOnlySessionLocal = async_sessionmaker(
    bind=readonly_engine, class_=AsyncSession, expire_on_commit=False
)


# This is the "Bridge" that gives my routes access to the database
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def get_readonly_db():
    async with ReadOnlySessionLocal() as session:
        yield session


# All the models are "stored" in the Base class will be processed by the Engine
class Base(DeclarativeBase):
    pass
