from sqlmodel import create_engine, SQLModel

from salonbot.core.config import settings

DATABASE_URL = settings.DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {"connect_timeout": 5}

engine = create_engine(
    DATABASE_URL,
    echo=False,
    pool_pre_ping=True,  # Verify connections before use
    connect_args=connect_args,
)


def create_db_and_tables():
    # Import models so their tables are registered on SQLModel.metadata
    from salonbot.models import KeyValueEntry  # noqa: F401

    SQLModel.metadata.create_all(engine)
