from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from coal_settlement.models import Base

DEFAULT_DATABASE_URL = "sqlite:///./coal.db"


def make_engine(url: str = DEFAULT_DATABASE_URL) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args)

    if engine.dialect.name == "sqlite":
        # SQLite only honours ON DELETE CASCADE with this pragma set per connection.
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing settlement tables; existing ones are left as they are."""
    Base.metadata.create_all(bind=engine)
