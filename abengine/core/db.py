from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from abengine.models.orm.base import Base


def build_engine(database_url: str) -> Engine:
    """
    The engine is the starting point for all SQLAlchemy applications.
    It manages the connection pool and dialect.
    """
    return create_engine(
        database_url,
        # Only needed for SQLite to handle concurrent requests
        connect_args={"check_same_thread": False} if "sqlite" in database_url else {},
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    # Every store operation opens its own short-lived session from this factory.
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Creates the tables registered on Base.metadata when they are missing."""
    # Ensure the ORM models are imported so they register on Base
    from abengine.models.orm import assignment  # noqa: F401

    Base.metadata.create_all(bind=engine)
