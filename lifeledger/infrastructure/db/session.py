"""
Database engine and session management (SQLAlchemy)

The engine and the session factory are created once at process start
(see lifeledger.main.create_app / BudgetScheduler) and passed to the
components that need them.
"""
import psycopg
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from lifeledger.config import Settings


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base for all ORM models
    """
    pass


def create_db_engine(settings: Settings) -> Engine:
    """Create SQLAlchemy engine for the configured DATABASE_URL"""
    url = settings.get_sqlalchemy_url()
    if url.startswith("sqlite"):
        # SQLite connections are handed between the request and scheduler threads
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to the given engine"""
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def check_db_connection(settings: Settings, engine: Engine | None = None) -> None:
    """
    Health check - database availability

    PostgreSQL is probed with raw psycopg (independent of the pool),
    anything else through the SQLAlchemy engine.

    Raises:
        psycopg.OperationalError / sqlalchemy.exc.OperationalError: if the DB is unavailable
    """
    if settings.DATABASE_URL.startswith("postgresql://"):
        with psycopg.connect(settings.DATABASE_URL, connect_timeout=3) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return

    engine = engine or create_db_engine(settings)
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
