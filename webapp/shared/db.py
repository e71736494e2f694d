# webapp/shared/db.py
import time

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from sqlalchemy.pool import StaticPool

from webapp.shared.config import Settings
from webapp.shared.logger import get_logger

logger = get_logger("db")

# DB_DIALECT -> SQLAlchemy driver name
DRIVERS = {
    "mysql": "mysql+pymysql",
    "mariadb": "mysql+pymysql",
    "postgres": "postgresql+psycopg",
    "postgresql": "postgresql+psycopg",
    "sqlite": "sqlite",
}

BACKOFF_EXPONENT = 1.5


class Base(DeclarativeBase):
    pass


def build_url(settings: Settings) -> str | URL:
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    dialect = settings.DB_DIALECT.lower()
    if dialect not in DRIVERS:
        raise ValueError(f"Unsupported DB_DIALECT: {settings.DB_DIALECT}")
    if dialect == "sqlite":
        return URL.create("sqlite", database=settings.DB_NAME or None)
    return URL.create(
        DRIVERS[dialect],
        username=settings.DB_USER or None,
        password=settings.DB_PASSWORD or None,
        host=settings.DB_HOST,
        port=settings.DB_PORT,
        database=settings.DB_NAME or None,
    )


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    return min(base * (BACKOFF_EXPONENT ** attempt), cap)


class Database:
    """Engine + session factory with an explicit open/close lifecycle."""

    def __init__(self, url: str | URL):
        self.url = url
        if str(url).startswith("sqlite"):
            options = {"connect_args": {"check_same_thread": False}}
            if str(url) in ("sqlite://", "sqlite:///:memory:"):
                # one shared connection, otherwise every session sees an empty db
                options["poolclass"] = StaticPool
        else:
            options = {
                "pool_size": 5,
                "max_overflow": 0,
                "pool_timeout": 30,
                "pool_recycle": 3600,
                "pool_pre_ping": True,
            }
        self.engine: Engine = create_engine(url, **options)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(build_url(settings))

    def session(self) -> Session:
        return self.SessionLocal()

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def connect_with_retry(self, retries: int = 5, base_delay: float = 1.0, max_delay: float = 10.0) -> bool:
        """
        Try to reach the database up to ``retries`` times with exponential
        backoff. Returns False when every attempt failed; callers keep serving.
        """
        for attempt in range(retries):
            try:
                self.ping()
            except OperationalError as e:
                logger.warning(
                    f"Database connection attempt {attempt + 1}/{retries} failed: {e.orig}",
                    extra={"action": "db.connect"},
                )
                if attempt + 1 < retries:
                    time.sleep(backoff_delay(attempt, base_delay, max_delay))
                continue
            logger.info("Database connection has been established successfully.", extra={"action": "db.connect"})
            return True

        logger.error(f"Unable to connect to the database after {retries} attempts", extra={"action": "db.connect"})
        return False

    def sync_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database synced successfully.", extra={"action": "db.sync"})

    def dispose(self) -> None:
        self.engine.dispose()


# FastAPI dep
def get_db(request: Request):
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
