import logging
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from rasoi.config import settings
from rasoi.errors import InternalError

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # sqlite has no lock_timeout; the driver's busy timeout bounds the wait instead
        return {"check_same_thread": False, "timeout": settings.TX_MAX_WAIT_MS / 1000}
    return {}


engine = create_engine(settings.DB_URL, connect_args=_connect_args(settings.DB_URL), pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, timeout_ms: int | None = None):
    """
    Run one unit of work and commit it, or roll everything back.

    Lock waits are bounded by TX_MAX_WAIT_MS and the whole unit by
    `timeout_ms` (TX_TIMEOUT_MS by default). Exceeding either surfaces as
    INTERNAL_ERROR with no partial effects left behind.
    """
    ceiling = timeout_ms or settings.TX_TIMEOUT_MS
    started = time.monotonic()
    try:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = {int(settings.TX_MAX_WAIT_MS)}"))
            db.execute(text(f"SET LOCAL statement_timeout = {int(ceiling)}"))
        yield db
        db.flush()
        elapsed_ms = (time.monotonic() - started) * 1000
        if elapsed_ms > ceiling:
            raise InternalError(f"transaction exceeded {ceiling} ms and was rolled back")
        db.commit()
    except OperationalError as e:
        db.rollback()
        logger.warning("transaction aborted after %.0f ms: %s", (time.monotonic() - started) * 1000, e.orig)
        raise InternalError("database is busy, please retry") from e
    except BaseException:
        db.rollback()
        raise
