import logging
import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from booking.core.errors import ApiError


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

RESERVATION_OVERLAP_CONSTRAINT = "reservations_no_overlap"
EXCLUSION_VIOLATION_PGCODE = "23P01"
FOREIGN_KEY_VIOLATION_PGCODE = "23503"

_schema_lock = Lock()
_reservation_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_reservation_schema() -> None:
    """Install the indexes and the overlap exclusion constraint on reservations.

    The exclusion constraint is the authoritative guard against two
    non-cancelled reservations sharing an instant; it needs PostgreSQL with
    ``btree_gist``. Other dialects only get the time-range index.
    """
    global _reservation_schema_checked

    if _reservation_schema_checked:
        return

    with _schema_lock:
        if _reservation_schema_checked:
            return

        inspector = inspect(engine)

        if 'reservations' not in inspector.get_table_names():
            _reservation_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservations_time_range ON reservations(start_time, end_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservations_status_start ON reservations(status, start_time)')
            )

            if engine.dialect.name == 'postgresql':
                existing = connection.execute(
                    text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
                    {'name': RESERVATION_OVERLAP_CONSTRAINT},
                ).first()
                if existing is None:
                    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
                    connection.execute(
                        text(
                            f'ALTER TABLE reservations ADD CONSTRAINT {RESERVATION_OVERLAP_CONSTRAINT} '
                            "EXCLUDE USING gist (tsrange(start_time, end_time, '[)') WITH &&) "
                            "WHERE (status <> 'cancelled')"
                        )
                    )
                    logger.info('Installed %s exclusion constraint', RESERVATION_OVERLAP_CONSTRAINT)

        _reservation_schema_checked = True


def database_unavailable(exc: SQLAlchemyError) -> ApiError:
    logger.error('Database operation failed: %s', exc.__class__.__name__, exc_info=exc)
    return ApiError('Database unavailable. Verify DATABASE_URL and database credentials.', 503)


def is_overlap_violation(exc: IntegrityError) -> bool:
    original = getattr(exc, 'orig', None)
    if getattr(original, 'pgcode', None) == EXCLUSION_VIOLATION_PGCODE:
        return True
    return RESERVATION_OVERLAP_CONSTRAINT in str(original)


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    original = getattr(exc, 'orig', None)
    if getattr(original, 'pgcode', None) == FOREIGN_KEY_VIOLATION_PGCODE:
        return True
    return 'FOREIGN KEY constraint failed' in str(original)
