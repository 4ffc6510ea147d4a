import os

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('APP_TIMEZONE', 'UTC')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret')

from booking.database import Base  # noqa: E402
from booking.models import availability, reservation, user  # noqa: E402,F401


def _memory_session(enforce_foreign_keys: bool = False):
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    if enforce_foreign_keys:
        @event.listens_for(engine, 'connect')
        def enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def booking_db():
    yield from _memory_session()


@pytest.fixture
def booking_db_with_foreign_keys():
    yield from _memory_session(enforce_foreign_keys=True)
