import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking.core import config
from booking.core.errors import register_exception_handlers
from booking.database import Base, engine, ensure_reservation_schema
from booking.models import availability, reservation, user  # noqa: F401
from booking.routes import availability_routes, reservation_routes, user_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Reservation Booking API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

register_exception_handlers(app)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_reservation_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Reservation Booking API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(reservation_routes.router, prefix='/reservations')
app.include_router(user_routes.router)
