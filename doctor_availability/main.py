import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from doctor_availability.core import config
from doctor_availability.database import Base, SessionLocal, engine
from doctor_availability.models import audit_log, availability, doctor  # noqa: F401
from doctor_availability.routes import availability_routes
from doctor_availability.schedule.audit import AuditTrail
from doctor_availability.schedule.directory import SqlDoctorDirectory
from doctor_availability.schedule.errors import ScheduleError
from doctor_availability.schedule.service import ScheduleService
from doctor_availability.schedule.store import build_store

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


def build_schedule_service() -> ScheduleService:
    store = build_store(config.SCHEDULE_STORE_BACKEND, engine)
    audit = AuditTrail(SessionLocal if config.AUDIT_LOG_PERSIST else None)
    return ScheduleService(store, SqlDoctorDirectory(SessionLocal), audit)


app = FastAPI(title='Doctor Availability API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_service() -> None:
    config.validate_runtime_config()
    service = build_schedule_service()
    try:
        Base.metadata.create_all(bind=engine)
        service.open()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
    app.state.schedule_service = service


@app.on_event('shutdown')
def close_service() -> None:
    service = getattr(app.state, 'schedule_service', None)
    if service is not None:
        service.close()


@app.exception_handler(ScheduleError)
async def schedule_error_handler(request: Request, exc: ScheduleError):
    if exc.status_code >= 500:
        logger.warning('%s on %s %s: %s', exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception('Database error on %s %s', request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={'detail': 'Database unavailable. Verify DATABASE_URL and database credentials.'},
    )


@app.get('/')
def root():
    return {'status': 'Doctor Availability API Running'}


app.include_router(availability_routes.router, prefix='/api/doctor-availability')
