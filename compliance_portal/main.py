from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from compliance_portal.config import settings
from compliance_portal.core.store_guard import StoreAccessError
from compliance_portal.db import Base, engine
from compliance_portal.route_logging import EndpointNameRoute
from compliance_portal.routers import compliance, documents, feedback, timesheets
from compliance_portal.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute


@app.exception_handler(StoreAccessError)
async def store_unavailable(request: Request, exc: StoreAccessError):
    return JSONResponse(status_code=503, content={'detail': 'Storage temporarily unavailable'})


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('compliance_portal.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response

app.include_router(compliance.router)
app.include_router(timesheets.router)
app.include_router(feedback.router)
app.include_router(documents.router)


@app.get('/')
def health():
    return {'app': settings.app_name, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'status': 'ok'}
