import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings as core_settings
from app.core.errors import ServiceError
from app.database import Base, check_database_connection, engine
from app.models.ad import Ad  # noqa: F401  (registers tables for create_all)
from app.models.freight import Freight  # noqa: F401
from app.models.ledger import ClickLog, CreditTransaction, SiteSetting  # noqa: F401
from app.models.notification import Notification  # noqa: F401
from app.models.review import Review  # noqa: F401
from app.models.user import User  # noqa: F401
from app.routes.admin import router as admin_router
from app.routes.ads import router as ads_router
from app.routes.freights import router as freights_router
from app.routes.notifications import router as notifications_router
from app.routes.users import router as users_router
from app.utils.responses import fail

logging.basicConfig(
    level=core_settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=core_settings.APP_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[core_settings.APP_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(freights_router)
app.include_router(ads_router)
app.include_router(notifications_router)
app.include_router(users_router)
app.include_router(admin_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return fail(exc.message, exc.http_status, exc.details or None)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return fail("Invalid or missing data.", 400, {"errors": jsonable_errors(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s crashed", request.method, request.url.path)
    return fail("Internal error.", 500)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": str(error.get("msg", ""))}
        for error in exc.errors()
    ]


@app.on_event("startup")
def startup() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("%s started env=%s", core_settings.APP_NAME, core_settings.ENV)


@app.get("/health")
def health() -> dict[str, str]:
    database = "connected"
    status_value = "healthy"
    try:
        check_database_connection()
    except Exception:
        database = "disconnected"
        status_value = "degraded"

    return {
        "status": status_value,
        "database": database,
        "environment": core_settings.ENV,
        "base_url": core_settings.APP_BASE_URL,
    }
