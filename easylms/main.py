import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from easylms.courses import config
from easylms.courses.app import setup_course_routes, startup_course_system
from easylms.courses.database import DatabaseManager
from easylms.courses.errors import LMSError
from easylms.courses.storage import ObjectStorage

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _field_messages(exc: RequestValidationError) -> list:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", []) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return messages


def create_app(db=None, storage=None) -> FastAPI:
    """
    Build the API. Tests pass an in-memory database and a storage fake;
    otherwise clients are built from configuration.
    """
    app = FastAPI(title="EasyLMS API")

    manager = None
    if db is None:
        manager = DatabaseManager()
        db = manager.connect()
    app.state.db = db
    app.state.storage = storage or ObjectStorage()

    @app.on_event("startup")
    async def startup_event():
        await startup_course_system(app.state.db)

    @app.on_event("shutdown")
    async def shutdown_event():
        if manager:
            manager.disconnect()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==================== ERROR ENVELOPE ====================

    @app.exception_handler(LMSError)
    async def lms_error_handler(request: Request, exc: LMSError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"message": "Validation failed", "error": _field_messages(exc)},
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)})

    # ==================== ROUTER REGISTRATION ====================
    setup_course_routes(app)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
