import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rasoi.config import settings
from rasoi.db import Base, engine
from rasoi.errors import AppError
from rasoi.middleware import RequestIdMiddleware
from rasoi.schemas.common import ErrorOut
from rasoi import models  # noqa: F401  (registers tables)
from rasoi.routers import customers, dining, integrations, orders, public, reports

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rasoi Orders API", version="1.0.0")

@app.on_event("startup")
def init_db():
    Base.metadata.create_all(bind=engine)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse({"error": {"code": code, "message": message}}, status_code=status)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    else:
        logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()) if p != 'body')}: {e.get('msg')}" for e in exc.errors()
    )
    return _error(400, "VALIDATION_ERROR", problems or "Invalid request")


_HTTP_CODES = {400: "VALIDATION_ERROR", 401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND"}

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    fallback = "VALIDATION_ERROR" if exc.status_code < 500 else "INTERNAL_ERROR"
    return _error(exc.status_code, _HTTP_CODES.get(exc.status_code, fallback), str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "INTERNAL_ERROR", "Something went wrong")


# every router documents the shared error body
ERROR_RESPONSES = {status: {"model": ErrorOut} for status in (400, 401, 403, 404, 500)}

for r in (orders, customers, dining, reports, integrations, public):
    app.include_router(r.router, responses=ERROR_RESPONSES)


@app.get("/healthz")
def healthz():
    return {"ok": True}
