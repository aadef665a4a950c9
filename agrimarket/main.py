import time
import uuid
from contextlib import asynccontextmanager
from http import HTTPStatus

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agrimarket.core.config import settings
from agrimarket.core.exceptions import AppError, InsufficientStockError
from agrimarket.core.logging import add_context, clear_context, configure_logging
from agrimarket.core.responses import failure
from agrimarket.db.session import create_db_and_tables

configure_logging()
logger = structlog.get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    logger.info("startup", environment=settings.ENVIRONMENT)
    yield

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
    description="API for the farm-to-table marketplace"
)

@app.get("/")
def read_root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}. Visit /docs for Swagger UI."}

@app.get("/health")
def health():
    return {"success": True, "message": "OK", "data": {"environment": settings.ENVIRONMENT}}

# Error envelopes

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc, AppError):
        message = exc.message
        field = exc.field
    else:
        message = HTTPStatus(exc.status_code).phrase
        field = None
    data = {"failures": exc.failures} if isinstance(exc, InsufficientStockError) else None
    body = failure(message, str(exc.detail), field=field, data=data)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body), headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    field = ".".join(loc) or None
    body = failure("Validation failed", first.get("msg", "Invalid request"), field=field)
    return JSONResponse(status_code=400, content=jsonable_encoder(body))

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    detail = str(exc) if settings.is_development else "Internal server error"
    return JSONResponse(status_code=500, content=failure("Internal server error", detail))

@app.middleware("http")
async def request_context(request: Request, call_next):
    clear_context()
    add_context(request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex)
    started = time.perf_counter()
    response = await call_next(request)
    logger.debug(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response

from agrimarket.routers import auth, buyer, farmer, admin, orders, payment

app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(buyer.router, prefix="/api/v1/buyer", tags=["buyer"])
app.include_router(farmer.router, prefix="/api/v1/farmer", tags=["farmer"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["admin"])
app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])
app.include_router(payment.router, prefix="/api/v1/payments", tags=["payments"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
