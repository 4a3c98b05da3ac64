from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .admin import router as admin_router
from .app_logger import get_logger
from .db import Base, engine
from .deps import get_db, get_redis
from .errors import DomainError, ErrorCode
from .payment_routes import router as payment_router
from .ticket_routes import router as ticket_router

log = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create DB tables (migrations are out of scope)
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Boxoffice", version="1.0.0", lifespan=lifespan)

app.include_router(payment_router)
app.include_router(ticket_router)
app.include_router(admin_router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error_code": exc.code.value, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=400,
        content={"success": False, "error_code": ErrorCode.INVALID_INPUT.value, "message": message},
    )


@app.get("/health")
async def health(db: Session = Depends(get_db), redis: Redis = Depends(get_redis)):
    checks = {"database": "ok", "redis": "ok"}
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        log.exception("health check: database unreachable")
        checks["database"] = "error"
    try:
        await redis.ping()
    except RedisError:
        log.exception("health check: redis unreachable")
        checks["redis"] = "error"

    healthy = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "checks": checks},
    )
