"""
SalesTrack - Conversion approval and commission service

Main FastAPI application with:
- Role-based authentication (rep/manager/director/admin)
- Conversion approval workflow
- Commission calculation with sequential deductions
- Approved-only totals normalized into the viewer's currency
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import select

from src.api import api_router
from src.config import settings
from src.db import get_db_context
from src.models import User, UserRole
from src.scheduler.jobs import scheduler, setup_scheduler
from src.services.errors import ConversionError
from src.utils.password import hash_password

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Creates the bootstrap admin account if no admin exists
    - Starts the rate refresh scheduler

    Shutdown:
    - Stops the scheduler
    """
    logger.info("Starting SalesTrack...")

    async with get_db_context() as db:
        result = await db.execute(
            select(User).where(User.role == UserRole.ADMIN).limit(1)
        )
        admin = result.scalar_one_or_none()

        if not admin:
            logger.info("Creating admin account...")
            admin = User(
                username=settings.admin_username,
                password_hash=hash_password(settings.admin_password),
                role=UserRole.ADMIN,
                display_name="Administrator",
                is_active=True,
            )
            db.add(admin)
            logger.info(f"Admin account created: {settings.admin_username}")

        await db.commit()

    if settings.scheduler_enabled:
        setup_scheduler()
        scheduler.start()

    logger.info("SalesTrack started successfully!")

    yield

    # Shutdown
    logger.info("Shutting down SalesTrack...")
    if scheduler.running:
        scheduler.shutdown(wait=False)


# Create FastAPI application
app = FastAPI(
    title="SalesTrack",
    description="Conversion approval and commission service",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)


@app.exception_handler(ConversionError)
async def conversion_error_handler(request: Request, exc: ConversionError):
    """Workflow and report errors: {"detail", "code"} with the error's status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies use the same shape as workflow validation errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or None
    body = {
        "detail": first.get("msg", "Invalid request"),
        "code": "validation_error",
        "errors": jsonable_errors(errors),
    }
    if field:
        body["field"] = field
    return JSONResponse(status_code=422, content=body)


def jsonable_errors(errors: list) -> list:
    # ctx may hold exception instances
    return [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in errors
    ]


# Include routers
app.include_router(api_router)  # /api/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
