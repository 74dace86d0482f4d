import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.core.database import create_prisma_client
from src.core.settings import settings
from src.domains.quickbooks.auth.routes import router as qbo_auth_router
from src.domains.quickbooks.auth.service import QuickBooksAuthService
from src.domains.sync.repository import PrismaSyncRepository
from src.domains.sync.routes import invoices_router, payments_router
from src.domains.sync_logs.routes import router as sync_logs_router
from src.shared.exceptions import BaseHTTPException
from src.shared.responses import error_response, exception_response

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    db = create_prisma_client()
    await db.connect()
    app.state.db = db
    app.state.repository = PrismaSyncRepository(db)
    app.state.auth_service = QuickBooksAuthService(app.state.repository)
    logger.info(f"QuickBooks sync API started ({settings.QBO_ENVIRONMENT})")
    yield
    # Shutdown
    await db.disconnect()


app = FastAPI(
    title="QuickBooks Sync API",
    description="Pushes invoices and payments to QuickBooks Online",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BaseHTTPException)
async def handle_api_exception(request: Request, exc: BaseHTTPException) -> JSONResponse:
    return exception_response(exc)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return error_response(
        "Validation failed",
        status.HTTP_400_BAD_REQUEST,
        {"errorCode": "VALIDATION_ERROR", "errors": errors},
    )


# Include routers
app.include_router(qbo_auth_router, prefix="/api/v1")
app.include_router(invoices_router, prefix="/api/v1")
app.include_router(payments_router, prefix="/api/v1")
app.include_router(sync_logs_router, prefix="/api/v1")


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "QuickBooks Sync API is running"}


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}
