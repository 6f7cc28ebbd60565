from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

# Import database components
from settlement.database.database import sync_engine, Base

# Import middleware
from settlement.common.middleware import TenantMiddleware, SecurityHeadersMiddleware

# Import routers
from settlement.modules.cash.router import cash_boxes_router, cash_registers_router
from settlement.modules.matching.router import transfers_router, payment_matching_router
from settlement.modules.payments.router import (
    sales_payments_router,
    payments_router,
    payment_methods_router,
    payment_gateways_router
)
from settlement.modules.sales.router import router as sales_router
from settlement.modules.webhooks.router import router as webhooks_router

# Import models for table creation
import settlement.modules.stores.models
import settlement.modules.sales.models
import settlement.modules.payments.models
import settlement.modules.cash.models
import settlement.modules.matching.models

from settlement.core.config import settings
from settlement.modules.gateways.registry import build_gateway_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Settlement API",
    description="Multi-tenant payment lifecycle and settlement reconciliation for retail POS",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

app.state.gateway_registry = build_gateway_registry()

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TenantMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sales_router, prefix="/api/v1")
app.include_router(sales_payments_router, prefix="/api/v1")
app.include_router(payments_router, prefix="/api/v1")
app.include_router(payment_matching_router, prefix="/api/v1")
app.include_router(payment_methods_router, prefix="/api/v1")
app.include_router(payment_gateways_router, prefix="/api/v1")
app.include_router(webhooks_router, prefix="/api/v1")
app.include_router(transfers_router, prefix="/api/v1")
app.include_router(cash_boxes_router, prefix="/api/v1")
app.include_router(cash_registers_router, prefix="/api/v1")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Error no controlado en {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": {"error": "Error interno del servidor", "code": "UNEXPECTED_ERROR"}},
    )


# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
async def read_root():
    return {
        "message": "Settlement API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Settlement API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Gateways: {[p.value for p in app.state.gateway_registry.providers]}")
