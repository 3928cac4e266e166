from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import sync_engine, Base

# Import middleware
from app.common.middleware import TenantMiddleware

# Import routers
from app.modules.pdv.router import pdv_router
from app.modules.operating_config.router import operating_config_router
from app.modules.pos.routers import cash_registers_router, sales_router
from app.modules.consumptions.router import consumptions_router

# Import models for table creation
import app.modules.auth.models
import app.modules.company.models
import app.modules.pdv.models
import app.modules.audit.models
import app.modules.operating_config.models
import app.modules.pos.models
import app.modules.consumptions.models

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Caja API",
    description="Ciclo de vida de caja, cierre automático y conciliación por punto de venta",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(TenantMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Add your frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(pdv_router, tags=["PDVs"])
app.include_router(operating_config_router, prefix="/api/v1")
app.include_router(cash_registers_router, prefix="/api/v1")
app.include_router(sales_router, prefix="/api/v1")
app.include_router(consumptions_router, prefix="/api/v1")

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)

@app.get("/")
async def read_root():
    return {
        "message": "Caja API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}

@app.on_event("startup")
async def startup_event():
    logger.info("Caja API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Default timezone: {settings.DEFAULT_TIMEZONE}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Caja API shutting down...")
