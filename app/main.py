from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import engine, Base, SessionLocal

# Import middleware and error handlers
from app.common.middleware import RequestContextMiddleware
from app.common.exceptions import register_exception_handlers

# Import routers
from app.modules.comprobantes.router import router as comprobantes_router

# Import models for table creation
import app.modules.sales.models
import app.modules.comprobantes.models
from app.modules.comprobantes.sequence import SequenceAllocator

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Comprobantes API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"SUNAT gateway: {settings.SUNAT_GATEWAY}")

    # Create database tables (only for development - use migrations in production)
    if settings.ENVIRONMENT in ("development", "test"):
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        SequenceAllocator(db).ensure_series()
    finally:
        db.close()

    yield

    logger.info("Comprobantes API shutting down...")


# FastAPI app
app = FastAPI(
    title="Comprobantes API",
    description="Numeración y emisión de comprobantes electrónicos (facturas y boletas) ante SUNAT",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(RequestContextMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.FRONTEND_URL.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(comprobantes_router, prefix="/api/v1")


@app.get("/")
async def read_root():
    return {
        "message": "Comprobantes API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}
