"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers all API routers.
"""
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from table_importer.api.dependencies import shutdown_import_service
from table_importer.api.routers import imports, mappings, tables
from table_importer.core.config import settings
from table_importer.core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level, settings.log_file or None)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown events."""
    if os.getenv("SKIP_DB_INIT") == "1":
        print("SKIP_DB_INIT=1 detected; skipping database check during startup")
    else:
        from table_importer.db.session import get_engine

        # Connection problems are reported by get_engine itself.
        get_engine()

    yield  # Application runs here

    # Shutdown: stop the import worker, cancelling a running import
    shutdown_import_service()


app = FastAPI(
    title="Table Importer API",
    version="1.0.0",
    description="Map delimited text files onto database tables and import, update or undo them",
    lifespan=lifespan,
)

# Allow origins from environment variable or defaults for development
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tables.router, prefix="/api")
app.include_router(mappings.router, prefix="/api")
app.include_router(imports.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "Table Importer API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "table-importer"
    }
