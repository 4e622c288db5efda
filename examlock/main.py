# examlock/main.py
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import config
from .core.database import get_db_manager, close_db_manager
from .core.errors import ExamLockError
from .core.utils import ResponseFormatter
from .api.routes import router

# Setup logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    logger.info("🚀 ExamLock API starting...")

    try:
        # Validate configuration
        validation = config.validate()
        if not validation["valid"]:
            raise ExamLockError(f"Configuration invalid: {validation['issues']}")

        logger.info("✅ Configuration validated")

        # Initialize storage
        logger.info(f"🔄 Initializing {config.STORAGE_BACKEND} storage...")
        db_manager = get_db_manager()
        db_health = db_manager.validate_connection()

        if not db_health["overall"]:
            raise ExamLockError(f"Database validation failed: {db_health}")

        logger.info("✅ Storage connected and validated")
        logger.warning("⚠️ Passwords are stored and compared in plain text; do not reuse real credentials")
        logger.info(f"📊 Departments: {', '.join(config.DEPARTMENTS)}")

    except ExamLockError as e:
        logger.error(f"❌ Startup failed: {e.message}")
        raise

    yield

    # Cleanup on shutdown
    logger.info("👋 Shutting down...")
    from .services.session_service import get_session_service
    get_session_service().shutdown()
    close_db_manager()
    logger.info("✅ Graceful shutdown completed")

# Create FastAPI application
app = FastAPI(
    title=config.API_TITLE,
    description=config.API_DESCRIPTION,
    version=config.API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)

# Exception handlers
@app.exception_handler(ExamLockError)
async def examlock_error_handler(request: Request, exc: ExamLockError):
    """Render the error taxonomy with its HTTP status"""
    if exc.status_code >= 500:
        logger.error(f"{exc.title}: {exc.message}")
    else:
        logger.warning(f"{exc.title}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=ResponseFormatter.format_error_response(exc.message, exc.title, exc.error_type)
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies"""
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg')}" for err in errors
    ) or "Invalid request"
    logger.warning(f"Validation error: {message}")
    return JSONResponse(
        status_code=400,
        content=ResponseFormatter.format_error_response(message, "Validation Error", "validation_error")
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content=ResponseFormatter.format_error_response(
            "An unexpected error occurred", "Internal Server Error", "server_error"
        )
    )

# Health check endpoints
@app.get("/health")
async def health_check():
    """Comprehensive health check"""
    health_status = {
        "status": "healthy",
        "service": "examlock_api",
        "version": config.API_VERSION
    }

    try:
        from .services.session_service import get_session_service
        session_health = get_session_service().health_check()
        health_status["sessions"] = session_health["status"]
        health_status["active_sessions"] = session_health["active_sessions"]
    except ExamLockError as e:
        health_status["sessions"] = "error"
        logger.warning(f"Session service health check failed: {e.message}")

    try:
        db_health = get_db_manager().validate_connection()
        health_status["database"] = "healthy" if db_health["overall"] else "degraded"
    except ExamLockError as e:
        health_status["database"] = "error"
        logger.warning(f"Database health check failed: {e.message}")

    if health_status.get("database") != "healthy":
        health_status["status"] = "degraded"
        return JSONResponse(status_code=503, content=health_status)

    return health_status

@app.get("/info")
async def api_info():
    """API information and capabilities"""
    return {
        "name": config.API_TITLE,
        "version": config.API_VERSION,
        "description": config.API_DESCRIPTION,
        "features": {
            "department_catalog": True,
            "timed_sessions": True,
            "auto_submit_on_focus_loss": True,
            "spreadsheet_import": True,
            "mongodb_integration": config.STORAGE_BACKEND == "mongo"
        },
        "configuration": {
            "storage_backend": config.STORAGE_BACKEND,
            "departments": config.DEPARTMENTS,
            "blur_debounce_ms": config.AUTO_SUBMIT_BLUR_DEBOUNCE_MS,
            "session_expiration_seconds": config.SESSION_EXPIRATION_SECONDS
        },
        "endpoints": {
            "list_tests": "GET /api/tests?department=",
            "start_session": "POST /api/sessions/{id}/start",
            "submit_session": "POST /api/sessions/{id}/submit",
            "results": "GET /api/results/{id}",
            "health": "GET /health",
            "docs": "GET /docs"
        }
    }

if __name__ == "__main__":
    import uvicorn

    logger.info("🚀 Starting ExamLock API")
    logger.info(f"🌐 Server: http://{config.API_HOST}:{config.API_PORT}")
    logger.info(f"📚 Docs: http://{config.API_HOST}:{config.API_PORT}/docs")

    uvicorn.run(
        "examlock.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG_MODE,
        log_level=os.getenv('LOG_LEVEL', 'info').lower(),
        access_log=config.DEBUG_MODE
    )
