import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from core.config import settings
from core.database import create_db_client
from core.exceptions import AppError
from core.limiter import init_redis
from services.error_monitoring import log_error_with_context
from services.gateways import build_payment_gateway
from services.notification_service import NotificationDispatcher
from services.payment_service import PaymentOrchestrator
from services.reminder_service import ReminderScheduler
from services.scheduler_service import ReminderJobRunner
from services.store import SupabaseAppointmentStore

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from routers import payments, reminders


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 Starting Payment & Reminder API Server...")
    store = SupabaseAppointmentStore(create_db_client(settings))
    notifier = NotificationDispatcher(settings, store)
    app.state.payments = PaymentOrchestrator(store, build_payment_gateway(settings), notifier, settings)
    app.state.reminders = ReminderScheduler(store, notifier, settings)

    job_runner = None
    if settings.ENABLE_SCHEDULER:
        job_runner = ReminderJobRunner(app.state.reminders, settings)
        job_runner.start()
    else:
        logger.info("ℹ️ Reminder scheduler disabled (ENABLE_SCHEDULER=false)")

    # Rate limiting stays off when Redis is unavailable
    redis_conn = await init_redis()
    if not redis_conn:
        logger.warning("⚠️ Rate limiting will be disabled (Redis unavailable).")
    yield
    # Shutdown
    logger.info("🛑 Shutting down Server...")
    if job_runner:
        job_runner.shutdown()
    if redis_conn:
        await redis_conn.close()


app = FastAPI(
    title="Telemedicine Payment & Reminder API",
    description="Appointment payments, refunds and reminder delivery",
    version="1.0.0",
    lifespan=lifespan
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(payments.router)
app.include_router(reminders.router)


# Validation exception handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    error_details = [{"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]} for e in errors]
    return JSONResponse(
        status_code=422,
        content={"detail": error_details, "message": "Validation error", "category": "validation"}
    )


# Service errors carry their own status code and category
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.category == "transport":
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.category}): {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "category": exc.category}
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    log_error_with_context(exc, request)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error.", "message": str(exc) if settings.ENVIRONMENT != "production" else "An unexpected error occurred."}
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "payments-reminders", "version": "1.0.0"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.SERVER_HOST, port=settings.SERVER_PORT, reload=(settings.ENVIRONMENT=="development"))
