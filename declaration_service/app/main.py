# FastAPI Application Entry Point
import logging
from fastapi import FastAPI
import httpx

# Configuration and Observability
from declaration_service.app.config import settings
from declaration_service.app.observability import setup_opentelemetry, logger

# Initialize OpenTelemetry
setup_opentelemetry(service_name=settings.SERVICE_NAME_API)

# Import instrumentors after OTel SDK is initialized
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.pymongo import PymongoInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

# Database connection and stores
from declaration_service.infrastructure.database.connection import connect_to_mongo, close_mongo_connection, get_database
from declaration_service.infrastructure.database.declaration_store import MongoDeclarationStore
from declaration_service.infrastructure.database.in_memory_declaration_store import InMemoryDeclarationStore
# Kafka Producer lifecycle
from declaration_service.infrastructure.kafka.producer import startup_kafka_producer, shutdown_kafka_producer
# Wizard sessions and lifecycle events
from declaration_service.app.service.events.recorder import DeclarationEventRecorder
from declaration_service.app.service.wizard.registry import WizardSessionRegistry

# API Routers
from declaration_service.app.api.v1.endpoints import health as health_router
from declaration_service.app.api.v1.endpoints import wizards as wizards_router
from declaration_service.app.api.v1.endpoints import declarations as declarations_router

# --- FastAPI Application Instance ---
app = FastAPI(
    title="Declaration Service",
    description="Declaration creation wizard with geometry and satellite compliance verification.",
    version="0.1.0"
)

# --- Event Handlers for Connections & OTel Instrumentation ---
@app.on_event("startup")
async def startup_event():
    logger.info("FastAPI application startup...")
    try:
        app.state.http_client = httpx.AsyncClient(timeout=settings.DEFAULT_HTTP_TIMEOUT)
        HTTPXClientInstrumentor().instrument()
        logger.info(f"HTTPX AsyncClient initialized with timeout {settings.DEFAULT_HTTP_TIMEOUT} and instrumented.")

        db = None
        if settings.DECLARATION_STORE_BACKEND == "mongo":
            await connect_to_mongo()
            db = get_database()
            PymongoInstrumentor().instrument()
            app.state.declaration_store = MongoDeclarationStore(db)
            logger.info("MongoDB declaration store ready.")
        else:
            app.state.declaration_store = InMemoryDeclarationStore()
            logger.warning("Using in-memory declaration store; records are lost on restart.")

        kafka_producer = await startup_kafka_producer()
        app.state.event_recorder = DeclarationEventRecorder(db=db, kafka_producer=kafka_producer)
        registry = WizardSessionRegistry(
            stage_timeout=settings.VERIFICATION_STAGE_TIMEOUT_SECONDS,
            idle_ttl=settings.WIZARD_IDLE_TTL_SECONDS,
            max_finished=settings.WIZARD_FINISHED_SNAPSHOTS,
        )
        registry.start_expiry(settings.WIZARD_EXPIRY_SWEEP_SECONDS)
        app.state.wizard_registry = registry
        logger.info("Wizard session registry ready.")
    except Exception as e:
        logger.error(f"Failed during startup: {e}", exc_info=True)
        raise

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FastAPI application shutdown...")

    registry = getattr(app.state, "wizard_registry", None)
    if registry is not None:
        await registry.close_all()

    if getattr(app.state, "http_client", None):
        await app.state.http_client.aclose()
        logger.info("HTTPX AsyncClient closed.")

    await shutdown_kafka_producer()

    close_mongo_connection()

FastAPIInstrumentor.instrument_app(app)
logger.info("FastAPI instrumentation complete.")

# Include API Routers
app.include_router(health_router.router)
app.include_router(wizards_router.router, prefix="/api/v1", tags=["Declaration Wizard"])
app.include_router(declarations_router.router, prefix="/api/v1", tags=["Declarations"])

logger.info("API routers included. Application setup complete.")

# To run: uvicorn declaration_service.app.main:app --reload --port 8000
