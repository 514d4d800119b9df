"""Main FastAPI application entry point."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import CORS_ORIGINS
from app.database import engine, Base
from app.api.error_handlers import register_error_handlers
from app.api.middleware import CorrelationIdMiddleware
from app.api.routes import router
from app.utils.logger import get_logger, setup_logging
# Import models to register them with SQLAlchemy Base
from app.models.domain import ChangeRequest, Impact, Approval, Comment, RequestSequence  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Change control service started")
    yield


# Create FastAPI app
app = FastAPI(
    title="Change Control - Change Request Workflow",
    description="Change requests for hospital consulting projects: submission, approval, implementation and audit.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

register_error_handlers(app)

# Include API routes
app.include_router(router, prefix="/api", tags=["Change Requests"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Change Control"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
