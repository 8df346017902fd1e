"""Main FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from esign.config import settings
from esign.database import engine, Base
from esign.api.routes import router
from esign.services.errors import SigningError
# Import models to register them with SQLAlchemy Base
from esign.models.domain import ContractTemplate, Contract, ContractSigner
from esign.models.evidence import ConsentRecord, ReviewSession, Signature, Certificate
from esign.models.audit import AuditEvent

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="E-Sign Engine - Contract Signature Lifecycle",
    description="Moves contracts from draft through ordered multi-party e-signature to a tamper-evident completed state.",
    version="0.1.0"
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For MVP - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SigningError)
def handle_signing_error(request: Request, exc: SigningError):
    """Every refusal becomes one JSON body a client can map to one message."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s refused (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message, "details": exc.details}
    )


# Include API routes
app.include_router(router, prefix="/api", tags=["E-Sign"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "E-Sign Engine"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
