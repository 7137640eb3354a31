"""
PetMed - Pet medical-record panels API
Cached, failure-tolerant vaccination, appointment, treatment, medication,
weight and allergy panels over the remote medical-record backend.
"""
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .api import panels
from .core.audit_middleware import AuditMiddleware
from .core.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="PetMed Medical Records API",
    description=(
        "Medical-record panels for pet owners: vaccinations, appointments, "
        "treatments, medications, weight records and allergies, kept usable "
        "when the remote backend is unavailable."
    ),
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # TODO: Restrict to the mobile/web client origins once they are fixed
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(AuditMiddleware)

app.include_router(panels.router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.VERSION}
