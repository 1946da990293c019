"""
FastAPI main application entry point.

This backend handles:
- Announcements, documents and SBAR incident reports
- Daily department metrics and the monthly dashboard summary
- Internal messaging threads
- User provisioning for portal setup

Supabase (Auth, Postgres with row-level security, Storage) is the system of
record; every request runs under the caller's Supabase session.
"""

import logging
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from hospital_portal import __version__
from hospital_portal.config import get_settings
from hospital_portal.errors import register_exception_handlers
from hospital_portal.logging_config import configure_logging, request_id_var
from hospital_portal.routers import (
    admin,
    announcements,
    auth,
    departments,
    documents,
    incidents,
    messaging,
    metrics,
    transaction_categories,
)

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Hospital Operations Portal API",
    description="Role-based portal for announcements, documents, incidents, metrics and messaging",
    version=__version__,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Tag every log record with a request id and echo it as X-Request-ID."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    token = request_id_var.set(request_id)
    try:
        logger.debug("%s %s", request.method, request.url.path)
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
app.include_router(announcements.router, prefix="/api/announcements", tags=["Announcements"])
app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])
app.include_router(incidents.router, prefix="/api/incidents", tags=["Incidents"])
app.include_router(metrics.router, prefix="/api/metrics", tags=["Metrics"])
app.include_router(
    transaction_categories.router,
    prefix="/api/transaction-categories",
    tags=["Transaction Categories"],
)
app.include_router(departments.router, prefix="/api/departments", tags=["Departments"])
app.include_router(
    departments.subdepartments_router, prefix="/api/subdepartments", tags=["Departments"]
)
app.include_router(messaging.router, prefix="/api/messaging", tags=["Messaging"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Hospital Operations Portal API is running"}


@app.get("/health")
async def health_check():
    """Detailed health check."""
    from hospital_portal.services.supabase_client import get_supabase_client

    health_status = {
        "status": "healthy",
        "services": {"supabase": "unknown"},
    }

    try:
        db = get_supabase_client()
        db.client.table("departments").select("id", count="exact", head=True).execute()
        health_status["services"]["supabase"] = "connected"
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["services"]["supabase"] = f"error: {str(e)}"

    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("hospital_portal.main:app", host="0.0.0.0", port=8000, reload=True)
