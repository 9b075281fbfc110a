"""
CSS FARMS CBT exam service - FastAPI application entry point.

This module:
1. Sets up structured JSON logging
2. Initializes the FastAPI app with CORS middleware
3. Implements request ID middleware (X-Request-ID header)
4. Registers the trainee exam and admin routers
5. Provides a health check endpoint

Layout:
- routes/: API endpoint handlers
- models/: SQLAlchemy ORM models
- services/: exam loader, session state machine, integrity monitor,
  scoring and persistence
- logging_config.py: structured logging configuration
- database.py: database connection management
"""

import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from farms_cbt.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, generate_request_id
)
from farms_cbt.routes import exam, admin
from farms_cbt.database import DATABASE_URL, create_tables

# Register all models with Base.metadata
import farms_cbt.models  # noqa: F401

setup_logging()
logger = get_logger("http")

if DATABASE_URL.startswith("sqlite"):
    logger.info("Using SQLite, creating tables directly")
    create_tables()

app = FastAPI(
    title="CSS FARMS CBT",
    description=(
        "Computer-based testing for CSS FARMS trainees: timed exam sessions with "
        "retake prevention, integrity monitoring, automatic submission and scoring."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Tag every request with a UUID, return it in X-Request-ID and log the
    request start and completion with latency.
    """
    req_id = request.headers.get("X-Request-ID") or generate_request_id()
    request_id_var.set(req_id)
    start_time = time.time()

    log_with_context(logger, "INFO",
        f"Request started: {request.method} {request.url.path}",
        context={"request_id": req_id},
        extra_data={
            "ip": request.client.host if request.client else "unknown",
            "user_agent": request.headers.get("user-agent", ""),
        })

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-ID"] = req_id

    log_with_context(logger, "INFO",
        f"Request completed: {request.method} {request.url.path} → {response.status_code}",
        context={"request_id": req_id},
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "status_code": response.status_code
        })

    return response


app.include_router(exam.router, tags=["Exam"])
app.include_router(admin.router, tags=["Admin"])


@app.get("/health", tags=["Health"])
def health_check():
    """Health check for container probes."""
    return {"status": "healthy", "service": "farms-cbt-backend", "version": "1.0.0"}


@app.get("/", tags=["Root"])
def root():
    """Root endpoint with API information."""
    return {
        "service": "CSS FARMS CBT",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "open_session": "POST /api/exam/sessions",
            "session_state": "GET /api/exam/sessions/{sid}",
            "start": "POST /api/exam/sessions/{sid}/start/request, /start/confirm",
            "answer": "PUT /api/exam/sessions/{sid}/answers/{question_id}",
            "signals": "POST /api/exam/sessions/{sid}/signals",
            "submit": "POST /api/exam/sessions/{sid}/submit/request, /submit/confirm",
            "questions": "GET|POST /api/admin/questions",
            "exams": "GET|POST /api/admin/exams",
            "results_csv": "GET /api/admin/exams/{exam_id}/results.csv"
        }
    }
