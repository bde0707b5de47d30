"""FastAPI application entry point."""
import logging
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api import compliance, compliance_survey
from app.core.config import settings
from app.core.errors import (
    ComplianceError,
    DirectoryUnavailableError,
    IncompleteSurveyError,
    NotFoundError,
    StateConflictError,
    SurveyUnavailable,
    UnassignedDepartmentError,
    ValidationError,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Compliance Survey Engine", version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Domain errors -> HTTP
@app.exception_handler(ComplianceError)
async def handle_compliance_error(request: Request, exc: ComplianceError):
    if isinstance(exc, IncompleteSurveyError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": exc.message, "missing_question_ids": exc.missing_question_ids},
        )
    if isinstance(exc, ValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": exc.message, "fields": exc.fields},
        )
    if isinstance(exc, SurveyUnavailable):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})
    if isinstance(exc, NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})
    if isinstance(exc, UnassignedDepartmentError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": exc.message, "department_id": exc.department_id},
        )
    if isinstance(exc, StateConflictError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": exc.message})
    if isinstance(exc, DirectoryUnavailableError):
        logger.error("Directory unavailable: %s", exc.message)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": exc.message})
    logger.error("Unhandled compliance error: %s", exc.message)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": exc.message})


# Routes
app.include_router(compliance.router, prefix="/compliance", tags=["compliance"])
# Token-addressed survey taking
app.include_router(compliance_survey.router, prefix="/compliance-survey", tags=["compliance-survey"])


@app.get("/")
def read_root():
    return {"message": "Compliance Survey Engine API"}
