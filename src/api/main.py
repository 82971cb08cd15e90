"""
FastAPI application entry point.

HTTP surface for duplicate-safe job admission and lifecycle management.
Optional API key authentication on the /jobs routes.
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI

from src import __version__
from src.infra.config import load_config
from .routers import jobs
from ._scheduler_state import get_job_service, init_job_service, shutdown_job_service
from .dependencies.auth import verify_api_key, API_AUTH_ENABLED

logger = logging.getLogger(__name__)

load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup builds the job service and re-submits every enabled PENDING
    job to the work queue. A reconciliation failure aborts startup.
    """
    init_job_service(load_config())
    submitted = get_job_service().initialize()
    logger.info(f"[API] Startup complete, {submitted} jobs on the work queue")

    yield

    shutdown_job_service()


tags_metadata = [
    {
        "name": "jobs",
        "description": "Job admission and lifecycle - duplicate-safe create, update, enable/disable and delete",
    },
]

app = FastAPI(
    title="Job Scheduler API",
    lifespan=lifespan,
    description="""
## Job Scheduler API

Admits job definitions, rejects duplicates and keeps the work queue in
sync with each job's status and enabled flag.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require
an `X-API-Key` header matching the `API_KEY` environment variable.

### Duplicate detection
Jobs with the same name, frequency, cronExpression and data are rejected
with **409**. Retry with `?forceCreate=true` to admit the job anyway.

### Usage
```bash
# Start server
python main.py serve --host 127.0.0.1 --port 8000

# Create a daily job
curl -X POST http://localhost:8000/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"name": "nightly-report", "frequency": "DAILY", "startDate": "2030-01-01T00:00:00Z"}'
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


# Health check - NO authentication (operational endpoint)
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    return {"status": "ok", "version": __version__}


# Include routers WITH authentication dependency (when enabled)
auth_dependency = [Depends(verify_api_key)] if API_AUTH_ENABLED else []

app.include_router(
    jobs.router, prefix="/jobs", tags=["jobs"], dependencies=auth_dependency
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
