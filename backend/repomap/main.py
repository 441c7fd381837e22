# backend/repomap/main.py
import asyncio
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import IngestionAPI
from .config import get_settings
from .db import engine, init_db
from .errors import (
    NotFoundError,
    PersistenceError,
    RepoMapError,
    StateError,
    StructuralError,
    ValidationError,
)
from .fetcher import SourceFetcher
from .models import JobStatus
from .schemas import ProcessRequest
from .store import JobStore
from .worker import JobCoordinator

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Repository Tree Ingestion Worker")

# --- CORS for development ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_api: Optional[IngestionAPI] = None


def build_api() -> IngestionAPI:
    store = JobStore(engine)
    fetcher = SourceFetcher(settings.workspace_dir, settings.get_allowed_hosts_list())
    coordinator = JobCoordinator(
        store,
        fetcher,
        default_branch=settings.default_branch,
    )
    return IngestionAPI(
        store,
        coordinator,
        poll_interval=settings.poll_interval,
        poll_max_attempts=settings.poll_max_attempts,
    )


def get_api() -> IngestionAPI:
    if _api is None:
        raise RuntimeError("ingestion API not initialised (startup did not run)")
    return _api


@app.on_event("startup")
def startup():
    global _api
    init_db()
    _api = build_api()
    _api.coordinator.recover()
    logger.info("worker ready, workspaces under %s", settings.workspace_dir)


@app.on_event("shutdown")
def shutdown():
    if _api is not None:
        _api.coordinator.shutdown(wait=True)


# --- error mapping ---

_STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    StateError: 409,
    StructuralError: 500,
    PersistenceError: 500,
}

_TITLES = {
    ValidationError: "Invalid request",
    NotFoundError: "Job not found",
    StateError: "Job not completed",
    StructuralError: "Corrupt job data",
    PersistenceError: "Storage unavailable",
}


@app.exception_handler(RepoMapError)
async def repomap_error_handler(request, exc: RepoMapError):
    code = _STATUS_CODES.get(type(exc), 500)
    body = {"error": _TITLES.get(type(exc), "Internal server error"), "details": str(exc)}
    if isinstance(exc, StateError):
        body["status"] = exc.status
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content=body)


# --- routes ---

@app.post("/process", status_code=202)
def process_repository(payload: ProcessRequest, api: IngestionAPI = Depends(get_api)):
    if not payload.repo_url:
        raise ValidationError("Repository URL is required")
    submitted = api.submit(payload.repo_url, payload.repo_name, payload.branch)
    body = submitted.model_dump()
    body["status_url"] = f"/status/{submitted.job_id}"
    return body


@app.get("/status/{job_id}")
def get_status(job_id: str, api: IngestionAPI = Depends(get_api)):
    return api.status(job_id)


@app.get("/result/{job_id}")
def get_result(job_id: str, format: str = Query(default="flat"), api: IngestionAPI = Depends(get_api)):
    return api.result(job_id, format)


@app.get("/jobs")
def list_jobs(api: IngestionAPI = Depends(get_api)):
    return api.list()


@app.delete("/job/{job_id}")
def delete_job(job_id: str, api: IngestionAPI = Depends(get_api)):
    return api.delete(job_id)


@app.get("/health")
def health(api: IngestionAPI = Depends(get_api)):
    return api.health()


@app.websocket("/job-progress")
async def job_progress(websocket: WebSocket, api: IngestionAPI = Depends(get_api)):
    await websocket.accept()
    job_id = websocket.query_params.get("jobId") or websocket.query_params.get("job_id")
    if not job_id:
        await websocket.send_json({"error": "missing jobId query param"})
        await websocket.close(code=1008)
        return

    try:
        while True:
            try:
                record = api.status(job_id)
            except NotFoundError:
                await websocket.send_json({"error": "job_not_found"})
                await websocket.close()
                return

            await websocket.send_json({"job_id": job_id, "status": record.status})

            if JobStatus(record.status).is_terminal:
                await websocket.send_json(record.model_dump(mode="json"))
                await websocket.close()
                return

            await asyncio.sleep(1.0)

    except WebSocketDisconnect:
        logger.info("progress client for job %s disconnected", job_id)
    except PersistenceError as e:
        logger.error("progress push for job %s stopped: %s", job_id, e)
        try:
            await websocket.close(code=1011)
        except RuntimeError as close_error:
            logger.debug("progress socket for job %s already closed: %s", job_id, close_error)
