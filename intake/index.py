from fastapi import Body, FastAPI, Header, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
from typing import Any, Callable, Dict, Optional

from intake.config_loader import get_settings
from intake.exceptions import global_exception_handler, AppException
from intake.models import (
    CoachRequest,
    CoachResponse,
    HealthResponse,
    SessionRecord,
    SessionWriteResponse,
)
from intake.services.coach_service import run_coach_turn
from intake.services.gemini_client import GeminiClient
from intake.services.session_store import SessionStore

settings = get_settings()

logging.basicConfig(
    level=settings["logging"]["level"],
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

session_store = SessionStore(ttl_seconds=settings["session"]["ttl_seconds"])

app = FastAPI()
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(AppException, global_exception_handler)
app.add_exception_handler(HTTPException, global_exception_handler)

@app.middleware("http")
async def log_requests(request: Any, call_next: Callable[[Any], Any]) -> Any:
    response = await call_next(request)
    logger.info(f"{request.method} {request.url.path} -> {response.status_code}")
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def check_api_secret(provided: Optional[str]) -> None:
    """When API_SECRET is configured, every coach request must present it."""
    expected = os.getenv("API_SECRET")
    if not expected:
        if os.getenv("ENVIRONMENT") == "production":
            raise HTTPException(status_code=401, detail="Unauthorized")
        return
    if provided != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")

@app.get("/")
@app.get("/api")
@app.get("/health")
@app.get("/api/health")
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", message="Intake API is running")

@app.post("/api/session", response_model=SessionWriteResponse)
async def write_session(body: Dict[str, Any] = Body(...)) -> SessionWriteResponse:
    record = session_store.write(
        payload=body.get("payload") or body,
        session_id=str(body["id"]) if body.get("id") else None,
        created_at=str(body["createdAt"]) if body.get("createdAt") else None,
    )
    return SessionWriteResponse(id=record.id, created_at=record.created_at, updated_at=record.updated_at)

@app.get("/api/session", response_model=SessionRecord)
async def read_session(id: Optional[str] = Query(None)) -> SessionRecord:
    if not id:
        raise HTTPException(status_code=400, detail="Missing id")
    return session_store.get(id)

@app.post("/api/coach", response_model=CoachResponse)
async def coach(
    request: CoachRequest,
    x_gemini_api_key: str | None = Header(None),
    x_api_secret: str | None = Header(None),
) -> CoachResponse:
    check_api_secret(x_api_secret)

    api_key = x_gemini_api_key or os.getenv("GEMINI_API_KEY")
    client = GeminiClient(api_key=api_key, settings=settings) if api_key else None
    return await run_in_threadpool(run_coach_turn, request, client)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
