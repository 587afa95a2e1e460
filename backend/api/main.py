import time
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.llm_client import ChatRequestError, create_chat_client
from models import Language, StepOutcome, WritingMode
from services.project_store import ProjectStore
from services.writer_session import (
    ChapterBusyError,
    ChapterNotFoundError,
    LastChapterError,
    SessionRegistry,
    WriterSession,
)

BACKEND_ROOT = Path(__file__).resolve().parents[1]

GENERIC_GENERATION_FAILURE = "Failed to generate content. Please try again."


class Settings(BaseSettings):
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    data_dir: str = "../data"

    chat_base_url: str = "https://maplemoes-openhands-backend.hf.space"
    chat_endpoint: str = "/chat/message"
    chat_api_key: Optional[str] = None
    chat_model: str = "gpt-3.5-turbo"
    chat_max_tokens: int = 1500
    chat_temperature: float = 0.7
    chat_timeout_seconds: float = 30.0

    autopilot_target_words: int = 2000
    autopilot_interval_seconds: float = 5.0
    autopilot_min_accept_words: int = 100
    context_chars: int = 1000
    default_language: Language = Language.INDONESIAN
    default_genre: str = "fantasy"

    log_level: str = "INFO"
    enable_http_logging: bool = True
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(
        extra="ignore",
        env_file=str(BACKEND_ROOT / ".env"),
        env_file_encoding="utf-8",
    )


settings = Settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("novelwriter.api")
if settings.log_file:
    log_path = Path(settings.log_file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    root_logger = logging.getLogger("novelwriter")
    if not any(
        isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(log_path)
        for handler in root_logger.handlers
    ):
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
        file_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        root_logger.addHandler(file_handler)
        logger.info("file logging enabled path=%s", log_path)


def data_root() -> Path:
    configured = Path(settings.data_dir)
    if configured.is_absolute():
        root = configured.resolve()
    else:
        root = (BACKEND_ROOT / configured).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def build_registry(client: Any = None, root: Optional[Path] = None) -> SessionRegistry:
    if client is None:
        client = create_chat_client(
            base_url=settings.chat_base_url,
            endpoint=settings.chat_endpoint,
            api_key=settings.chat_api_key,
            model=settings.chat_model,
            max_tokens=settings.chat_max_tokens,
            temperature=settings.chat_temperature,
            timeout_seconds=settings.chat_timeout_seconds,
        )
    return SessionRegistry(
        ProjectStore(root or data_root()),
        client,
        target_words=settings.autopilot_target_words,
        interval_seconds=settings.autopilot_interval_seconds,
        min_accept_words=settings.autopilot_min_accept_words,
        context_chars=settings.context_chars,
    )


registry = build_registry()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    registry.stop_all()
    close = getattr(registry.client, "close", None)
    if callable(close):
        close()


app = FastAPI(title="Novel Writer API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def http_access_log_middleware(request: Request, call_next):
    if not settings.enable_http_logging:
        return await call_next(request)

    request_id = uuid4().hex[:8]
    started = time.perf_counter()
    logger.info(
        "REQ start id=%s method=%s path=%s query=%s",
        request_id,
        request.method,
        request.url.path,
        request.url.query or "-",
    )
    try:
        response = await call_next(request)
    except Exception:
        elapsed = (time.perf_counter() - started) * 1000
        logger.exception("REQ failed id=%s duration_ms=%.2f", request_id, elapsed)
        raise

    elapsed = (time.perf_counter() - started) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "REQ end id=%s status=%s duration_ms=%.2f",
        request_id,
        response.status_code,
        elapsed,
    )
    return response


class CreateProjectRequest(BaseModel):
    title: Optional[str] = None
    genre: Optional[str] = None
    language: Optional[Language] = None


class UpdateProjectRequest(BaseModel):
    title: Optional[str] = None
    genre: Optional[str] = None
    language: Optional[Language] = None


class CreateChapterRequest(BaseModel):
    title: Optional[str] = None


class UpdateChapterRequest(BaseModel):
    content: Optional[str] = None
    title: Optional[str] = None


class GenerateRequest(BaseModel):
    mode: WritingMode = WritingMode.STORY
    genre: Optional[str] = None
    language: Optional[Language] = None


class CritiqueRequest(BaseModel):
    language: Optional[Language] = None


class StartAutoPilotRequest(BaseModel):
    mode: WritingMode = WritingMode.STORY
    genre: Optional[str] = None
    language: Optional[Language] = None
    interval_seconds: Optional[float] = Field(default=None, ge=5, le=60)
    target_words: Optional[int] = Field(default=None, ge=100, le=20000)


def require_session(project_id: str) -> WriterSession:
    session = registry.get(project_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return session


def project_payload(session: WriterSession) -> Dict[str, Any]:
    payload = session.project.model_dump(mode="json")
    payload["progress"] = session.progress().model_dump(mode="json")
    payload["autopilot"] = session.autopilot_status().model_dump(mode="json")
    return payload


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/runtime/chat")
async def chat_runtime_status():
    config = getattr(registry.client, "config", None)
    return {
        "url": getattr(config, "url", None),
        "model": getattr(config, "model", None),
        "max_tokens": getattr(config, "max_tokens", None),
        "temperature": getattr(config, "temperature", None),
        "timeout_seconds": getattr(config, "timeout_seconds", None),
        "api_key_configured": bool(getattr(config, "api_key", None)),
        "autopilot": {
            "target_words": settings.autopilot_target_words,
            "interval_seconds": settings.autopilot_interval_seconds,
            "min_accept_words": settings.autopilot_min_accept_words,
        },
    }


@app.get("/api/projects")
async def list_projects():
    return [
        {
            "id": project.id,
            "title": project.title,
            "chapter_count": len(project.chapters),
            "updated_at": project.updated_at.isoformat(),
        }
        for project in registry.list_projects()
    ]


@app.post("/api/projects")
async def create_project(req: CreateProjectRequest):
    session = registry.create(
        title=req.title,
        genre=req.genre or settings.default_genre,
        language=req.language or settings.default_language,
    )
    return project_payload(session)


@app.get("/api/projects/{project_id}")
async def get_project(project_id: str):
    return project_payload(require_session(project_id))


@app.patch("/api/projects/{project_id}")
async def update_project(project_id: str, req: UpdateProjectRequest):
    session = require_session(project_id)
    session.update_project(title=req.title, genre=req.genre, language=req.language)
    return project_payload(session)


@app.delete("/api/projects/{project_id}")
async def delete_project(project_id: str):
    if not registry.delete(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"deleted": project_id}


@app.post("/api/projects/{project_id}/save")
async def save_project(project_id: str):
    session = require_session(project_id)
    session.save()
    return {"saved": project_id, "updated_at": session.project.updated_at.isoformat()}


@app.post("/api/projects/{project_id}/chapters")
async def add_chapter(project_id: str, req: CreateChapterRequest):
    session = require_session(project_id)
    chapter = session.add_chapter(req.title)
    return chapter.model_dump(mode="json")


@app.post("/api/projects/{project_id}/chapters/{chapter_id}/select")
async def select_chapter(project_id: str, chapter_id: str):
    session = require_session(project_id)
    try:
        session.select_chapter(chapter_id)
    except ChapterNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Chapter not found") from exc
    return project_payload(session)


@app.put("/api/projects/{project_id}/chapters/{chapter_id}")
async def update_chapter(project_id: str, chapter_id: str, req: UpdateChapterRequest):
    session = require_session(project_id)
    try:
        chapter = session.update_chapter(chapter_id, content=req.content, title=req.title)
    except ChapterNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Chapter not found") from exc
    return chapter.model_dump(mode="json")


@app.delete("/api/projects/{project_id}/chapters/{chapter_id}")
async def delete_chapter(project_id: str, chapter_id: str):
    session = require_session(project_id)
    try:
        session.delete_chapter(chapter_id)
    except ChapterNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Chapter not found") from exc
    except ChapterBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except LastChapterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return project_payload(session)


@app.post("/api/projects/{project_id}/chapters/{chapter_id}/reset")
async def reset_chapter(project_id: str, chapter_id: str):
    session = require_session(project_id)
    try:
        chapter = session.reset_chapter(chapter_id)
    except ChapterNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Chapter not found") from exc
    except ChapterBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return chapter.model_dump(mode="json")


@app.get("/api/projects/{project_id}/progress")
async def get_progress(project_id: str):
    return require_session(project_id).progress().model_dump(mode="json")


@app.post("/api/projects/{project_id}/generate")
async def generate_content(project_id: str, req: GenerateRequest):
    session = require_session(project_id)
    result = await session.generate(mode=req.mode, genre=req.genre, language=req.language)
    if result.outcome == StepOutcome.SKIPPED_BUSY:
        raise HTTPException(status_code=409, detail="A generation is already in progress")
    if result.outcome != StepOutcome.APPENDED:
        logger.warning(
            "manual generation failed project_id=%s outcome=%s",
            project_id,
            result.outcome.value,
        )
        raise HTTPException(status_code=502, detail=GENERIC_GENERATION_FAILURE)
    return {
        "outcome": result.outcome.value,
        "text": result.text,
        "words": result.words,
        "progress": session.progress().model_dump(mode="json"),
    }


@app.post("/api/projects/{project_id}/critique")
async def critique_content(project_id: str, req: CritiqueRequest):
    session = require_session(project_id)
    if session.document.is_empty():
        raise HTTPException(status_code=400, detail="Chapter is empty")
    try:
        feedback = await session.critique(language=req.language)
    except ChatRequestError as exc:
        logger.warning("critique failed project_id=%s error=%s", project_id, exc)
        raise HTTPException(status_code=502, detail=GENERIC_GENERATION_FAILURE) from exc
    if not feedback:
        raise HTTPException(status_code=502, detail=GENERIC_GENERATION_FAILURE)
    return {"critique": feedback}


@app.post("/api/projects/{project_id}/autopilot/start")
async def start_autopilot(project_id: str, req: StartAutoPilotRequest):
    session = require_session(project_id)
    status = session.start_autopilot(
        mode=req.mode,
        genre=req.genre,
        language=req.language,
        interval_seconds=req.interval_seconds,
        target_words=req.target_words,
    )
    return status.model_dump(mode="json")


@app.post("/api/projects/{project_id}/autopilot/stop")
async def stop_autopilot(project_id: str):
    return require_session(project_id).stop_autopilot().model_dump(mode="json")


@app.get("/api/projects/{project_id}/autopilot")
async def autopilot_status(project_id: str):
    return require_session(project_id).autopilot_status().model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
