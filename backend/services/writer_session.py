import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.autopilot import (
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_MIN_ACCEPT_WORDS,
    DEFAULT_TARGET_WORDS,
    AutoPilot,
    run_generation_step,
)
from core.chapter_craft import progress_percentage
from core.document import Document
from core.prompt_builder import build_critique_prompt, build_generation_prompt
from core.response_normalizer import normalize_response
from models import (
    AutoPilotStatus,
    Chapter,
    Language,
    ProgressState,
    Project,
    PromptOptions,
    StepResult,
    WritingMode,
)
from services.project_store import ProjectStore

logger = logging.getLogger("novelwriter.session")


class SessionError(Exception):
    pass


class ChapterNotFoundError(SessionError):
    pass


class LastChapterError(SessionError):
    pass


class ChapterBusyError(SessionError):
    pass


class WriterSession:
    """Editing state of one project: the current chapter document and its auto-pilot."""

    def __init__(
        self,
        project: Project,
        client: Any,
        store: Optional[ProjectStore] = None,
        *,
        target_words: int = DEFAULT_TARGET_WORDS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        min_accept_words: int = DEFAULT_MIN_ACCEPT_WORDS,
        context_chars: int = 1000,
    ):
        self.project = project
        self.client = client
        self.store = store
        self.target_words = target_words
        self.interval_seconds = interval_seconds
        self.min_accept_words = min_accept_words
        self.context_chars = context_chars
        self.autopilot: Optional[AutoPilot] = None
        self._documents: Dict[str, Document] = {}

        if not project.chapters:
            project.chapters.append(Chapter(title="Chapter 1"))
        if project.current_chapter_id is None or project.chapter(project.current_chapter_id) is None:
            project.current_chapter_id = project.chapters[0].id
        self.document = self._bind_document()

    # ---------------- chapters ----------------
    def current_chapter(self) -> Chapter:
        chapter = self.project.chapter(self.project.current_chapter_id or "")
        if chapter is None:
            raise ChapterNotFoundError(self.project.current_chapter_id)
        return chapter

    def chapter_number(self, chapter_id: str) -> int:
        for idx, chapter in enumerate(self.project.chapters):
            if chapter.id == chapter_id:
                return idx + 1
        raise ChapterNotFoundError(chapter_id)

    def _require_chapter(self, chapter_id: str) -> Chapter:
        chapter = self.project.chapter(chapter_id)
        if chapter is None:
            raise ChapterNotFoundError(chapter_id)
        return chapter

    def _document_for(self, chapter: Chapter) -> Document:
        # One document per chapter id; its generating flag is that chapter's in-flight guard.
        document = self._documents.get(chapter.id)
        if document is not None:
            return document

        def on_change(text: str) -> None:
            chapter.content = text
            chapter.updated_at = datetime.now()
            self.save()

        document = Document(chapter.content, on_change=on_change)
        self._documents[chapter.id] = document
        return document

    def _bind_document(self) -> Document:
        return self._document_for(self.current_chapter())

    def _ensure_idle(self, chapter_id: str) -> None:
        document = self._documents.get(chapter_id)
        if document is not None and document.generating:
            raise ChapterBusyError("A generation is in progress for this chapter")

    def add_chapter(self, title: Optional[str] = None) -> Chapter:
        chapter = Chapter(title=(title or "").strip() or f"Chapter {len(self.project.chapters) + 1}")
        self.stop_autopilot(reason="chapter_added")
        self.project.chapters.append(chapter)
        self.project.current_chapter_id = chapter.id
        self.document = self._bind_document()
        self.save()
        logger.info("chapter added project_id=%s chapter_id=%s title=%s", self.project.id, chapter.id, chapter.title)
        return chapter

    def select_chapter(self, chapter_id: str) -> Chapter:
        chapter = self._require_chapter(chapter_id)
        if chapter.id != self.project.current_chapter_id:
            self.stop_autopilot(reason="chapter_switched")
            self.project.current_chapter_id = chapter.id
            self.document = self._bind_document()
            self.save()
        return chapter

    def update_chapter(self, chapter_id: str, content: Optional[str] = None, title: Optional[str] = None) -> Chapter:
        chapter = self._require_chapter(chapter_id)
        if title is not None and title.strip():
            chapter.title = title.strip()
        if content is not None:
            self._document_for(chapter).replace(content)
        chapter.updated_at = datetime.now()
        self.save()
        return chapter

    def delete_chapter(self, chapter_id: str) -> Chapter:
        chapter = self._require_chapter(chapter_id)
        if len(self.project.chapters) <= 1:
            raise LastChapterError("Cannot delete the only chapter. Create a new chapter first.")
        self._ensure_idle(chapter_id)
        self.project.chapters = [c for c in self.project.chapters if c.id != chapter_id]
        self._documents.pop(chapter_id, None)
        if chapter_id == self.project.current_chapter_id:
            self.stop_autopilot(reason="chapter_deleted")
            self.project.current_chapter_id = self.project.chapters[0].id
            self.document = self._bind_document()
        self.save()
        logger.info("chapter deleted project_id=%s chapter_id=%s", self.project.id, chapter_id)
        return chapter

    def reset_chapter(self, chapter_id: str) -> Chapter:
        chapter = self._require_chapter(chapter_id)
        self._ensure_idle(chapter_id)
        if chapter.content.strip() and self.store is not None:
            self.store.backup(self.project.id, chapter.model_dump(mode="json"), reason="chapter-reset")
        if chapter.id == self.project.current_chapter_id:
            self.stop_autopilot(reason="chapter_reset")
        self._document_for(chapter).replace("")
        return chapter

    # ---------------- project ----------------
    def update_project(
        self,
        title: Optional[str] = None,
        genre: Optional[str] = None,
        language: Optional[Language] = None,
    ) -> Project:
        if title is not None and title.strip():
            self.project.title = title.strip()
        if genre is not None and genre.strip():
            self.project.genre = genre.strip()
        if language is not None:
            self.project.language = Language(language)
        self.save()
        return self.project

    def save(self) -> None:
        if self.store is not None:
            self.store.save(self.project)

    def _bound_autopilot(self) -> Optional[AutoPilot]:
        if self.autopilot is not None and self.autopilot.document is self.document:
            return self.autopilot
        return None

    def progress(self) -> ProgressState:
        autopilot = self._bound_autopilot()
        if autopilot is not None:
            return autopilot.progress()
        current = self.document.word_count
        return ProgressState(
            current_word_count=current,
            target_word_count=self.target_words,
            interval_seconds=self.interval_seconds,
            percentage=round(progress_percentage(current, self.target_words), 2),
            complete=current >= self.target_words,
        )

    def prompt_options(
        self,
        mode: WritingMode = WritingMode.STORY,
        genre: Optional[str] = None,
        language: Optional[Language] = None,
        target_words: Optional[int] = None,
    ) -> PromptOptions:
        return PromptOptions(
            mode=mode,
            genre=(genre or self.project.genre),
            language=language or self.project.language,
            target_words=target_words or self.target_words,
            context_chars=self.context_chars,
            chapter_number=self.chapter_number(self.current_chapter().id),
        )

    # ---------------- generation ----------------
    async def generate(
        self,
        mode: WritingMode = WritingMode.STORY,
        genre: Optional[str] = None,
        language: Optional[Language] = None,
    ) -> StepResult:
        options = self.prompt_options(mode, genre, language)
        document = self.document
        return await run_generation_step(
            document,
            self.client,
            lambda doc: build_generation_prompt(doc.text, options, doc.word_count),
        )

    async def critique(self, language: Optional[Language] = None) -> str:
        options = self.prompt_options(language=language)
        prompt = build_critique_prompt(self.document.text, options)
        raw = await asyncio.to_thread(self.client.complete, prompt)
        return normalize_response(raw).strip()

    def start_autopilot(
        self,
        mode: WritingMode = WritingMode.STORY,
        genre: Optional[str] = None,
        language: Optional[Language] = None,
        interval_seconds: Optional[float] = None,
        target_words: Optional[int] = None,
    ) -> AutoPilotStatus:
        if self.autopilot is not None and self.autopilot.running:
            return self.autopilot.status()
        self.autopilot = AutoPilot(
            self.document,
            self.client,
            self.prompt_options(mode, genre, language, target_words),
            interval_seconds=self.interval_seconds if interval_seconds is None else interval_seconds,
            min_accept_words=self.min_accept_words,
            on_complete=self._on_autopilot_complete,
        )
        self.autopilot.start()
        return self.autopilot.status()

    def stop_autopilot(self, reason: str = "requested") -> AutoPilotStatus:
        if self.autopilot is None:
            return AutoPilotStatus(progress=self.progress())
        if self.autopilot.stop():
            logger.info("autopilot stop project_id=%s reason=%s", self.project.id, reason)
        return self.autopilot.status()

    def autopilot_status(self) -> AutoPilotStatus:
        autopilot = self._bound_autopilot()
        if autopilot is None:
            return AutoPilotStatus(progress=self.progress())
        return autopilot.status()

    def _on_autopilot_complete(self, autopilot: AutoPilot) -> None:
        logger.info(
            "chapter complete project_id=%s chapter_id=%s words=%d",
            self.project.id,
            self.project.current_chapter_id,
            autopilot.document.word_count,
        )


class SessionRegistry:
    """In-memory sessions keyed by project id, backed by a ProjectStore."""

    def __init__(self, store: ProjectStore, client: Any, **session_kwargs: Any):
        self.store = store
        self.client = client
        self.session_kwargs = session_kwargs
        self._sessions: Dict[str, WriterSession] = {}

    def _open(self, project: Project) -> WriterSession:
        session = WriterSession(project, self.client, self.store, **self.session_kwargs)
        self._sessions[project.id] = session
        return session

    def create(
        self,
        title: Optional[str] = None,
        genre: Optional[str] = None,
        language: Optional[Language] = None,
    ) -> WriterSession:
        project = Project(title=(title or "").strip() or "Untitled Novel")
        if genre:
            project.genre = genre
        if language is not None:
            project.language = Language(language)
        session = self._open(project)
        session.save()
        logger.info("project created project_id=%s title=%s", project.id, project.title)
        return session

    def get(self, project_id: str) -> Optional[WriterSession]:
        session = self._sessions.get(project_id)
        if session is not None:
            return session
        project = self.store.load(project_id)
        if project is None:
            return None
        return self._open(project)

    def list_projects(self) -> List[Project]:
        ids = set(self.store.list_ids()) | set(self._sessions.keys())
        projects: List[Project] = []
        for project_id in sorted(ids):
            session = self.get(project_id)
            if session is not None:
                projects.append(session.project)
        return projects

    def delete(self, project_id: str) -> bool:
        session = self.get(project_id)
        if session is None:
            return False
        session.stop_autopilot(reason="project_deleted")
        self.store.backup(project_id, session.project.model_dump(mode="json"), reason="project-delete")
        self.store.delete(project_id)
        self._sessions.pop(project_id, None)
        logger.info("project deleted project_id=%s", project_id)
        return True

    def stop_all(self) -> None:
        for session in self._sessions.values():
            session.stop_autopilot(reason="shutdown")
