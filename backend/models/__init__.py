from datetime import datetime
from enum import Enum
from typing import Optional, List
from uuid import uuid4

from pydantic import BaseModel, Field


class WritingMode(str, Enum):
    STORY = "story"
    DIALOGUE = "dialogue"
    DESCRIPTION = "description"
    CHARACTER = "character"
    PLOT = "plot"


class Language(str, Enum):
    INDONESIAN = "indonesian"
    ENGLISH = "english"


class AutoPilotState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    GENERATING = "generating"


class StepOutcome(str, Enum):
    APPENDED = "appended"
    SKIPPED_BUSY = "skipped_busy"
    NETWORK_FAILURE = "network_failure"
    UNRECOGNIZED_RESPONSE = "unrecognized_response"
    REJECTED_CONTENT = "rejected_content"
    DISCARDED_AFTER_STOP = "discarded_after_stop"
    COMPLETED = "completed"


def new_id() -> str:
    return uuid4().hex[:12]


class Chapter(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    content: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Project(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str = "Untitled Novel"
    genre: str = "fantasy"
    language: Language = Language.INDONESIAN
    chapters: List[Chapter] = Field(default_factory=list)
    current_chapter_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def chapter(self, chapter_id: str) -> Optional[Chapter]:
        for chapter in self.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None


class GenerationRequest(BaseModel):
    message: str
    model: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, gt=0)
    temperature: Optional[float] = Field(default=None, ge=0, le=1)
    conversation_id: Optional[str] = None


class PromptOptions(BaseModel):
    mode: WritingMode = WritingMode.STORY
    genre: str = "fantasy"
    language: Language = Language.INDONESIAN
    target_words: int = Field(default=2000, ge=1)
    context_chars: int = Field(default=1000, ge=0)
    chapter_number: int = Field(default=1, ge=1)


class ProgressState(BaseModel):
    current_word_count: int = 0
    target_word_count: int = 2000
    interval_seconds: float = 5.0
    percentage: float = 0.0
    complete: bool = False


class StepResult(BaseModel):
    outcome: StepOutcome
    text: str = ""
    words: int = 0
    word_count: int = 0


class AutoPilotStatus(BaseModel):
    state: AutoPilotState = AutoPilotState.IDLE
    running: bool = False
    completed: bool = False
    ticks: int = 0
    appended_ticks: int = 0
    consecutive_failures: int = 0
    last_outcome: Optional[StepOutcome] = None
    last_tick_at: Optional[datetime] = None
    estimated_ticks_left: int = 0
    progress: ProgressState = Field(default_factory=ProgressState)
