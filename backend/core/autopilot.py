import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from core.chapter_craft import count_words, max_ticks_to_target, progress_percentage
from core.document import Document
from core.llm_client import ChatRequestError
from core.prompt_builder import build_generation_prompt
from core.response_normalizer import normalize_response
from models import AutoPilotState, AutoPilotStatus, ProgressState, PromptOptions, StepOutcome, StepResult
from utils.text_cleaner import strip_filler

logger = logging.getLogger("novelwriter.autopilot")

# Auto-pilot rejects responses shorter than this many words.
DEFAULT_MIN_ACCEPT_WORDS = 100
DEFAULT_TARGET_WORDS = 2000
DEFAULT_INTERVAL_SECONDS = 5.0

_FAILURE_OUTCOMES = {
    StepOutcome.NETWORK_FAILURE,
    StepOutcome.UNRECOGNIZED_RESPONSE,
    StepOutcome.REJECTED_CONTENT,
}


async def run_generation_step(
    document: Document,
    client: Any,
    build_prompt: Callable[[Document], str],
    *,
    min_accept_words: int = 1,
    is_cancelled: Optional[Callable[[], bool]] = None,
) -> StepResult:
    """One guarded generation round trip against ``document``.

    ``client.complete(prompt)`` runs in a worker thread and returns the raw
    reply payload. The result is appended only if it survives normalization,
    filler stripping and the ``min_accept_words`` threshold, and only if
    ``is_cancelled`` does not report a stop in the meantime.
    """
    if document.generating:
        logger.debug("generation skipped reason=in_flight")
        return StepResult(outcome=StepOutcome.SKIPPED_BUSY, word_count=document.word_count)

    document.generating = True
    try:
        prompt = build_prompt(document)
        try:
            raw = await asyncio.to_thread(client.complete, prompt)
        except ChatRequestError as exc:
            logger.warning("generation failed reason=network error=%s", exc)
            return StepResult(outcome=StepOutcome.NETWORK_FAILURE, word_count=document.word_count)

        text = normalize_response(raw)
        if not text.strip():
            logger.warning("generation failed reason=unrecognized_response")
            return StepResult(outcome=StepOutcome.UNRECOGNIZED_RESPONSE, word_count=document.word_count)

        text = strip_filler(text)
        words = count_words(text)
        if words < max(min_accept_words, 1):
            logger.info(
                "generation rejected reason=too_short words=%d min_accept_words=%d",
                words,
                min_accept_words,
            )
            return StepResult(
                outcome=StepOutcome.REJECTED_CONTENT,
                text=text,
                words=words,
                word_count=document.word_count,
            )

        if is_cancelled is not None and is_cancelled():
            logger.info("generation discarded reason=stopped words=%d", words)
            return StepResult(
                outcome=StepOutcome.DISCARDED_AFTER_STOP,
                text=text,
                words=words,
                word_count=document.word_count,
            )

        total = document.append(text)
        logger.info("generation appended words=%d total_words=%d", words, total)
        return StepResult(outcome=StepOutcome.APPENDED, text=text, words=words, word_count=total)
    finally:
        document.generating = False


class CancelToken:
    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class AutoPilot:
    """Timer-driven loop that extends a document toward a target word count.

    The scheduler task and its cancel token are owned by the instance. A tick
    fires every ``interval_seconds``; ticks that find a generation in flight are
    skipped. ``stop()`` takes effect immediately for scheduling; a request that
    is already in flight is left to finish and its result is dropped.
    """

    def __init__(
        self,
        document: Document,
        client: Any,
        options: Optional[PromptOptions] = None,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        min_accept_words: int = DEFAULT_MIN_ACCEPT_WORDS,
        on_complete: Optional[Callable[["AutoPilot"], None]] = None,
    ):
        if interval_seconds < 0:
            raise ValueError("interval_seconds must not be negative")
        if min_accept_words < 1:
            raise ValueError("min_accept_words must be positive")
        self.document = document
        self.client = client
        self.options = options or PromptOptions(target_words=DEFAULT_TARGET_WORDS)
        self.interval_seconds = float(interval_seconds)
        self.min_accept_words = int(min_accept_words)
        self.on_complete = on_complete

        self._state = AutoPilotState.IDLE
        self._token: Optional[CancelToken] = None
        self._runner: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._done: Optional[asyncio.Event] = None
        self._completed = False
        self._ticks = 0
        self._appended_ticks = 0
        self._consecutive_failures = 0
        self._last_outcome: Optional[StepOutcome] = None
        self._last_tick_at: Optional[datetime] = None

    @property
    def target_words(self) -> int:
        return self.options.target_words

    @property
    def state(self) -> AutoPilotState:
        return self._state

    @property
    def running(self) -> bool:
        return self._token is not None and not self._token.cancelled

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def completed(self) -> bool:
        return self._completed

    def start(self) -> bool:
        if self.running:
            return False
        token = CancelToken()
        self._token = token
        self._done = asyncio.Event()
        self._completed = False
        self._consecutive_failures = 0
        self._state = AutoPilotState.SCHEDULED
        self._runner = asyncio.create_task(self._run(token))
        logger.info(
            "autopilot started target_words=%d current_words=%d interval_s=%.2f min_accept_words=%d",
            self.target_words,
            self.document.word_count,
            self.interval_seconds,
            self.min_accept_words,
        )
        return True

    def stop(self) -> bool:
        token = self._token
        if token is None or token.cancelled:
            return False
        token.cancel()
        if self._runner is not None:
            self._runner.cancel()
        self._state = AutoPilotState.IDLE
        if self._done is not None:
            self._done.set()
        logger.info(
            "autopilot stopped ticks=%d current_words=%d in_flight=%s",
            self._ticks,
            self.document.word_count,
            self.document.generating,
        )
        return True

    async def wait(self) -> None:
        """Block until the loop is idle again (completed or stopped)."""
        if self._done is not None:
            await self._done.wait()

    async def drain(self) -> None:
        """Await the tick that is still running, if any."""
        if self._inflight is not None and not self._inflight.done():
            await self._inflight

    def progress(self) -> ProgressState:
        current = self.document.word_count
        return ProgressState(
            current_word_count=current,
            target_word_count=self.target_words,
            interval_seconds=self.interval_seconds,
            percentage=round(progress_percentage(current, self.target_words), 2),
            complete=current >= self.target_words,
        )

    def status(self) -> AutoPilotStatus:
        return AutoPilotStatus(
            state=self._state,
            running=self.running,
            completed=self._completed,
            ticks=self._ticks,
            appended_ticks=self._appended_ticks,
            consecutive_failures=self._consecutive_failures,
            last_outcome=self._last_outcome,
            last_tick_at=self._last_tick_at,
            estimated_ticks_left=max_ticks_to_target(
                self.document.word_count, self.target_words, self.min_accept_words
            ),
            progress=self.progress(),
        )

    def _build_prompt(self, document: Document) -> str:
        return build_generation_prompt(document.text, self.options, document.word_count)

    async def _run(self, token: CancelToken) -> None:
        while not token.cancelled:
            await asyncio.sleep(self.interval_seconds)
            if token.cancelled:
                break
            if self.document.generating:
                logger.debug("autopilot tick skipped reason=in_flight")
                continue
            self._inflight = asyncio.create_task(self._tick(token))

    async def _tick(self, token: CancelToken) -> None:
        if token.cancelled:
            return
        if self.document.word_count >= self.target_words:
            self._complete(token)
            return

        self._state = AutoPilotState.GENERATING
        self._last_tick_at = datetime.now()
        try:
            result = await run_generation_step(
                self.document,
                self.client,
                self._build_prompt,
                min_accept_words=self.min_accept_words,
                is_cancelled=lambda: token.cancelled,
            )
            outcome = result.outcome
        except Exception:
            logger.exception("autopilot tick failed unexpectedly")
            outcome = StepOutcome.NETWORK_FAILURE

        if token.cancelled:
            return
        if outcome != StepOutcome.SKIPPED_BUSY:
            self._record(outcome)

        if self.document.word_count >= self.target_words:
            self._complete(token)
        else:
            self._state = AutoPilotState.SCHEDULED

    def _record(self, outcome: StepOutcome) -> None:
        self._ticks += 1
        self._last_outcome = outcome
        if outcome == StepOutcome.APPENDED:
            self._appended_ticks += 1
            self._consecutive_failures = 0
        elif outcome in _FAILURE_OUTCOMES:
            self._consecutive_failures += 1
        logger.info(
            "autopilot tick done tick=%d outcome=%s words=%d/%d consecutive_failures=%d",
            self._ticks,
            outcome.value,
            self.document.word_count,
            self.target_words,
            self._consecutive_failures,
        )

    def _complete(self, token: CancelToken) -> None:
        token.cancel()
        if self._runner is not None:
            self._runner.cancel()
        self._completed = True
        self._last_outcome = StepOutcome.COMPLETED
        self._state = AutoPilotState.IDLE
        if self._done is not None:
            self._done.set()
        logger.info(
            "autopilot complete ticks=%d words=%d target_words=%d",
            self._ticks,
            self.document.word_count,
            self.target_words,
        )
        if self.on_complete is not None:
            try:
                self.on_complete(self)
            except Exception:
                logger.exception("autopilot completion callback failed")
