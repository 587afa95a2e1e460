import math
import re
from typing import Dict

_WORD_RE = re.compile(r"\S+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

PARAGRAPH_SEPARATOR = "\n\n"


def count_words(text: str) -> int:
    """Whitespace-delimited word count, as shown in the editor status bar."""
    if not text:
        return 0
    return len(_WORD_RE.findall(text))


def join_with_blank_line(existing: str, addition: str) -> str:
    if not existing:
        return addition
    if not addition:
        return existing
    return existing + PARAGRAPH_SEPARATOR + addition


def tail_text(text: str, max_chars: int = 1000) -> str:
    content = text or ""
    if max_chars <= 0:
        return ""
    return content[-max_chars:]


def last_sentence(text: str) -> str:
    sentences = [part.strip() for part in _SENTENCE_SPLIT_RE.split(text or "") if part.strip()]
    return sentences[-1] if sentences else ""


def remaining_words(current_words: int, target_words: int) -> int:
    return max(int(target_words or 0) - int(current_words or 0), 0)


def progress_percentage(current_words: int, target_words: int) -> float:
    if target_words <= 0 or current_words <= 0:
        return 0.0
    return min(100.0, current_words / target_words * 100)


def max_ticks_to_target(initial_words: int, target_words: int, words_per_tick: int) -> int:
    # Upper bound on accepted ticks needed when every tick appends words_per_tick.
    if words_per_tick <= 0:
        raise ValueError("words_per_tick must be positive")
    return max(math.ceil((target_words - initial_words) / words_per_tick), 0)


def compute_request_budget(current_words: int, target_words: int, floor_words: int = 500) -> Dict[str, int]:
    """Words to ask for in the next request.

    Aims for half of what is left, never below ``floor_words`` and never above
    what is left to reach the target.
    """
    left = remaining_words(current_words, target_words)
    desired = max(floor_words, math.ceil(left / 2))
    return {
        "remaining": left,
        "request_words": min(desired, left) if left else 0,
    }
