from typing import Callable, Optional

from core.chapter_craft import count_words, join_with_blank_line


class Document:
    """In-progress chapter text.

    Generation only ever appends; user edits replace the whole text. The
    ``generating`` flag is the per-document in-flight guard: while it is set,
    further generation attempts are dropped rather than queued.
    """

    def __init__(self, text: str = "", on_change: Optional[Callable[[str], None]] = None):
        self._text = text or ""
        self._word_count = count_words(self._text)
        self._on_change = on_change
        self.generating = False

    @property
    def text(self) -> str:
        return self._text

    @property
    def word_count(self) -> int:
        return self._word_count

    def is_empty(self) -> bool:
        return not self._text.strip()

    def append(self, addition: str) -> int:
        """Append generated text after a blank line; returns the new word count."""
        if not addition:
            return self._word_count
        self._text = join_with_blank_line(self._text, addition)
        self._word_count = count_words(self._text)
        self._notify()
        return self._word_count

    def replace(self, text: str) -> int:
        self._text = text or ""
        self._word_count = count_words(self._text)
        self._notify()
        return self._word_count

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self._text)
