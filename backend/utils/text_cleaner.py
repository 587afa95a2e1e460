"""
Text cleaner utilities for stripping assistant filler from generated prose
before it is appended to a chapter.

Models asked to continue a story tend to wrap the prose in chatter such as
"Sure! Here is the continuation:" or "Let me know if you'd like more.". Those
lines are removed from the head and tail of the text; the body is untouched.
"""

import re

# Lines matching any of these at the start of the text are dropped.
FILLER_PREFIX_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(?:sure|certainly|of course|absolutely|okay|ok)\s*[!.]?$", re.IGNORECASE),
    re.compile(
        r"^(?:sure|certainly|of course|absolutely|okay|ok)\s*[!.,]\s*(?:here|i'll|i will|let's|let me|below)\b[^\n]{0,140}$",
        re.IGNORECASE,
    ),
    re.compile(r"^here(?:'s| is| are)\b[^\n]{0,160}[:：]$", re.IGNORECASE),
    re.compile(
        r"^here(?:'s| is| are)\b[^\n]{0,80}\b(?:continuation|next (?:part|section|scene)|rest of the chapter)\b[^\n]{0,80}$",
        re.IGNORECASE,
    ),
    re.compile(r"^(?:continuing|continuation|continued)(?: (?:the|of the) story)?\s*[:：.]?$", re.IGNORECASE),
    re.compile(r"^begin(?:ning)? continuation(?: now)?\s*[:：.]?$", re.IGNORECASE),
    re.compile(r"^(?:#+\s*)?(?:chapter|bab)\s+[0-9ivxlcm]+\b[^\n]{0,80}$", re.IGNORECASE),
    re.compile(r"^(?:berikut(?: ini)? (?:adalah )?lanjutan)[^\n]{0,120}[:：]?$", re.IGNORECASE),
    re.compile(r"^[-=*_]{3,}$"),
)

# Lines matching any of these at the end of the text are dropped.
FILLER_SUFFIX_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\(?\[?\s*word count\s*[:：]?\s*~?\d[\d,]*(?: words)?\s*\]?\)?\.?$", re.IGNORECASE),
    re.compile(r"^\(?\[?\s*jumlah kata\s*[:：]?\s*~?\d[\d,.]*(?: kata)?\s*\]?\)?\.?$", re.IGNORECASE),
    re.compile(r"^\(?\[?(?:to be continued|continued|bersambung)\.*\]?\)?\.*$", re.IGNORECASE),
    re.compile(
        r"^(?:i hope (?:you|this)|let me know|would you like|feel free|shall i continue|do you want me)\b[^\n]{0,200}$",
        re.IGNORECASE,
    ),
    re.compile(r"^(?:the end|end of (?:the )?(?:section|continuation|chapter))\.?$", re.IGNORECASE),
    re.compile(r"^[-=*_]{3,}$"),
)

_SURROUNDING_QUOTES = ('"', "“", "”")


def _matches_any(line: str, patterns: tuple[re.Pattern[str], ...]) -> bool:
    return any(pattern.match(line) for pattern in patterns)


def strip_filler(
    text: str,
    prefix_patterns: tuple[re.Pattern[str], ...] | None = None,
    suffix_patterns: tuple[re.Pattern[str], ...] | None = None,
) -> str:
    """
    Remove filler lines from the head and the tail of generated text.

    Leading lines are dropped while they match a prefix pattern (blank lines in
    between are skipped as well); trailing lines are dropped while they match a
    suffix pattern. A response wrapped entirely in double quotes is unwrapped.

    Args:
        text: Raw generated text, as returned by the response normalizer.
        prefix_patterns: Optional custom prefix list. Defaults to FILLER_PREFIX_PATTERNS.
        suffix_patterns: Optional custom suffix list. Defaults to FILLER_SUFFIX_PATTERNS.

    Returns:
        The cleaned text without surrounding whitespace. May be empty when the
        whole response was filler.
    """
    if not text:
        return ""

    if prefix_patterns is None:
        prefix_patterns = FILLER_PREFIX_PATTERNS
    if suffix_patterns is None:
        suffix_patterns = FILLER_SUFFIX_PATTERNS

    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")

    while lines and (not lines[0].strip() or _matches_any(lines[0].strip(), prefix_patterns)):
        lines.pop(0)
    while lines and (not lines[-1].strip() or _matches_any(lines[-1].strip(), suffix_patterns)):
        lines.pop()

    cleaned = "\n".join(lines).strip()
    if (
        len(cleaned) > 1
        and cleaned[0] in _SURROUNDING_QUOTES
        and cleaned[-1] in _SURROUNDING_QUOTES
        and not any(q in cleaned[1:-1] for q in _SURROUNDING_QUOTES)
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned
