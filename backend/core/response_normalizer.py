"""
Best-effort extraction of generated text from upstream chat replies.

The chat backend has returned several payload shapes over time, so the reply
is run through an ordered list of extractors and the first non-empty string
wins. The order is advisory plumbing, not a contract with the upstream
service.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger("novelwriter.normalizer")

Extractor = Callable[[Any], Optional[str]]


def _field(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return node.get(key)
    if node is None or isinstance(node, (str, bytes, int, float, bool, list, tuple)):
        return None
    # SDK response objects expose attributes rather than keys.
    try:
        return getattr(node, key, None)
    except Exception:
        return None


def _first_item(node: Any) -> Any:
    if isinstance(node, (list, tuple)) and node:
        return node[0]
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _top_level(key: str) -> Extractor:
    def extract(response: Any) -> Optional[str]:
        return _as_text(_field(response, key))

    extract.__name__ = f"extract_{key}"
    return extract


def extract_result_content(response: Any) -> Optional[str]:
    return _as_text(_field(_field(response, "result"), "content"))


def extract_choice_message_content(response: Any) -> Optional[str]:
    choice = _first_item(_field(response, "choices"))
    return _as_text(_field(_field(choice, "message"), "content"))


def extract_choice_text(response: Any) -> Optional[str]:
    choice = _first_item(_field(response, "choices"))
    return _as_text(_field(choice, "text"))


# (label, extractor) pairs tried in order; the label is only used for logging.
EXTRACTORS: List[Tuple[str, Extractor]] = [
    ("response", _top_level("response")),
    ("message", _top_level("message")),
    ("content", _top_level("content")),
    ("data", _top_level("data")),
    ("result.content", extract_result_content),
    ("choices[0].message.content", extract_choice_message_content),
    ("choices[0].text", extract_choice_text),
]


def describe_shape(response: Any) -> str:
    if isinstance(response, dict):
        return "keys=" + ",".join(sorted(str(key) for key in response.keys()))
    return f"type={type(response).__name__}"


def normalize_response(response: Any) -> str:
    """Return the generated text carried by ``response``, or ``""``.

    Never raises: an unrecognized shape is logged and mapped to an empty
    string, which callers treat as "no extractable content".
    """
    if response is None:
        return ""
    if isinstance(response, str):
        logger.debug("normalizer matched extractor=string chars=%d", len(response))
        return response

    for label, extractor in EXTRACTORS:
        try:
            text = extractor(response)
        except Exception as exc:
            logger.debug("normalizer extractor failed extractor=%s error=%s", label, exc)
            continue
        if text:
            logger.debug("normalizer matched extractor=%s chars=%d", label, len(text))
            return text

    logger.warning("normalizer found no text %s", describe_shape(response))
    return ""
