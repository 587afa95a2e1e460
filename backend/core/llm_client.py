import os
import time
import logging
from typing import Any, Dict, Optional

import requests

from models import GenerationRequest

DEFAULT_BASE_URL = "https://maplemoes-openhands-backend.hf.space"
DEFAULT_ENDPOINT = "/chat/message"


class ChatRequestError(RuntimeError):
    """The upstream chat call could not complete (transport, status or body)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChatEndpointConfig:
    def __init__(
        self,
        base_url: Optional[str] = None,
        endpoint: str = DEFAULT_ENDPOINT,
        api_key: Optional[str] = None,
        model: str = "gpt-3.5-turbo",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.base_url = (base_url or os.getenv("CHAT_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.endpoint = "/" + (endpoint or DEFAULT_ENDPOINT).lstrip("/")
        self.api_key = os.getenv("CHAT_API_KEY") if api_key is None else api_key
        self.model = model
        self.max_tokens = _safe_positive_int(max_tokens, 1500)
        self.temperature = _safe_temperature(temperature, 0.7)
        self.timeout_seconds = _safe_positive_float(timeout_seconds, 30.0)

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.endpoint}"


def _safe_positive_int(value: Any, fallback: int) -> int:
    try:
        parsed = int(value)
        if parsed > 0:
            return parsed
    except Exception:
        pass
    return fallback


def _safe_positive_float(value: Any, fallback: float) -> float:
    try:
        parsed = float(value)
        if parsed > 0:
            return parsed
    except Exception:
        pass
    return fallback


def _safe_temperature(value: Any, fallback: float) -> float:
    try:
        parsed = float(value)
        if parsed < 0:
            return 0.0
        if parsed > 1:
            return 1.0
        return parsed
    except Exception:
        return fallback


class ChatClient:
    def __init__(self, config: ChatEndpointConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session
        self._logger = logging.getLogger("novelwriter.chat")

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def build_request(
        self,
        prompt: str,
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        conversation_id: Optional[str] = None,
    ) -> GenerationRequest:
        return GenerationRequest(
            message=prompt,
            model=self.config.model,
            max_tokens=_safe_positive_int(max_tokens, self.config.max_tokens),
            temperature=_safe_temperature(temperature, self.config.temperature),
            conversation_id=conversation_id,
        )

    def send(self, request: GenerationRequest) -> Any:
        """POST the request and return the decoded reply payload.

        Raises ChatRequestError on transport errors, timeouts and non-2xx
        responses. A 2xx body that is not JSON is returned as plain text.
        """
        if not request.message or not request.message.strip():
            raise ValueError("message must be a non-empty string")

        payload: Dict[str, Any] = request.model_dump(exclude_none=True)
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        started = time.perf_counter()
        try:
            response = self._get_session().post(
                self.config.url,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            self._logger.warning(
                "chat request failed url=%s model=%s latency_ms=%.2f error=%s",
                self.config.url,
                request.model,
                (time.perf_counter() - started) * 1000,
                exc,
            )
            raise ChatRequestError(f"chat request failed: {exc}") from exc

        latency_ms = (time.perf_counter() - started) * 1000
        if not 200 <= response.status_code < 300:
            self._logger.warning(
                "chat request rejected url=%s model=%s status=%s latency_ms=%.2f body=%s",
                self.config.url,
                request.model,
                response.status_code,
                latency_ms,
                (response.text or "")[:200],
            )
            raise ChatRequestError(
                f"chat endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        self._logger.info(
            "chat request success url=%s model=%s status=%s latency_ms=%.2f prompt_chars=%d",
            self.config.url,
            request.model,
            response.status_code,
            latency_ms,
            len(request.message),
        )
        return body

    def complete(self, prompt: str, **kwargs: Any) -> Any:
        return self.send(self.build_request(prompt, **kwargs))

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None


def create_chat_client(**kwargs) -> ChatClient:
    return ChatClient(ChatEndpointConfig(**kwargs))
