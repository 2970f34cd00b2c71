"""Streaming answer generation against the configured chat model host.

Provides:
- build_payload: request body carrying the retrieved context as the system
  message and the question as the user message.
- parse_event_line: extracts the text of one `data: {...}` event line.
- Fragment: one piece of answer text; serializes to the minimal {"text": ...} form.
- AnswerStream: lazy, single-pass iterator over fragments with cancellation.
- GenerationClient.stream_answer: connects and returns an AnswerStream.

Wire format: newline-delimited event lines. Lines without the `data: ` marker
are ignored, the `[DONE]` sentinel yields nothing, malformed JSON is skipped,
and only a non-empty string at message.content produces a fragment.
"""
import json
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests
from pydantic import BaseModel

from postchat.config import Settings
from postchat.errors import UpstreamError

logger = logging.getLogger(__name__)

DATA_PREFIX = b"data: "
DONE_SENTINEL = b"[DONE]"


class Fragment(BaseModel):
    """A piece of generated answer text, in arrival order."""
    text: str


def build_payload(model: str, context: str, question: str) -> Dict[str, Any]:
    """Build the streaming chat request body."""
    return {
        "model": model,
        "stream": True,
        "messages": [
            {"role": "system", "content": context},
            {"role": "user", "content": question},
        ],
    }


def parse_event_line(line: bytes) -> Optional[str]:
    """Return the fragment text carried by one event line, if any.

    Args:
        line: One raw line from the stream, with or without its trailing newline.

    Returns:
        Optional[str]: The non-empty message content, or None for blank lines,
            unmarked lines, the end-of-stream sentinel and malformed payloads.
    """
    if isinstance(line, str):
        line = line.encode("utf-8")
    if not line.startswith(DATA_PREFIX):
        return None
    raw = line[len(DATA_PREFIX):].strip()
    if not raw or raw == DONE_SENTINEL:
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    message = payload.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, str) or not content:
        return None
    return content


class AnswerStream:
    """Finite, non-restartable sequence of answer fragments.

    Iterating reads the underlying response line by line. The optional cancel
    event is checked between reads; once set, the connection is closed and
    iteration stops. A read error before the first fragment raises
    UpstreamError; after it, the partial answer stands and iteration ends.
    """

    def __init__(self, response: requests.Response, question: str = "", cancel: Optional[threading.Event] = None):
        self._response = response
        self._cancel = cancel
        self._started = False
        self._closed = False
        self._parts: List[str] = []
        self.question = question
        self.cancelled = False

    @property
    def delivered(self) -> int:
        """Number of fragments handed to the consumer so far."""
        return len(self._parts)

    @property
    def answer(self) -> str:
        """Concatenated text of every fragment delivered so far."""
        return "".join(self._parts)

    def __iter__(self) -> Iterator[Fragment]:
        if self._started:
            raise RuntimeError("answer stream can only be consumed once")
        self._started = True
        return self._read()

    def _read(self) -> Iterator[Fragment]:
        try:
            for line in self._response.iter_lines(chunk_size=None):
                if self._cancel is not None and self._cancel.is_set():
                    self.cancelled = True
                    logger.info("Generation stream cancelled after %d fragments", self.delivered)
                    break
                text = parse_event_line(line)
                if text is None:
                    continue
                self._parts.append(text)
                yield Fragment(text=text)
        except (requests.RequestException, AttributeError, ValueError) as exc:
            # closing the response from another thread surfaces as one of these
            if self._closed or (self._cancel is not None and self._cancel.is_set()):
                self.cancelled = True
                logger.info("Generation stream aborted after %d fragments", self.delivered)
            elif not self._parts:
                raise UpstreamError(f"generation stream failed before any output: {exc}") from exc
            else:
                logger.warning("Generation stream interrupted after %d fragments: %s", self.delivered, exc)
        finally:
            self.close()

    def relay(self, on_fragment: Callable[[str], None]) -> int:
        """Invoke on_fragment with each encoded {"text": ...} fragment, in order.

        Returns:
            int: Number of fragments delivered.
        """
        for fragment in self:
            on_fragment(fragment.model_dump_json())
        return self.delivered

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.close()

    def __enter__(self) -> "AnswerStream":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class GenerationClient:
    """Client for the external streaming generation endpoint."""

    def __init__(
        self,
        url: str,
        model: str,
        session: Optional[requests.Session] = None,
        connect_timeout: float = 10.0,
        read_timeout: float = 120.0,
    ):
        self.url = url
        self.model = model
        self._session = session or requests.Session()
        self._timeout = (connect_timeout, read_timeout)

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[requests.Session] = None) -> "GenerationClient":
        return cls(
            url=settings.generation_url,
            model=settings.AI_MODEL,
            session=session,
            connect_timeout=settings.GENERATION_CONNECT_TIMEOUT_SECONDS,
            read_timeout=settings.GENERATION_READ_TIMEOUT_SECONDS,
        )

    def stream_answer(self, context: str, question: str, cancel: Optional[threading.Event] = None) -> AnswerStream:
        """Submit the question with its grounding context and open the stream.

        Args:
            context: Retrieved context used as the system instruction.
            question: The reader's question.
            cancel: Optional stop signal shared with the consumer.

        Returns:
            AnswerStream: Lazy fragment iterator bound to the open response.

        Raises:
            UpstreamError: If the connection fails or the endpoint answers non-2xx.
        """
        payload = build_payload(self.model, context, question)
        try:
            resp = self._session.post(self.url, json=payload, stream=True, timeout=self._timeout)
        except requests.RequestException as exc:
            raise UpstreamError(f"generation request failed: {exc}") from exc

        logger.debug("Generation endpoint responded %s", resp.status_code)
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            resp.close()
            raise UpstreamError(f"generation endpoint returned HTTP {resp.status_code}") from exc
        return AnswerStream(resp, question=question, cancel=cancel)
