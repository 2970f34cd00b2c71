"""HTTP and WebSocket routes for AI chat on posts.

Routes:
- GET  /health
- POST /posts/{post_id}/ai/enable      author opts the post into AI chat
- POST /posts/{post_id}/ai/disable     author closes AI chat and drops chunks
- POST /posts/{post_id}/ai/cleanup     retry chunk deletion after a partial failure
- POST /posts/{post_id}/ai/ask         stream an answer as text/event-stream
- GET  /posts/{post_id}/ai/chats       the caller's recorded exchanges
- POST /posts/{post_id}/ai/chats       record a finished exchange
- POST /ai/classify                    intent label of a message
- WS   /ws/posts/{post_id}/ai/chat     streamed answers over a WebSocket

The requesting user comes from the X-User-ID header set by the auth layer in
front of this service. Services are read from app.state (see postchat.main).
"""
import asyncio
import json
import logging
import threading
from collections import deque
from typing import AsyncIterator, Deque, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from postchat.entities import ChatExchange, User
from postchat.errors import (
    ChatServiceError,
    NotAvailableError,
    PartialFailureError,
    PostBusyError,
    UnknownIntentError,
    UpstreamError,
    ValidationError,
)
from postchat.generation import AnswerStream
from postchat.obs import Trace, Tracer
from postchat.schemas import (
    ChatExchangeIn,
    ChatExchangeOut,
    ClassifyRequest,
    ClassifyResponse,
    DisableResponse,
    EnableResponse,
    StreamEventType,
)
from postchat.service import ChatOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.25


def get_service(request: Request) -> ChatOrchestrator:
    return request.app.state.service


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> User:
    """Identity of the caller, as asserted by the upstream auth layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="missing X-User-ID header")
    return User(id=x_user_id)


def _start_trace(tracer: Optional[Tracer], name: str, input: dict) -> Trace:
    if tracer is None:
        return Trace(None, name)
    return tracer.trace(name, input=input)


def error_code(exc: ChatServiceError) -> str:
    if isinstance(exc, ValidationError):
        return exc.code
    if isinstance(exc, UnknownIntentError):
        return "unknown_intent"
    if isinstance(exc, NotAvailableError):
        return "not_available"
    if isinstance(exc, UpstreamError):
        return "upstream_error"
    if isinstance(exc, PartialFailureError):
        return "cleanup_pending"
    if isinstance(exc, PostBusyError):
        return "post_busy"
    return "internal_error"


def to_http_exception(exc: ChatServiceError) -> HTTPException:
    """Map a service error to its HTTP status."""
    if isinstance(exc, ValidationError):
        status = 400
    elif isinstance(exc, UnknownIntentError):
        status = 422
    elif isinstance(exc, NotAvailableError):
        status = 404
    elif isinstance(exc, UpstreamError):
        status = 502
    elif isinstance(exc, PostBusyError):
        status = 409
    else:
        status = 500
    return HTTPException(status_code=status, detail={"code": error_code(exc), "message": str(exc)})


def _finish_exchange(service: ChatOrchestrator, stream: AnswerStream, post_id: str, user: User, trace: Trace) -> None:
    """Persist a completed answer; cancelled or empty answers are not recorded."""
    trace.generation(
        "answer",
        prompt=stream.question,
        output=stream.answer,
        metadata={"post_id": post_id, "fragments": stream.delivered, "cancelled": stream.cancelled},
    )
    trace.end(output={"fragments": stream.delivered})
    if stream.cancelled or not stream.answer:
        return
    try:
        service.record_exchange(
            ChatExchange(post_id=post_id, user_id=user.id, prompt=stream.question, response=stream.answer)
        )
    except Exception:
        # The reader already has the answer; only the transcript is lost.
        logger.exception("Failed to record exchange for post %s", post_id)


async def _close_on_disconnect(request: Request, stream: AnswerStream, cancel: threading.Event) -> None:
    """Abort the model read as soon as the HTTP client goes away."""
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)
    cancel.set()
    stream.close()


async def _sse_events(
    request: Request,
    service: ChatOrchestrator,
    stream: AnswerStream,
    cancel: threading.Event,
    post_id: str,
    user: User,
    trace: Trace,
) -> AsyncIterator[str]:
    watcher = asyncio.ensure_future(_close_on_disconnect(request, stream, cancel))
    fragments = iter(stream)
    try:
        while True:
            fragment = await run_in_threadpool(next, fragments, None)
            if fragment is None:
                break
            yield f"data: {fragment.model_dump_json()}\n\n"
    except UpstreamError as exc:
        logger.warning("Answer stream for post %s failed: %s", post_id, exc)
        trace.end(output={"error": str(exc)})
        yield "event: error\ndata: " + json.dumps({"code": error_code(exc), "message": str(exc)}) + "\n\n"
        return
    finally:
        stream.close()
        watcher.cancel()
    if stream.cancelled:
        logger.info("Reader left post %s mid-answer; nothing recorded", post_id)
        trace.end(output={"cancelled": True, "fragments": stream.delivered})
        return
    await run_in_threadpool(_finish_exchange, service, stream, post_id, user, trace)
    yield "data: [DONE]\n\n"


@router.get("/health")
def health():
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


@router.post("/posts/{post_id}/ai/enable", response_model=EnableResponse)
def enable_ai(
    post_id: str,
    user: User = Depends(get_current_user),
    service: ChatOrchestrator = Depends(get_service),
) -> EnableResponse:
    """Accept a request to open AI chat; embedding runs in the background.

    Returns enabled=false, without a reason, when the post is missing, the
    caller is not its author, or chat is already open.
    """
    try:
        return EnableResponse(enabled=service.enable_chat(post_id, user))
    except ChatServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/posts/{post_id}/ai/disable", response_model=DisableResponse)
def disable_ai(
    post_id: str,
    user: User = Depends(get_current_user),
    service: ChatOrchestrator = Depends(get_service),
) -> DisableResponse:
    try:
        return DisableResponse(disabled=service.disable_chat(post_id, user))
    except ChatServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/posts/{post_id}/ai/cleanup")
def cleanup_ai(
    post_id: str,
    user: User = Depends(get_current_user),
    service: ChatOrchestrator = Depends(get_service),
):
    try:
        return {"cleaned": service.retry_cleanup(post_id, user)}
    except ChatServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/posts/{post_id}/ai/ask")
async def ask_ai(
    post_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    service: ChatOrchestrator = Depends(get_service),
):
    """Answer a question about a post using retrieval-augmented generation.

    Workflow:
    - Parse the raw {"question": ...} body
    - Check the post is open for chat and its embeddings are ready
    - Retrieve the most similar chunks and open the generation stream
    - Relay each fragment as `data: {"text": ...}`; a failure after streaming
      started becomes a single `event: error`; `data: [DONE]` ends the stream
    - Record the finished exchange; a reader who disconnects mid-answer aborts
      the model read and nothing is recorded
    """
    payload = await request.body()
    trace = _start_trace(getattr(request.app.state, "tracer", None), "ask", {"post_id": post_id})
    cancel = threading.Event()
    try:
        stream = await run_in_threadpool(service.ask, post_id, user, payload, cancel)
    except ChatServiceError as exc:
        trace.end(output={"error": str(exc)})
        raise to_http_exception(exc) from exc
    return StreamingResponse(
        _sse_events(request, service, stream, cancel, post_id, user, trace),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/posts/{post_id}/ai/chats", response_model=List[ChatExchangeOut])
def list_chats(
    post_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    service: ChatOrchestrator = Depends(get_service),
) -> List[ChatExchangeOut]:
    return [ChatExchangeOut(**vars(e)) for e in service.list_exchanges(post_id, user, limit=limit)]


@router.post("/posts/{post_id}/ai/chats", response_model=ChatExchangeOut, status_code=201)
def create_chat(
    post_id: str,
    body: ChatExchangeIn,
    user: User = Depends(get_current_user),
    service: ChatOrchestrator = Depends(get_service),
) -> ChatExchangeOut:
    try:
        saved = service.record_exchange(
            ChatExchange(post_id=post_id, user_id=user.id, prompt=body.prompt, response=body.response)
        )
    except ChatServiceError as exc:
        raise to_http_exception(exc) from exc
    return ChatExchangeOut(**vars(saved))


@router.post("/ai/classify", response_model=ClassifyResponse)
def classify(body: ClassifyRequest, service: ChatOrchestrator = Depends(get_service)) -> ClassifyResponse:
    try:
        return ClassifyResponse(intent=service.classify(body.message))
    except ChatServiceError as exc:
        raise to_http_exception(exc) from exc


def _event(kind: StreamEventType, data: dict) -> dict:
    return {"event": kind.value, "data": data}


async def _watch_socket(websocket: WebSocket, stream: AnswerStream, cancel: threading.Event, inbox: Deque[str]) -> None:
    """Receive while an answer streams; a disconnect aborts the model read.

    Payloads that arrive meanwhile are queued for the next turn.
    """
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            cancel.set()
            stream.close()
            raise WebSocketDisconnect(message.get("code", 1000))
        text = message.get("text")
        if text is None and message.get("bytes") is not None:
            text = message["bytes"].decode("utf-8", errors="replace")
        if text is not None:
            inbox.append(text)


async def _answer_over_socket(
    websocket: WebSocket,
    service: ChatOrchestrator,
    post_id: str,
    user: User,
    raw: str,
    tracer: Optional[Tracer],
    inbox: Deque[str],
) -> None:
    cancel = threading.Event()
    trace = _start_trace(tracer, "ask_ws", {"post_id": post_id})
    try:
        stream = await run_in_threadpool(service.ask, post_id, user, raw, cancel)
    except ChatServiceError as exc:
        trace.end(output={"error": str(exc)})
        await websocket.send_json(_event(StreamEventType.ERROR, {"code": error_code(exc), "message": str(exc)}))
        return

    watcher = asyncio.ensure_future(_watch_socket(websocket, stream, cancel, inbox))
    fragments = iter(stream)
    failure: Optional[UpstreamError] = None
    disconnect: Optional[BaseException] = None
    try:
        while True:
            fragment = await run_in_threadpool(next, fragments, None)
            if fragment is None:
                break
            await websocket.send_json(_event(StreamEventType.FRAGMENT, fragment.model_dump()))
    except UpstreamError as exc:
        failure = exc
    finally:
        stream.close()
        if watcher.done():
            disconnect = watcher.exception()
        else:
            watcher.cancel()

    if disconnect is not None:
        trace.end(output={"cancelled": True, "fragments": stream.delivered})
        raise disconnect
    if failure is not None:
        trace.end(output={"error": str(failure)})
        await websocket.send_json(_event(StreamEventType.ERROR, {"code": error_code(failure), "message": str(failure)}))
        return

    await run_in_threadpool(_finish_exchange, service, stream, post_id, user, trace)
    await websocket.send_json(_event(StreamEventType.DONE, {"answer": stream.answer}))


@router.websocket("/ws/posts/{post_id}/ai/chat")
async def chat_socket(websocket: WebSocket, post_id: str) -> None:
    """Streamed chat over a WebSocket.

    Client sends raw question payloads: {"question": "..."}.

    Server sends:
        {"event": "fragment", "data": {"text": "..."}}   once per fragment, in order
        {"event": "done", "data": {"answer": "..."}}     after the last fragment
        {"event": "error", "data": {"code": "...", "message": "..."}}

    A disconnect mid-answer cancels the generation stream.
    """
    user_id = websocket.headers.get("x-user-id") or websocket.query_params.get("user_id")
    await websocket.accept()
    if not user_id:
        await websocket.send_json(_event(StreamEventType.ERROR, {"code": "unauthenticated", "message": "missing user id"}))
        await websocket.close(code=1008)
        return

    user = User(id=user_id)
    service: ChatOrchestrator = websocket.app.state.service
    tracer: Optional[Tracer] = getattr(websocket.app.state, "tracer", None)
    inbox: Deque[str] = deque()
    try:
        while True:
            raw = inbox.popleft() if inbox else await websocket.receive_text()
            await _answer_over_socket(websocket, service, post_id, user, raw, tracer, inbox)
    except WebSocketDisconnect:
        logger.info("Chat socket for post %s closed by %s", post_id, user.id)
