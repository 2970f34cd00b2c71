"""Chat orchestration for AI-enabled posts.

ChatOrchestrator is the public state machine of a post's chat capability:

    DISABLED --enable_chat(author)--> PENDING_EMBEDDING --worker success--> READY
    READY --disable_chat(author)--> DISABLED
    PENDING_EMBEDDING --worker retries exhausted--> DISABLED

Toggle operations report a bare boolean to callers. Internally every no-op
carries a ToggleOutcome so that the reason is logged and testable without
being revealed to an untrusted requester.
"""
import logging
import threading
from enum import Enum
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from postchat.entities import ChatExchange, PostRecord, User
from postchat.errors import (
    NotAvailableError,
    PartialFailureError,
    UnknownIntentError,
    ValidationError,
)
from postchat.generation import AnswerStream, GenerationClient
from postchat.intents import Intent, classify_intent
from postchat.jobs import EmbeddingJobQueue
from postchat.locks import PostLocks
from postchat.obs import span
from postchat.repositories import ChatRepository, PostRepository
from postchat.retrieval import RetrievalEngine
from postchat.schemas import AskRequest

logger = logging.getLogger(__name__)


class ToggleOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    ALREADY_IN_STATE = "already_in_state"


def parse_question(payload: Union[str, bytes]) -> str:
    """Extract the question from a raw JSON payload such as {"question": "..."}.

    Raises:
        ValidationError: If the payload is not valid JSON of that shape or the
            question is blank.
    """
    try:
        req = AskRequest.model_validate_json(payload)
    except PydanticValidationError as exc:
        raise ValidationError(f"malformed question payload: {exc.errors()[0]['msg']}", code="malformed_payload") from exc
    question = req.question.strip()
    if not question:
        raise ValidationError("question cannot be empty", code="empty_question")
    return question


class ChatOrchestrator:
    """Coordinates toggling, retrieval, generation and exchange persistence."""

    def __init__(
        self,
        posts: PostRepository,
        chats: ChatRepository,
        queue: EmbeddingJobQueue,
        retrieval: RetrievalEngine,
        generator: GenerationClient,
        locks: PostLocks,
    ):
        self.posts = posts
        self.chats = chats
        self.queue = queue
        self.retrieval = retrieval
        self.generator = generator
        self.locks = locks

    @staticmethod
    def _check_toggle(post: Optional[PostRecord], user: User, want_enabled: bool) -> ToggleOutcome:
        if post is None:
            return ToggleOutcome.NOT_FOUND
        if post.author_id != user.id:
            return ToggleOutcome.FORBIDDEN
        # a pending request counts as on when disabling, as off when enabling
        current = post.chat_enabled if want_enabled else (post.chat_enabled or post.chat_requested)
        if current == want_enabled:
            return ToggleOutcome.ALREADY_IN_STATE
        return ToggleOutcome.OK

    def request_enable(self, post_id: str, user: User) -> ToggleOutcome:
        """Record the author's request and enqueue an embedding job.

        chat_enabled / embeddings_ready are not touched here; the worker flips
        them once the chunk set is stored, and only while chat_requested is
        still set.

        Raises:
            UpstreamError: If the job cannot be enqueued.
            PostBusyError: The post's lock could not be acquired.
        """
        with self.locks.hold(post_id):
            post = self.posts.get_by_id(post_id)
            outcome = self._check_toggle(post, user, want_enabled=True)
            if outcome is not ToggleOutcome.OK:
                logger.info("Enable chat for post %s by %s: no-op (%s)", post_id, user.id, outcome.value)
                return outcome
            if not post.chat_requested:
                post.chat_requested = True
                self.posts.update(post)
        job_id = self.queue.enqueue(post_id, user.id)
        logger.info("Enable chat for post %s accepted as job %s", post_id, job_id)
        return outcome

    def enable_chat(self, post_id: str, user: User) -> bool:
        """Open AI chat for a post; False for any no-op, without saying why."""
        return self.request_enable(post_id, user) is ToggleOutcome.OK

    def request_disable(self, post_id: str, user: User) -> ToggleOutcome:
        """Close chat, withdraw any pending request and delete the post's chunks.

        The flag update commits first; a failing chunk deletion afterwards is
        reported as PartialFailureError and the flags stay cleared. Embedding
        jobs still queued for the post are discarded by the worker.

        Raises:
            PartialFailureError: Flags cleared but chunk deletion failed.
            PostBusyError: The post's lock could not be acquired.
        """
        with self.locks.hold(post_id):
            post = self.posts.get_by_id(post_id)
            outcome = self._check_toggle(post, user, want_enabled=False)
            if outcome is not ToggleOutcome.OK:
                logger.info("Disable chat for post %s by %s: no-op (%s)", post_id, user.id, outcome.value)
                return outcome

            post.chat_enabled = False
            post.embeddings_ready = False
            post.chat_requested = False
            self.posts.update(post)

            try:
                self.posts.delete_embeddings_by_post_id(post_id)
            except Exception as exc:
                logger.error("Chat disabled for post %s but chunk cleanup failed: %s", post_id, exc)
                raise PartialFailureError(
                    f"chat disabled for post {post_id} but chunk cleanup failed; retry cleanup",
                    post_id=post_id,
                ) from exc

        logger.info("Chat disabled for post %s", post_id)
        return outcome

    def disable_chat(self, post_id: str, user: User) -> bool:
        return self.request_disable(post_id, user) is ToggleOutcome.OK

    def retry_cleanup(self, post_id: str, user: User) -> bool:
        """Repeat chunk deletion after a PartialFailureError.

        Idempotent; only the author may run it and only while chat is disabled.
        """
        with self.locks.hold(post_id):
            post = self.posts.get_by_id(post_id)
            if post is None or post.author_id != user.id or post.chat_enabled or post.chat_requested:
                return False
            self.posts.delete_embeddings_by_post_id(post_id)
        return True

    def ask(
        self,
        post_id: str,
        user: Optional[User],
        payload: Union[str, bytes],
        cancel: Optional[threading.Event] = None,
    ) -> AnswerStream:
        """Answer a reader question about a post as a stream of fragments.

        Validation, retrieval and the generation connect happen before this
        returns, so their failures raise here and no fragment is produced.
        The caller iterates (or relay()s) the returned stream and persists the
        exchange once it completes.

        Args:
            post_id: The post being asked about.
            user: The asking user, if known.
            payload: Raw JSON payload, {"question": "..."}.
            cancel: Optional stop signal checked between stream reads.

        Raises:
            ValidationError: Malformed payload or blank question.
            NotAvailableError: Post missing, chat closed, or embeddings not ready.
            UpstreamError: Embedding or generation connect failed.
        """
        question = parse_question(payload)
        post = self.posts.get_by_id(post_id)
        if post is None or not post.chat_enabled or not post.embeddings_ready:
            raise NotAvailableError("post not found or AI chat not enabled")

        with span("retrieve", {"post_id": post_id}):
            context = self.retrieval.retrieve(post_id, question)
        with span("generate", {"post_id": post_id}):
            stream = self.generator.stream_answer(context, question, cancel=cancel)
        logger.info("Streaming answer for post %s to %s", post_id, user.id if user else "anonymous")
        return stream

    def record_exchange(self, exchange: Optional[ChatExchange]) -> ChatExchange:
        """Validate and persist a finished question/answer pair.

        Raises:
            ValidationError: code "missing_exchange", "missing_identity",
                "empty_prompt" or "empty_response".
        """
        if exchange is None:
            raise ValidationError("chat cannot be nil", code="missing_exchange")
        if not exchange.user_id or not exchange.post_id:
            raise ValidationError("chat must have user_id and post_id", code="missing_identity")
        if not exchange.prompt:
            raise ValidationError("chat must have a prompt", code="empty_prompt")
        if not exchange.response:
            raise ValidationError("chat must have a response", code="empty_response")
        return self.chats.create_chat(exchange)

    def list_exchanges(self, post_id: str, user: User, limit: int = 50) -> List[ChatExchange]:
        return self.chats.list_chats(post_id, user.id, limit=limit)

    def classify(self, message: str) -> str:
        """Return the intent label of a message.

        Raises:
            ValidationError: If the message is empty.
            UnknownIntentError: If no known intent matches.
        """
        if not message:
            raise ValidationError("message cannot be empty", code="empty_message")
        decision = classify_intent(message)
        if decision.intent is Intent.UNKNOWN:
            raise UnknownIntentError(f"unknown message type: {decision.intent.value}")
        return decision.intent.value
