"""
Generation orchestrator: the core of relaychat.

Runs one generation end to end and reconciles conversation state:

    Idle → ContextBuilt → Dispatched → (Streaming → Updating)* → Settled

  - builds the context window (relaychat.context)
  - detours through a web search first when the message asks for one
  - dispatches to a backend, single-shot or streamed
  - throttles partial writes into the in-flight message while streaming
  - honours cooperative cancellation at every chunk boundary
  - persists the settled state with bounded retry

Every mutation is followed by conversation.notify_changed() so a rendering
layer can redraw. The waiting flag is cleared on every settlement path.

Usage:

    orchestrator = GenerationOrchestrator(registry, store, settings)
    conversation.add_user_message(text)
    result = await orchestrator.generate_stream(text, conversation, context_size=10)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from relaychat.backends.base import map_transport_error
from relaychat.backends.registry import BackendRegistry
from relaychat.context import build_request_messages
from relaychat.errors import (
    BackendError,
    ErrorKind,
    GenerationInProgress,
    PersistenceError,
    RelayChatError,
)
from relaychat.naming import sanitize_chat_name
from relaychat.pricing import PricingTable, estimate_tokens
from relaychat.search import (
    PROCESSING_PLACEHOLDER,
    SEARCH_FAILED_PLACEHOLDER,
    SEARCHING_PLACEHOLDER,
    SearchAugmenter,
    build_search_prompt,
)
from relaychat.settings import CHAT_NAME_INSTRUCTION, GenerationSettings
from relaychat.storage.models import Conversation, Message, _now
from relaychat.storage.persistence import ConversationStore, save_with_retry

logger = logging.getLogger(__name__)

ASSISTANT_ROLE = "assistant"


class GenerationState(str, Enum):
    IDLE = "idle"
    CONTEXT_BUILT = "context_built"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    UPDATING = "updating"
    SETTLED = "settled"


class GenerationStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass
class GenerationResult:
    """How a generation settled. Cancellation is not a failure."""
    status: GenerationStatus
    content: str = ""
    error: RelayChatError | None = None

    @property
    def ok(self) -> bool:
        return self.status != GenerationStatus.FAILURE


@dataclass
class GenerationRequest:
    user_message: str
    conversation: Conversation
    context_size: int
    augment: bool = False


class CancellationToken:
    """Checked by the streaming loop at each chunk boundary."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class GenerationOrchestrator:
    """Owns the lifecycle of generation requests across conversations."""

    def __init__(
        self,
        registry: BackendRegistry,
        store: ConversationStore,
        settings: GenerationSettings | None = None,
        pricing: PricingTable | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.store = store
        self.settings = settings or GenerationSettings()
        self.pricing = pricing
        self.clock = clock
        self.search = SearchAugmenter(registry, self.settings.search_triggers)
        self._active: dict[str, CancellationToken] = {}
        self._pending_saves: dict[str, set[asyncio.Task]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_generating(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    def cancel(self, conversation_id: str) -> bool:
        """Request cancellation of the in-flight generation. False if none."""
        token = self._active.get(conversation_id)
        if token is None:
            return False
        logger.info("Cancellation requested for conversation %s", conversation_id)
        token.cancel()
        return True

    async def generate(
        self, user_message: str, conversation: Conversation, context_size: int | None = None
    ) -> GenerationResult:
        """Single-shot generation."""
        return await self._run(user_message, conversation, context_size, stream=False)

    async def generate_stream(
        self, user_message: str, conversation: Conversation, context_size: int | None = None
    ) -> GenerationResult:
        """Streamed generation; the in-flight message grows as chunks arrive."""
        return await self._run(user_message, conversation, context_size, stream=True)

    async def generate_chat_name(self, conversation: Conversation, force: bool = False) -> str | None:
        """
        Ask the conversation's model for a short title and store it.
        Never touches the visible history. Failures are logged, never raised.
        """
        if (conversation.name and not force) or not conversation.messages:
            logger.debug("Chat name not needed for %s, skipping", conversation.id)
            return None

        try:
            backend, model = self._llm_backend(conversation)
        except BackendError as e:
            logger.warning("Cannot generate chat name for %s: %s", conversation.id, e)
            return None

        messages = build_request_messages(
            conversation,
            CHAT_NAME_INSTRUCTION,
            self.settings.name_context_size,
            self.settings.reasoning_models,
        )
        temperature = self.settings.effective_temperature(model, self.settings.name_temperature)
        response = await backend.send(messages, temperature)
        if not response.ok:
            logger.warning("Error generating chat name for %s: %s", conversation.id, response.error)
            return None

        name = sanitize_chat_name(response.content)
        if not name:
            return None

        conversation.name = name
        conversation.notify_changed()
        try:
            await save_with_retry(
                self.store, conversation,
                self.settings.name_persist_attempts, self.settings.persist_backoff,
            )
        except PersistenceError as e:
            logger.warning("Chat name for %s not persisted: %s", conversation.id, e)
        logger.info("Conversation %s named %r", conversation.id, name)
        return name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(self, conversation: Conversation, state: GenerationState) -> None:
        logger.debug("conversation=%s state=%s", conversation.id, state.value)

    async def _run(
        self,
        user_message: str,
        conversation: Conversation,
        context_size: int | None,
        stream: bool,
    ) -> GenerationResult:
        if context_size is None:
            context_size = self.settings.default_context_size
        if context_size < 1:
            raise ValueError(f"context_size must be >= 1, got {context_size}")
        if conversation.id in self._active:
            raise GenerationInProgress(
                f"Conversation {conversation.id} already has a generation in flight"
            )

        token = CancellationToken()
        self._active[conversation.id] = token
        request = GenerationRequest(
            user_message=user_message,
            conversation=conversation,
            context_size=context_size,
            augment=self.search.applies(user_message),
        )
        self._transition(conversation, GenerationState.IDLE)

        try:
            if request.augment:
                result = await self._run_augmented(request, stream, token)
            else:
                result = await self._run_plain(request, stream, token)
        finally:
            self._active.pop(conversation.id, None)
            self._clear_waiting(conversation)

        self._transition(conversation, GenerationState.SETTLED)
        logger.info(
            "Generation for %s settled: %s%s",
            conversation.id, result.status.value,
            f" ({result.error})" if result.error else "",
        )
        return result

    async def _run_plain(
        self, request: GenerationRequest, stream: bool, token: CancellationToken
    ) -> GenerationResult:
        conversation = request.conversation
        try:
            backend, model = self._llm_backend(conversation)
        except BackendError as e:
            return await self._settle_failure(conversation, e)

        messages = build_request_messages(
            conversation,
            request.user_message,
            request.context_size,
            self.settings.reasoning_models,
        )
        self._transition(conversation, GenerationState.CONTEXT_BUILT)
        temperature = self.settings.effective_temperature(model, conversation.temperature)
        return await self._dispatch(
            conversation, backend, model, messages, temperature, stream, token
        )

    async def _run_augmented(
        self, request: GenerationRequest, stream: bool, token: CancellationToken
    ) -> GenerationResult:
        """Search first, then let an LLM answer from the results."""
        conversation = request.conversation

        # Built before the placeholder exists so it never leaks into history
        plain_messages = build_request_messages(
            conversation,
            request.user_message,
            request.context_size,
            self.settings.reasoning_models,
        )

        placeholder = conversation.add_message(SEARCHING_PLACEHOLDER, own=False)
        placeholder.waiting_for_response = True
        conversation.waiting_for_response = True
        conversation.notify_changed()
        self._schedule_save(conversation)

        query = self.search.extract_query(request.user_message)
        search_error: BackendError | None = None
        try:
            results = await self.search.search(query, self.settings.default_temperature)
        except BackendError as e:
            search_error = e

        if token.cancelled:
            logger.info("Generation for %s cancelled during search", conversation.id)
            return await self._abandon_placeholder(conversation, placeholder)

        if search_error is not None:
            logger.warning("Search for '%s' failed, answering without results: %s", query, search_error)
            self._set_body(
                conversation, placeholder,
                SEARCH_FAILED_PLACEHOLDER.format(detail=search_error.detail or search_error.kind.value),
            )
            try:
                backend, model = self._llm_backend(conversation)
            except BackendError as e:
                return await self._settle_failure(conversation, e)
            self._transition(conversation, GenerationState.CONTEXT_BUILT)
            temperature = self.settings.effective_temperature(model, conversation.temperature)
            return await self._dispatch(
                conversation, backend, model, plain_messages, temperature, stream, token,
                target=placeholder,
            )

        cfg = self.search.processor_config(conversation)
        if cfg is None:
            logger.info("No LLM backend to process search results, returning them as-is")
            return await self._complete(
                conversation, placeholder, results, "", [{"role": "user", "content": query}]
            )

        self._set_body(conversation, placeholder, PROCESSING_PLACEHOLDER)
        processing = self.search.processing_conversation(cfg, conversation)
        messages = build_request_messages(
            processing,
            build_search_prompt(request.user_message, results),
            request.context_size,
            self.settings.reasoning_models,
        )
        self._transition(conversation, GenerationState.CONTEXT_BUILT)
        backend = self.registry.create(cfg, processing.model)
        temperature = self.settings.effective_temperature(processing.model, conversation.temperature)
        return await self._dispatch(
            conversation, backend, processing.model, messages, temperature, stream, token,
            target=placeholder, fallback_content=results,
        )

    async def _dispatch(
        self,
        conversation: Conversation,
        backend,
        model: str,
        messages: list[dict],
        temperature: float,
        stream: bool,
        token: CancellationToken,
        target: Message | None = None,
        fallback_content: str | None = None,
    ) -> GenerationResult:
        """
        Send the request. `target` is an existing message to write the answer
        into; `fallback_content` replaces the answer if the backend fails
        before producing anything.
        """
        conversation.waiting_for_response = True
        conversation.notify_changed()
        self._transition(conversation, GenerationState.DISPATCHED)

        if stream:
            return await self._consume_stream(
                conversation, backend, model, messages, temperature, token, target, fallback_content
            )

        response = await backend.send(messages, temperature)
        if not response.ok:
            error = response.error or BackendError(ErrorKind.UNKNOWN, "backend failed")
            if fallback_content is not None and target is not None:
                logger.warning("LLM failed to process search results, keeping raw results: %s", error)
                return await self._complete(conversation, target, fallback_content, model, messages)
            return await self._settle_failure(conversation, error)

        return await self._complete(conversation, target, response.content, model, messages)

    async def _consume_stream(
        self,
        conversation: Conversation,
        backend,
        model: str,
        messages: list[dict],
        temperature: float,
        token: CancellationToken,
        target: Message | None,
        fallback_content: str | None,
    ) -> GenerationResult:
        accumulated: list[str] = []
        message = target
        last_flush: float | None = None
        error: BackendError | None = None
        interval = self.settings.stream_update_interval

        chunks = backend.send_stream(messages, temperature)
        try:
            async for chunk in chunks:
                if token.cancelled:
                    break
                accumulated.append(chunk)
                if message is None:
                    message = conversation.add_message("", own=False)
                    self._transition(conversation, GenerationState.STREAMING)

                now = self.clock()
                if last_flush is None or now - last_flush >= interval:
                    self._transition(conversation, GenerationState.UPDATING)
                    self._flush(conversation, message, "".join(accumulated))
                    last_flush = now
        except Exception as e:
            error = map_transport_error(e, getattr(backend, "name", "?"))
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        cancelled = token.cancelled
        if not accumulated:
            if error is not None:
                if fallback_content is not None and target is not None:
                    logger.warning("LLM failed to process search results, keeping raw results: %s", error)
                    return await self._complete(conversation, target, fallback_content, model, messages)
                return await self._settle_failure(conversation, error)
            if cancelled and target is not None:
                return await self._abandon_placeholder(conversation, target)
            if cancelled or message is None:
                # Nothing streamed: history and context stay as they were
                await self._drain_saves(conversation.id)
                status = GenerationStatus.CANCELLED if cancelled else GenerationStatus.SUCCESS
                return GenerationResult(status=status)
            if fallback_content is not None:
                return await self._complete(conversation, message, fallback_content, model, messages)

        text = "".join(accumulated)
        result = await self._complete(conversation, message, text, model, messages)
        if error is not None:
            # Partial output is kept and persisted, the failure still reported
            return GenerationResult(GenerationStatus.FAILURE, content=text, error=error)
        if cancelled and result.ok:
            return GenerationResult(GenerationStatus.CANCELLED, content=text)
        return result

    # ------------------------------------------------------------------
    # State mutation
    # ------------------------------------------------------------------

    def _llm_backend(self, conversation: Conversation):
        """Adapter + model for the conversation's LLM. Raises BackendError."""
        cfg = self.registry.get_config(conversation.backend_id)
        if cfg is None or not self.registry.is_llm(cfg):
            cfg = self.registry.default_llm_config()
            if cfg is None:
                raise BackendError(
                    ErrorKind.NO_BACKEND_CONFIGURED,
                    f"No LLM backend for conversation {conversation.id}",
                )
            model = cfg.model
        else:
            model = conversation.model or cfg.model
        return self.registry.create(cfg, model), model

    def _set_body(self, conversation: Conversation, message: Message, body: str) -> None:
        """Overwrite a progress placeholder."""
        message.body = body
        conversation.touch()
        conversation.notify_changed()
        self._schedule_save(conversation)

    def _flush(self, conversation: Conversation, message: Message, body: str, final: bool = False) -> None:
        message.body = body
        message.timestamp = _now()
        message.waiting_for_response = False
        conversation.waiting_for_response = False
        conversation.touch()
        conversation.notify_changed()
        if not final:
            self._schedule_save(conversation)

    async def _complete(
        self,
        conversation: Conversation,
        message: Message | None,
        content: str,
        model: str,
        messages: list[dict],
    ) -> GenerationResult:
        """Final unconditional flush, context-buffer update, durable save."""
        if message is None:
            message = conversation.add_message("", own=False)
        self._flush(conversation, message, content, final=True)

        message.token_count = estimate_tokens(content)
        if self.pricing is not None and model:
            input_tokens = sum(estimate_tokens(m.get("content", "")) for m in messages)
            message.cost_usd = self.pricing.cost(model, input_tokens, message.token_count)

        conversation.request_messages.append({"role": ASSISTANT_ROLE, "content": content})
        conversation.notify_changed()

        await self._drain_saves(conversation.id)
        try:
            await save_with_retry(
                self.store, conversation,
                self.settings.persist_attempts, self.settings.persist_backoff,
            )
        except PersistenceError as e:
            return GenerationResult(GenerationStatus.FAILURE, content=content, error=e)
        return GenerationResult(GenerationStatus.SUCCESS, content=content)

    async def _settle_failure(self, conversation: Conversation, error: BackendError) -> GenerationResult:
        logger.warning("Generation for %s failed: %s", conversation.id, error)
        self._clear_waiting(conversation)
        await self._drain_saves(conversation.id)
        return GenerationResult(GenerationStatus.FAILURE, error=error)

    async def _abandon_placeholder(self, conversation: Conversation, placeholder: Message) -> GenerationResult:
        """Cancelled before any answer text arrived: the progress message goes away."""
        conversation.remove_message(placeholder)
        await self._drain_saves(conversation.id)
        try:
            await save_with_retry(
                self.store, conversation,
                self.settings.persist_attempts, self.settings.persist_backoff,
            )
        except PersistenceError as e:
            return GenerationResult(GenerationStatus.FAILURE, error=e)
        return GenerationResult(GenerationStatus.CANCELLED)

    @staticmethod
    def _clear_waiting(conversation: Conversation) -> None:
        changed = conversation.waiting_for_response
        conversation.waiting_for_response = False
        last = conversation.last_message
        if last is not None and not last.own and last.waiting_for_response:
            last.waiting_for_response = False
            changed = True
        if changed:
            conversation.notify_changed()

    # ------------------------------------------------------------------
    # Best-effort persistence
    # ------------------------------------------------------------------

    def _schedule_save(self, conversation: Conversation) -> None:
        task = asyncio.create_task(self._save_best_effort(conversation))
        pending = self._pending_saves.setdefault(conversation.id, set())
        pending.add(task)
        task.add_done_callback(pending.discard)

    async def _save_best_effort(self, conversation: Conversation) -> None:
        try:
            await save_with_retry(self.store, conversation, 1, self.settings.persist_backoff)
        except PersistenceError as e:
            logger.warning("Mid-stream save for %s failed (ignored): %s", conversation.id, e)

    async def _drain_saves(self, conversation_id: str) -> None:
        """Let outstanding mid-stream saves land before the final one."""
        pending = self._pending_saves.pop(conversation_id, set())
        if pending:
            await asyncio.gather(*pending)
