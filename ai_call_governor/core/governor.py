"""
Request governor for outbound AI calls.

Serializes calls from independent callers through a single FIFO queue,
admits at most ``max_concurrent_requests`` at a time, retries
server-class failures with exponential backoff and downgrades the model
along the fallback chain when the backend reports quota exhaustion.

Every state transition is recorded twice: as an upsert of the call's
record in the ledger and as an API_CALL entry in the audit trail,
both carrying the same snapshot.

State machine per request:
    ENQUEUED -> PROCESSING
    PROCESSING -> SUCCESS
    PROCESSING -> RETRYING (quota, fallback exists; model swapped, attempts reset)
    PROCESSING -> RETRYING (server error, attempts left; backoff) -> PROCESSING
    PROCESSING -> FAILED (server error, no attempts left / any other error)

Usage:
    governor = RequestGovernor(CallLedger(), AuditTrail())
    response = await governor.enqueue(
        lambda payload: client.models.generate_content(**payload),
        {"model": "gemini-2.5-pro", "contents": prompt},
        CallMetadata(agent_name="Persona Agent", model="gemini-2.5-pro"),
    )
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, TYPE_CHECKING

from ai_call_governor.storage.models import AuditEventType, CallRecord, CallStatus
from ai_call_governor.storage.repository import StorageRepository
from .audit_trail import AuditTrail
from .errors import DEFAULT_ERROR_MESSAGE, GovernedCallError, QuotaExceeded, classify_error
from .fallback import DEFAULT_FALLBACK_CHAIN, FallbackChain
from .ledger import CallLedger
from .pricing import calculate_usage_cost
from .token_counter import TokenUsage

if TYPE_CHECKING:
    from ai_call_governor.config.loader import AppConfig

logger = logging.getLogger(__name__)

PerformAttempt = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class GovernorConfig:
    """Tunable limits of the governor."""
    max_retries: int = 3
    initial_backoff_ms: int = 1000
    max_concurrent_requests: int = 1
    poll_interval_ms: int = 250
    request_timeout_s: Optional[float] = None  # per attempt; None disables
    fallback_chain: FallbackChain = DEFAULT_FALLBACK_CHAIN

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.initial_backoff_ms < 0:
            raise ValueError("initial_backoff_ms must be >= 0")
        if self.max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be >= 1")
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be > 0")
        if self.request_timeout_s is not None and self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be > 0")

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before the retry that follows the given failed attempt."""
        return self.initial_backoff_ms * (2 ** (attempt - 1)) / 1000


@dataclass(frozen=True)
class CallMetadata:
    """Caller-supplied description of a logical call."""
    agent_name: str
    model: str
    request_payload: Any = None


@dataclass
class QueuedRequest:
    """A call waiting for admission."""
    perform_attempt: PerformAttempt
    initial_payload: Dict[str, Any]
    metadata: CallMetadata
    future: asyncio.Future = field(repr=False)
    # progress, filled in once admitted
    log_id: Optional[str] = None
    model: Optional[str] = None
    attempts: int = 0


class RequestGovernor:
    """Single-flight admission queue with retry and model fallback."""

    def __init__(
        self,
        ledger: CallLedger,
        audit_trail: AuditTrail,
        config: Optional[GovernorConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the governor.

        Args:
            ledger: Ledger receiving record upserts
            audit_trail: Trail receiving API_CALL entries
            config: Limits and fallback chain, defaults to GovernorConfig()
            sleep: Awaitable used for retry backoff
        """
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.config = config or GovernorConfig()
        self._sleep = sleep
        self._queue: Deque[QueuedRequest] = deque()
        self._active_requests = 0
        self._poller: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, app_config: "AppConfig") -> "RequestGovernor":
        """Build a governor together with its ledger and audit trail."""
        audit = app_config.audit
        audit_trail = AuditTrail(
            storage=StorageRepository(audit.db_path),
            storage_key=audit.storage_key,
            log_limit=audit.log_limit,
            download_threshold_kb=audit.download_threshold_kb,
            export_dir=audit.export_dir,
            flush_interval_s=audit.flush_interval_s,
        )
        ledger = CallLedger(capacity=app_config.ledger.capacity)
        return cls(ledger, audit_trail, app_config.governor)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def active_requests(self) -> int:
        return self._active_requests

    @property
    def is_polling(self) -> bool:
        return self._poller is not None and not self._poller.done()

    def submit(
        self,
        perform_attempt: PerformAttempt,
        initial_payload: Optional[Dict[str, Any]],
        metadata: CallMetadata,
    ) -> asyncio.Future:
        """Queue a logical call and return a future for its outcome.

        Must be called from within a running event loop. The future
        resolves with the raw response or fails with GovernedCallError.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append(QueuedRequest(
            perform_attempt=perform_attempt,
            initial_payload=dict(initial_payload or {}),
            metadata=metadata,
            future=future,
        ))
        self._start_polling()
        return future

    async def enqueue(
        self,
        perform_attempt: PerformAttempt,
        initial_payload: Optional[Dict[str, Any]],
        metadata: CallMetadata,
    ) -> Any:
        """Queue a logical call and wait for its outcome.

        Raises:
            GovernedCallError: If the call fails after retries and fallbacks
        """
        return await self.submit(perform_attempt, initial_payload, metadata)

    async def join(self) -> None:
        """Wait until the queue has drained and polling has stopped."""
        while self._poller is not None:
            await asyncio.shield(self._poller)

    def _start_polling(self) -> None:
        if self.is_polling:
            return
        self._poller = asyncio.get_running_loop().create_task(self._poll())

    async def _poll(self) -> None:
        interval = self.config.poll_interval_ms / 1000
        try:
            while True:
                if self._queue and self._active_requests < self.config.max_concurrent_requests:
                    request = self._queue.popleft()
                    # counted at admission so the next tick cannot over-admit
                    self._active_requests += 1
                    task = asyncio.get_running_loop().create_task(self._process(request))
                    self._inflight.add(task)
                    task.add_done_callback(self._inflight.discard)

                if not self._queue and self._active_requests == 0:
                    logger.debug("[GOVERNOR] Queue drained, polling stopped")
                    break

                await asyncio.sleep(interval)
        finally:
            self._poller = None
            # pending debounced writes would otherwise die with the loop
            self.audit_trail.flush()

    async def _attempt(self, perform_attempt: PerformAttempt, payload: Dict[str, Any]) -> Any:
        if self.config.request_timeout_s is None:
            return await perform_attempt(payload)
        return await asyncio.wait_for(perform_attempt(payload), self.config.request_timeout_s)

    def _record(self, log_id: str, **updates: Any) -> CallRecord:
        record = self.ledger.update_log(log_id, **updates)
        if record is None:
            raise RuntimeError(f"call record {log_id} is no longer in the ledger")
        self.audit_trail.log_event(AuditEventType.API_CALL, record.to_dict())
        return record

    async def _process(self, request: QueuedRequest) -> None:
        try:
            await self._run(request)
        except Exception as e:
            logger.exception("[GOVERNOR] Request processing failed")
            self._abandon(request, e)
        finally:
            self._active_requests -= 1

    def _abandon(self, request: QueuedRequest, exc: Exception) -> None:
        """Fail a request whose processing broke down outside the backend call."""
        model = request.model or request.metadata.model
        error = classify_error(exc, model)
        message = error.message or DEFAULT_ERROR_MESSAGE
        if request.log_id is not None:
            try:
                self._record(request.log_id, status=CallStatus.FAILED, error=message, response_payload=exc)
            except Exception:
                logger.exception(f"[GOVERNOR] Could not mark call {request.log_id} as failed")
        _settle(request.future, exception=GovernedCallError(message, error, request.attempts, model))

    async def _run(self, request: QueuedRequest) -> None:
        metadata = request.metadata
        model = request.model = metadata.model
        payload = dict(request.initial_payload)
        tried_models = {model}

        log_id = request.log_id = self.ledger.add_log(
            agent_name=metadata.agent_name,
            model=model,
            request_payload=metadata.request_payload,
        )
        self._record(log_id, status=CallStatus.PROCESSING)

        attempts = 0
        while attempts < self.config.max_retries:
            try:
                result = await self._attempt(request.perform_attempt, payload)
            except Exception as e:
                error = classify_error(e, model)

                if isinstance(error, QuotaExceeded):
                    fallback = self.config.fallback_chain.next_model(model)
                    if fallback and fallback not in tried_models:
                        logger.warning(f"[GOVERNOR] Quota exceeded for model {model}. Falling back to {fallback}.")
                        model = request.model = fallback
                        tried_models.add(fallback)
                        payload = {**payload, "model": fallback}
                        self._record(
                            log_id,
                            status=CallStatus.RETRYING,
                            model=fallback,
                            error=f"Quota exceeded. Falling back to {fallback}.",
                        )
                        attempts = request.attempts = 0
                        continue

                attempts += 1
                request.attempts = attempts
                message = error.message or DEFAULT_ERROR_MESSAGE

                if error.retryable and attempts < self.config.max_retries:
                    delay = self.config.backoff_seconds(attempts)
                    logger.warning(
                        f"[GOVERNOR] API call failed. Retrying in {delay * 1000:.0f}ms... "
                        f"(Attempt {attempts}/{self.config.max_retries})"
                    )
                    self._record(log_id, status=CallStatus.RETRYING, error=message)
                    await self._sleep(delay)
                    continue

                logger.error(f"[GOVERNOR] API call failed after {attempts} attempts: {message}")
                self._record(
                    log_id,
                    status=CallStatus.FAILED,
                    error=message,
                    response_payload=e,
                )
                _settle(request.future, exception=GovernedCallError(message, error, attempts, model))
                return

            usage = TokenUsage.from_response(result)
            usage_fields = {}
            if usage is not None:
                usage_fields = {
                    "prompt_tokens": usage.prompt_tokens,
                    "candidate_tokens": usage.candidate_tokens,
                    "total_tokens": usage.total_tokens,
                    "estimated_cost": calculate_usage_cost(model, usage),
                }
            self._record(
                log_id,
                status=CallStatus.SUCCESS,
                error=None,
                response_payload=result,
                **usage_fields,
            )
            _settle(request.future, result=result)
            return


def _settle(future: asyncio.Future, result: Any = None, exception: Optional[BaseException] = None) -> None:
    """Resolve or reject a caller's future unless it was cancelled."""
    if future.done():
        return
    if exception is not None:
        future.set_exception(exception)
    else:
        future.set_result(result)
