"""Per-connection session orchestrator.

Relays one client's audio to a live ASR stream, turns each final
transcript into a completion request, and sends the reply text and its
synthesized audio back to the client. Owns the ASR reconnection policy.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from voicerelay.asr.base import AsrClient, AsrEvent, ReadyState, Transcript
from voicerelay.asr.stream import AsrStreamManager
from voicerelay.config import RelayConfig
from voicerelay.conversation import ConversationHistory, Turn
from voicerelay.errors import AsrStreamError, BackendError
from voicerelay.transport.base import TransportSession
from voicerelay.transport.protocol import ErrorDetail, ErrorMessage, MetadataMessage

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session state machine states.

    State Transitions:
    - CONNECTING → ACTIVE (ASR stream opened)
    - CONNECTING → RECONNECTING (first stream died before opening)
    - ACTIVE → RECONNECTING (audio arrived while the stream was closing/closed)
    - RECONNECTING → ACTIVE (replacement stream opened)
    - * → CLOSED (transport disconnect or ASR circuit breaker)
    """

    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CONNECTING: {
        SessionState.ACTIVE,
        SessionState.RECONNECTING,
        SessionState.CLOSED,
    },
    SessionState.ACTIVE: {SessionState.RECONNECTING, SessionState.CLOSED},
    SessionState.RECONNECTING: {SessionState.ACTIVE, SessionState.CLOSED},
    SessionState.CLOSED: set(),  # Terminal state
}


class Completer(Protocol):
    """Completion invoker interface."""

    async def complete(self, turns: list[Turn]) -> Turn: ...


class Synthesizer(Protocol):
    """Synthesis invoker interface."""

    async def synthesize(self, text: str) -> bytes: ...


@dataclass
class SessionMetrics:
    """Session activity counters."""

    audio_chunks_received: int = 0
    audio_chunks_forwarded: int = 0
    audio_chunks_dropped: int = 0
    reconnects: int = 0
    turns_started: int = 0
    turns_completed: int = 0
    completion_failures: int = 0
    synthesis_failures: int = 0
    malformed_frames: int = 0

    session_start_ts: float = field(default_factory=time.monotonic)
    session_end_ts: float | None = None

    def finalize(self) -> None:
        """Mark session as complete and record end time."""
        self.session_end_ts = time.monotonic()


class RelaySession:
    """Orchestrates one client connection.

    Owns the transport, the current ASR stream manager and the conversation
    history. Each final transcript starts an independent turn-completion
    task; with ``turns.ordering = "serialize"`` those tasks run one at a
    time in transcript order, otherwise they overlap and replies may reach
    the client out of order.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        transport: TransportSession,
        asr_client: AsrClient,
        completion: Completer,
        synthesis: Synthesizer,
        config: RelayConfig,
    ) -> None:
        """Initialize session. Nothing is opened until ``start()``.

        Args:
            transport: Client connection owned by this session
            asr_client: Factory for ASR streams
            completion: Completion invoker
            synthesis: Synthesis invoker
            config: Relay configuration
        """
        self.transport = transport
        self.config = config
        self.state = SessionState.CONNECTING
        self.history = ConversationHistory(max_turns=config.history.max_turns)
        self.metrics = SessionMetrics()

        self._asr_client = asr_client
        self._completion = completion
        self._synthesis = synthesis

        self._asr: AsrStreamManager | None = None
        self._reconnect_attempts = 0
        self._reconnect_task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None

        self._turn_seq = 0
        self._turn_tasks: set[asyncio.Task[None]] = set()
        self._turn_lock: asyncio.Lock | None = (
            asyncio.Lock() if config.turns.ordering == "serialize" else None
        )

    @property
    def session_id(self) -> str:
        """Get session ID from transport."""
        return self.transport.session_id

    @property
    def asr(self) -> AsrStreamManager | None:
        """Current ASR stream manager."""
        return self._asr

    @property
    def pending_turns(self) -> int:
        """Number of turn-completion tasks still running."""
        return len(self._turn_tasks)

    def transition_state(self, new_state: SessionState) -> None:
        """Transition session to a new state with validation.

        Raises:
            ValueError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Invalid state transition: {self.state.value} → {new_state.value}")

        old_state = self.state
        self.state = new_state

        logger.info(
            "Session state transition",
            extra={
                "session_id": self.session_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

    def start(self) -> None:
        """Hook transport closure and open the first ASR stream."""
        self.transport.add_close_callback(self._on_transport_closed)
        self._asr = self._new_stream()
        self._asr.open()

    async def run(self) -> None:
        """Relay inbound frames until the client disconnects.

        Binary frames are audio; text frames are JSON values.
        """
        self.start()
        try:
            async for frame in self.transport.receive():
                if self.state == SessionState.CLOSED:
                    break
                if isinstance(frame, bytes):
                    await self.handle_audio(frame)
                else:
                    self.handle_text(frame)
        finally:
            await self.close(reason="client_disconnected")

    async def handle_audio(self, chunk: bytes) -> None:
        """Forward an audio chunk, or react to the stream's readiness.

        OPEN: forwarded. CLOSING/CLOSED: dropped and the stream is replaced.
        OPENING: dropped silently.
        """
        self.metrics.audio_chunks_received += 1
        if self.state == SessionState.CLOSED or self._asr is None:
            return

        asr = self._asr
        readiness = asr.ready_state

        if readiness == ReadyState.OPEN:
            try:
                await asr.send(chunk)
                self.metrics.audio_chunks_forwarded += 1
            except AsrStreamError as e:
                self.metrics.audio_chunks_dropped += 1
                logger.warning(
                    "Audio chunk could not be forwarded",
                    extra={"session_id": self.session_id, "error": str(e)},
                )
        elif readiness.is_terminal:
            self.metrics.audio_chunks_dropped += 1
            logger.info(
                "ASR stream unavailable, reconnecting",
                extra={"session_id": self.session_id, "ready_state": readiness.name},
            )
            await self._reconnect()
        else:
            self.metrics.audio_chunks_dropped += 1
            logger.debug(
                "ASR stream not ready, dropping audio chunk",
                extra={"session_id": self.session_id, "bytes": len(chunk)},
            )

    def handle_text(self, text: str) -> None:
        """Validate an inbound text frame. Malformed JSON is logged and dropped."""
        try:
            value = json.loads(text)
        except json.JSONDecodeError as e:
            self.metrics.malformed_frames += 1
            logger.warning(
                "Malformed text frame dropped",
                extra={"session_id": self.session_id, "error": str(e)},
            )
            return

        logger.debug(
            "Ignoring text frame",
            extra={"session_id": self.session_id, "value_type": type(value).__name__},
        )

    def _new_stream(self) -> AsrStreamManager:
        """Construct a stream manager bound to this session."""
        deepgram = self.config.deepgram
        manager: AsrStreamManager

        def listener(event: AsrEvent, payload: Any) -> None:
            self._on_asr_event(manager, event, payload)

        manager = AsrStreamManager(
            self._asr_client,
            deepgram.stream_options(),
            keepalive_interval_s=deepgram.keepalive_interval_s,
            listener=listener,
            session_id=self.session_id,
        )
        return manager

    async def _reconnect(self) -> None:
        """Replace the dead ASR stream, with backoff and a circuit breaker."""
        policy = self.config.reconnect
        old = self._asr

        if self._reconnect_attempts >= policy.max_consecutive_failures:
            if old is not None:
                await old.close()
            await self._fail(
                AsrStreamError(
                    f"ASR stream unavailable after {self._reconnect_attempts} attempts",
                    attempts=self._reconnect_attempts,
                )
            )
            return

        self._reconnect_attempts += 1
        attempt = self._reconnect_attempts
        self.metrics.reconnects += 1
        if self.state != SessionState.RECONNECTING:
            self.transition_state(SessionState.RECONNECTING)

        # Fully release the old stream before installing the new one
        if old is not None:
            await old.close()
        if self.state == SessionState.CLOSED:
            return

        new = self._new_stream()
        self._asr = new

        delay = policy.delay_for_attempt(attempt)
        logger.warning(
            "Reconnecting ASR stream",
            extra={"session_id": self.session_id, "attempt": attempt, "delay_s": delay},
        )
        if delay <= 0:
            new.open()
        else:
            self._reconnect_task = asyncio.create_task(self._open_after(new, delay))

    async def _open_after(self, manager: AsrStreamManager, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        if manager is self._asr and not manager.is_closed and self.state != SessionState.CLOSED:
            manager.open()

    async def _fail(self, error: AsrStreamError) -> None:
        """Report an unrecoverable ASR failure to the client and close."""
        logger.error(
            "ASR circuit breaker open, closing session",
            extra={"session_id": self.session_id, "attempts": error.attempts},
        )
        message = ErrorMessage(error=ErrorDetail(code="ASR_STREAM_ERROR", message=str(error)))
        self.transport.send_text(message.model_dump_json())
        await self.close(reason="asr_unavailable")

    def _on_asr_event(self, manager: AsrStreamManager, event: AsrEvent, payload: Any) -> None:
        """Handle an event from an ASR stream manager owned by this session."""
        if manager is not self._asr or self.state == SessionState.CLOSED:
            return

        if event == AsrEvent.OPENED:
            self._reconnect_attempts = 0
            if self.state in (SessionState.CONNECTING, SessionState.RECONNECTING):
                self.transition_state(SessionState.ACTIVE)
        elif event == AsrEvent.TRANSCRIPT:
            self._on_transcript(payload)
        elif event == AsrEvent.METADATA:
            self.transport.send_text(MetadataMessage(metadata=payload).model_dump_json())
        elif event == AsrEvent.WARNING:
            logger.warning(
                "ASR warning", extra={"session_id": self.session_id, "info": payload}
            )
        elif event == AsrEvent.ERROR:
            logger.error("ASR error", extra={"session_id": self.session_id, "info": payload})
        elif event == AsrEvent.CLOSED:
            logger.info("ASR stream closed by backend", extra={"session_id": self.session_id})

    def _on_transcript(self, transcript: Transcript) -> None:
        """Start a turn-completion cycle for a non-empty final transcript."""
        if not transcript.is_final or not transcript.text.strip():
            return

        self.history.append_user(transcript.text)
        self._turn_seq += 1
        self.metrics.turns_started += 1

        logger.info(
            "Final transcript received",
            extra={
                "session_id": self.session_id,
                "turn_seq": self._turn_seq,
                "text_length": len(transcript.text),
            },
        )

        # Each cycle sees the history as of its own transcript
        task = asyncio.create_task(self._run_turn(self._turn_seq, self.history.turns()))
        self._turn_tasks.add(task)
        task.add_done_callback(self._turn_tasks.discard)

    async def _run_turn(self, seq: int, turns: list[Turn]) -> None:
        try:
            if self._turn_lock is None:
                await self._complete_turn(seq, turns)
            else:
                async with self._turn_lock:
                    await self._complete_turn(seq, turns)
        except Exception:
            logger.exception(
                "Unexpected error in turn cycle",
                extra={"session_id": self.session_id, "turn_seq": seq},
            )

    async def _complete_turn(self, seq: int, turns: list[Turn]) -> None:
        """Completion → history → reply text → synthesis → reply audio.

        A backend failure stops the cycle at that step; turns already in
        history stay there.
        """
        try:
            reply = await self._completion.complete(turns)
        except BackendError as e:
            self.metrics.completion_failures += 1
            logger.error(
                "Completion failed",
                extra={
                    "session_id": self.session_id,
                    "turn_seq": seq,
                    "status": e.status,
                    "category": e.category,
                    "error": str(e),
                },
            )
            return

        self.history.append_assistant(reply.content)
        if self.state == SessionState.CLOSED:
            logger.info(
                "Session closed, discarding reply",
                extra={"session_id": self.session_id, "turn_seq": seq},
            )
            return

        self.transport.send_json(reply.content)

        try:
            audio = await self._synthesis.synthesize(reply.content)
        except BackendError as e:
            self.metrics.synthesis_failures += 1
            logger.error(
                "Synthesis failed",
                extra={
                    "session_id": self.session_id,
                    "turn_seq": seq,
                    "status": e.status,
                    "category": e.category,
                    "error": str(e),
                },
            )
            return

        if self.state == SessionState.CLOSED:
            logger.info(
                "Session closed, discarding synthesized audio",
                extra={"session_id": self.session_id, "turn_seq": seq},
            )
            return

        self.transport.send_bytes(audio)
        self.metrics.turns_completed += 1
        logger.info(
            "Turn complete",
            extra={"session_id": self.session_id, "turn_seq": seq, "audio_bytes": len(audio)},
        )

    def _on_transport_closed(self) -> None:
        """Tear the session down when the client goes away."""
        if self.state == SessionState.CLOSED or self._close_task is not None:
            return
        self._close_task = asyncio.create_task(self.close(reason="client_disconnected"))

    async def close(self, reason: str = "closed") -> None:
        """Release the ASR stream, its timer and the transport.

        In-flight turn cycles are not cancelled; their results are discarded.
        """
        if self.state == SessionState.CLOSED:
            return
        self.transition_state(SessionState.CLOSED)

        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()

        if self._asr is not None:
            await self._asr.close()

        await self.transport.close()
        self.metrics.finalize()

        logger.info(
            "Session closed",
            extra={"session_id": self.session_id, "reason": reason, **self.get_metrics_summary()},
        )

    def get_metrics_summary(self) -> dict[str, str | float | int | None]:
        """Get session metrics summary for logging/monitoring."""
        return {
            "state": self.state.value,
            "history_turns": len(self.history),
            "audio_chunks_received": self.metrics.audio_chunks_received,
            "audio_chunks_forwarded": self.metrics.audio_chunks_forwarded,
            "audio_chunks_dropped": self.metrics.audio_chunks_dropped,
            "reconnects": self.metrics.reconnects,
            "turns_started": self.metrics.turns_started,
            "turns_completed": self.metrics.turns_completed,
            "completion_failures": self.metrics.completion_failures,
            "synthesis_failures": self.metrics.synthesis_failures,
            "session_duration_s": (
                (self.metrics.session_end_ts or time.monotonic()) - self.metrics.session_start_ts
            ),
        }
