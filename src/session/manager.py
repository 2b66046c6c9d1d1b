"""
Scan Session Manager Module.

This module runs captures through the pipeline, one asyncio task per
scan, and delivers exactly one ScanResult per session that is not
superseded.

Concurrency model:
    - Stages run sequentially inside the session task; the recognition
      call is the suspension point.
    - Every stage commit checks the session generation. A newer capture
      or a cancel bumps the manager generation, so the old task finishes
      its in-flight stage but never commits or delivers.
    - No exception crosses the manager. Fatal errors become a Failed
      result on the generic template.

Author: ML Engineering Team
"""

import asyncio
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from config import get_config
from src.utils.logger import get_logger
from src.utils.exceptions import IDExtractionError, SessionSupersededError
from src.input_handler.capture import RawCapture
from src.field_extraction.extraction_result import ScanResult
from .pipeline import ScanPipeline
from .state import ScanSession, ScanState, StateChange

# Initialize module logger
logger = get_logger(__name__)

ResultListener = Callable[[ScanResult], None]
StateListener = Callable[[StateChange], None]


@dataclass(frozen=True)
class SessionHandle:
    """Reference to a submitted capture."""
    session_id: str
    generation: int


class ScanSessionManager:
    """
    Owner of the scan sessions of one capture surface.

    At most one session is active; submitting a new capture supersedes
    the previous one.

    Attributes:
        pipeline: Stage implementations
        generation: Generation of the current session

    Example:
        >>> manager = ScanSessionManager(pipeline, on_result=show_result)
        >>> handle = manager.submit_capture(jpeg_bytes, "jpeg")
        >>> result = await manager.wait(handle)
    """

    def __init__(
        self,
        pipeline: Optional[ScanPipeline] = None,
        on_result: Optional[ResultListener] = None,
        on_state: Optional[StateListener] = None,
        today: Optional[date] = None,
        history_size: Optional[int] = None
    ) -> None:
        """
        Initialize the manager.

        Args:
            pipeline: Pipeline to use. Built from configuration if omitted.
            on_result: Called once per delivered result.
            on_state: Called on every state change.
            today: Fixed reference date for chronology checks.
            history_size: Number of finished sessions kept for ``wait``.
        """
        self.pipeline = pipeline or ScanPipeline.from_config()
        self.today = today
        self.history_size = history_size or get_config("session.history_size", 50)
        self.generation = 0

        self._result_listeners: List[ResultListener] = [on_result] if on_result else []
        self._state_listeners: List[StateListener] = [on_state] if on_state else []
        self._sessions: "OrderedDict[str, ScanSession]" = OrderedDict()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._current: Optional[ScanSession] = None

        logger.info("ScanSessionManager initialized")

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_result_listener(self, listener: ResultListener) -> None:
        self._result_listeners.append(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def _emit_state(self, change: StateChange) -> None:
        logger.debug(f"State change: {change}")
        for listener in self._state_listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("State listener raised")

    def _emit_result(self, result: ScanResult) -> None:
        for listener in self._result_listeners:
            try:
                listener(result)
            except Exception:
                logger.exception("Result listener raised")

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def current_state(self) -> ScanState:
        return self._current.state if self._current else ScanState.IDLE

    @property
    def current_session(self) -> Optional[ScanSession]:
        return self._current

    def get_session(self, session_id: str) -> Optional[ScanSession]:
        return self._sessions.get(session_id)

    def submit_capture(
        self,
        image_bytes: bytes,
        image_format: str,
        timestamp: Optional[datetime] = None
    ) -> SessionHandle:
        """
        Start a scan of one capture.

        Must be called from a running event loop. Any active session is
        superseded; a finished one returns to Idle first.

        Args:
            image_bytes: Encoded image.
            image_format: Container format ("jpeg", "png", ...).
            timestamp: Capture time. Defaults to now.

        Returns:
            SessionHandle for ``wait`` and ``cancel``.
        """
        loop = asyncio.get_running_loop()

        self._retire_current()

        self.generation += 1
        session = ScanSession(
            session_id=uuid.uuid4().hex[:12],
            generation=self.generation,
            capture=RawCapture(
                data=image_bytes,
                image_format=image_format,
                captured_at=timestamp or datetime.now()
            )
        )
        self._remember(session)
        self._current = session
        self._emit_state(session.transition(ScanState.CAPTURING))

        self._tasks[session.session_id] = loop.create_task(self._run(session))
        logger.info(
            f"Submitted capture {session.session_id} (generation {session.generation}, "
            f"{len(image_bytes or b'')} bytes)"
        )
        return SessionHandle(session.session_id, session.generation)

    def submit_data_url(self, data_url: str, timestamp: Optional[datetime] = None) -> SessionHandle:
        """Start a scan from a ``data:image/...;base64,`` URL."""
        capture = RawCapture.from_data_url(data_url, captured_at=timestamp)
        return self.submit_capture(capture.data, capture.image_format, capture.captured_at)

    def cancel(self, handle: SessionHandle) -> bool:
        """
        Supersede a session without starting a new one.

        Returns:
            True if the session was active and is now superseded.
        """
        session = self._sessions.get(handle.session_id)
        if session is None or session is not self._current or not session.state.active:
            return False

        self.generation += 1
        self._supersede(session)
        return True

    async def wait(self, handle: SessionHandle) -> Optional[ScanResult]:
        """
        Wait for a session task to finish.

        Returns:
            The delivered result, or None for a superseded session.
        """
        task = self._tasks.get(handle.session_id)
        if task is not None:
            await asyncio.shield(task)
        session = self._sessions.get(handle.session_id)
        if session is None or session.state is not ScanState.DONE:
            return None
        return session.result

    def reset(self) -> None:
        """
        Start over ("new scan").

        Supersedes an active session and returns the manager to Idle.
        """
        if self._current is not None and self._current.state.active:
            self.generation += 1
        self._retire_current()
        self._current = None

    # -------------------------------------------------------------------------
    # Session task
    # -------------------------------------------------------------------------

    def _remember(self, session: ScanSession) -> None:
        self._sessions[session.session_id] = session
        while len(self._sessions) > self.history_size:
            old_id, _ = self._sessions.popitem(last=False)
            task = self._tasks.get(old_id)
            if task is None or task.done():
                self._tasks.pop(old_id, None)

    def _retire_current(self) -> None:
        session = self._current
        if session is None:
            return
        if session.state.active:
            self._supersede(session)
        if session.state.terminal:
            self._emit_state(session.transition(ScanState.IDLE))

    def _supersede(self, session: ScanSession) -> None:
        logger.info(f"Session {session.session_id} superseded in state {session.state.value}")
        self._emit_state(session.transition(ScanState.SUPERSEDED))

    def _check_current(self, session: ScanSession) -> None:
        if session.generation != self.generation or session.state is ScanState.SUPERSEDED:
            raise SessionSupersededError(session.session_id, session.generation, self.generation)

    def _advance(self, session: ScanSession, state: ScanState) -> None:
        self._check_current(session)
        self._emit_state(session.transition(state))

    async def _run(self, session: ScanSession) -> None:
        pipeline = self.pipeline
        timings: Dict[str, float] = {}

        try:
            self._advance(session, ScanState.NORMALIZING)
            start = time.perf_counter()
            image = pipeline.normalize(session.capture)
            timings['normalize'] = time.perf_counter() - start

            self._advance(session, ScanState.RECOGNIZING)
            start = time.perf_counter()
            tokens = await pipeline.recognize(image)
            timings['recognize'] = time.perf_counter() - start

            self._advance(session, ScanState.EXTRACTING)
            start = time.perf_counter()
            classification = pipeline.classify(tokens)
            fields = pipeline.extract(tokens, classification)
            timings['extract'] = time.perf_counter() - start

            self._advance(session, ScanState.VALIDATING)
            start = time.perf_counter()
            result = pipeline.validate(fields, classification, tokens, image, self.today)
            timings['validate'] = time.perf_counter() - start

        except SessionSupersededError as e:
            logger.debug(f"{e}; dropping its output")
            return
        except IDExtractionError as e:
            logger.error(f"Session {session.session_id} failed: {e}")
            result = pipeline.failed_result(e)
        except Exception as e:
            logger.exception(f"Session {session.session_id} failed unexpectedly")
            result = pipeline.failed_result(e)

        try:
            self._check_current(session)
        except SessionSupersededError as e:
            logger.debug(f"{e}; dropping its output")
            return

        result.session_id = session.session_id
        result.timings.update(timings)
        self._emit_state(session.transition(ScanState.DONE, result))
        logger.info(
            f"Session {session.session_id} done: {result.status.value} "
            f"({len(result.found_fields)}/{len(result.fields)} fields)"
        )
        self._emit_result(result)
