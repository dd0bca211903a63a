"""Start and stop the AI recorder as the scan engine changes acquisition state."""

import logging
from enum import StrEnum
from pathlib import Path
from typing import Protocol, runtime_checkable

from sitools.events import EventEmitter, EventType
from sitools.recorder.ai_recorder import AIRecorder

logger = logging.getLogger(__name__)


class AcqState(StrEnum):
    IDLE = "idle"
    FOCUS = "focus"
    GRAB = "grab"
    LOOP = "loop"


@runtime_checkable
class ScanEngine(Protocol):
    """The read-only view of the scan engine that sitools relies on."""

    @property
    def acq_state(self) -> str: ...

    @property
    def logging_enabled(self) -> bool: ...

    @property
    def log_file_stem(self) -> str: ...

    @property
    def log_file_counter(self) -> int: ...

    @property
    def log_file_path(self) -> str: ...

    @property
    def scanner_frequency(self) -> float: ...

    @property
    def beam_clock_terminal(self) -> str: ...

    @property
    def bidirectional(self) -> bool: ...


def ai_log_fname(engine: ScanEngine) -> Path:
    """``<log_file_path>/<stem>_AI_<counter:03d>.bin``"""
    return Path(engine.log_file_path) / f"{engine.log_file_stem}_AI_{engine.log_file_counter:03d}.bin"


class AcquisitionStateBridge:
    """Passive listener translating engine state changes into recorder commands.

    The bridge never changes the engine state itself. Recorder errors
    propagate to the caller after the recorder has torn itself down.
    """

    def __init__(self, engine: ScanEngine, recorder: AIRecorder, *, events: EventEmitter | None = None) -> None:
        self._engine = engine
        self._recorder = recorder
        self.state = AcqState.IDLE
        self._unsubscribe = None
        if events is not None:
            self._unsubscribe = events.subscribe(EventType.STATE_CHANGED, self.state_changed)

    def state_changed(self, new_state: AcqState | str) -> None:
        new_state = AcqState(new_state)
        previous, self.state = self.state, new_state
        logger.debug(f"Acquisition state {previous} -> {new_state}")
        self._recorder.check_error()

        match new_state:
            case AcqState.GRAB | AcqState.LOOP:
                if not self._recorder.is_task_done():
                    logger.debug("Previous acquisition still running, not restarting recorder")
                    return
                if self._engine.logging_enabled:
                    # Opened by the recorder when it starts.
                    self._recorder.fname = str(ai_log_fname(self._engine))
                self._recorder.start()
            case AcqState.FOCUS:
                # No persistence in preview mode.
                self._recorder.stop()
                self._recorder.start()
            case AcqState.IDLE:
                self._recorder.stop()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
