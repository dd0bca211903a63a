"""DAQ interface used by the blanker, recorder and frame-time logger.

The device creates typed task objects. Each task exclusively owns one driver
task handle and is released through ``SiDaq.close_task`` (or ``SiDaq.close``),
which stops it first so the task name can be reused.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import StrEnum
from typing import Protocol, runtime_checkable

import numpy as np


class AcqSampleMode(StrEnum):
    CONTINUOUS = "continuous"
    FINITE = "finite"


class TaskStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class Edge(StrEnum):
    RISING = "rising"
    FALLING = "falling"


# Called with (samples x channels) block and an error message ("" if none).
# May run on a driver thread and must not raise.
BlockCallback = Callable[[np.ndarray, str], None]


@runtime_checkable
class DaqTask(Protocol):
    """Lifecycle operations shared by all task types."""

    @property
    def name(self) -> str: ...

    @property
    def status(self) -> TaskStatus: ...

    @property
    def channel_names(self) -> list[str]: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...

    def is_task_done(self) -> bool: ...


@runtime_checkable
class DOTask(DaqTask, Protocol):
    """Digital output task replaying a finite buffer.

    Example:
        task = daq.create_do_task("blanker", lines=["port0/line1", "port0/line2"])
        task.cfg_samp_clk_timing(rate=1e6, sample_mode=AcqSampleMode.FINITE, samps_per_chan=75)
        task.cfg_dig_edge_start_trig("/Dev1/PFI0", edge=Edge.FALLING, retriggerable=True)
        task.write(waveform.data)
        task.start()
    """

    def write(self, data: np.ndarray) -> int:
        """Write a (channels x samples) boolean buffer without auto-start."""
        ...

    def cfg_samp_clk_timing(self, rate: float, sample_mode: AcqSampleMode, samps_per_chan: int) -> None: ...

    def cfg_dig_edge_start_trig(self, trigger_source: str, *, edge: Edge, retriggerable: bool = False) -> None: ...

    def unreserve(self) -> None:
        """Release the reserved buffer so it can be resized."""
        ...


@runtime_checkable
class AITask(DaqTask, Protocol):
    """Analog input task delivering fixed-size blocks through a callback."""

    def cfg_samp_clk_timing(self, rate: float, sample_mode: AcqSampleMode, samps_per_chan: int) -> None: ...

    def register_every_n_samples(self, n_samples: int, callback: BlockCallback) -> None: ...


@runtime_checkable
class CICountTask(DaqTask, Protocol):
    """Counter input task counting rising edges on a terminal."""

    def read_scalar(self) -> int: ...


class SiDaq(ABC):
    """Abstract DAQ device.

    Subclasses implement the ``_create_*`` factories; this class tracks the
    tasks by name and enforces unique names.
    """

    def __init__(self, uid: str) -> None:
        self.uid = uid
        self.log = logging.getLogger(f"{self.__class__.__name__}[{self.uid}]")
        self._tasks: dict[str, DaqTask] = {}

    def __str__(self) -> str:
        return f"{self.__class__.__name__}[{self.uid}]"

    @property
    @abstractmethod
    def device_name(self) -> str:
        """Name of the device on the driver side (e.g. "Dev1")."""

    @property
    def active_tasks(self) -> dict[str, DaqTask]:
        return dict(self._tasks)

    def _ensure_unique(self, task_name: str) -> None:
        if task_name in self._tasks:
            msg = f"Task '{task_name}' already exists"
            raise ValueError(msg)

    def create_do_task(self, task_name: str, lines: list[str]) -> DOTask:
        """Create a digital output task with one channel per line."""
        self._ensure_unique(task_name)
        task = self._create_do_task(task_name, lines)
        self._tasks[task_name] = task
        self.log.info(f"Created DO task '{task_name}' on lines {lines}")
        return task

    def create_ai_task(self, task_name: str, channels: list[int], voltage_range: float) -> AITask:
        """Create an analog input task reading +/- ``voltage_range`` on each channel."""
        self._ensure_unique(task_name)
        task = self._create_ai_task(task_name, channels, voltage_range)
        self._tasks[task_name] = task
        self.log.info(f"Created AI task '{task_name}' with {len(channels)} channels")
        return task

    def create_ci_count_task(self, task_name: str, counter: int, input_terminal: str) -> CICountTask:
        """Create a counter input task counting rising edges on ``input_terminal``."""
        self._ensure_unique(task_name)
        task = self._create_ci_count_task(task_name, counter, input_terminal)
        self._tasks[task_name] = task
        self.log.info(f"Created CI task '{task_name}' counting edges on {input_terminal}")
        return task

    def close_task(self, task_name: str) -> None:
        """Stop and close a task, then forget it."""
        if task_name not in self._tasks:
            msg = f"Task '{task_name}' does not exist"
            raise ValueError(msg)
        task = self._tasks.pop(task_name)
        try:
            task.stop()
        finally:
            task.close()
        self.log.info(f"Closed task '{task_name}'")

    def close(self) -> None:
        for task_name in list(self._tasks):
            try:
                self.close_task(task_name)
            except Exception as e:
                self.log.warning(f"Error closing task '{task_name}': {e}")

    @abstractmethod
    def _create_do_task(self, task_name: str, lines: list[str]) -> DOTask: ...

    @abstractmethod
    def _create_ai_task(self, task_name: str, channels: list[int], voltage_range: float) -> AITask: ...

    @abstractmethod
    def _create_ci_count_task(self, task_name: str, counter: int, input_terminal: str) -> CICountTask: ...
