"""Simulated DAQ driver for testing and dry runs."""

import numpy as np

from sitools.daq.base import AcqSampleMode, BlockCallback, Edge, SiDaq, TaskStatus


class _MockTask:
    def __init__(self, name: str, channel_names: list[str]) -> None:
        self._name = name
        self._channel_names = channel_names
        self._status = TaskStatus.IDLE
        self.closed = False
        self.rate: float = 0.0
        self.sample_mode: AcqSampleMode = AcqSampleMode.FINITE
        self.samps_per_chan: int = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def status(self) -> TaskStatus:
        return self._status

    @property
    def channel_names(self) -> list[str]:
        return self._channel_names

    def start(self) -> None:
        if self.closed:
            msg = f"Task '{self._name}' is closed"
            raise RuntimeError(msg)
        self._status = TaskStatus.RUNNING

    def stop(self) -> None:
        self._status = TaskStatus.IDLE

    def close(self) -> None:
        self._status = TaskStatus.IDLE
        self.closed = True

    def is_task_done(self) -> bool:
        return self._status != TaskStatus.RUNNING

    def cfg_samp_clk_timing(self, rate: float, sample_mode: AcqSampleMode, samps_per_chan: int) -> None:
        self.rate = rate
        self.sample_mode = sample_mode
        self.samps_per_chan = samps_per_chan


class MockDOTask(_MockTask):
    """Digital output task that keeps the last written buffer."""

    def __init__(self, name: str, channel_names: list[str]) -> None:
        super().__init__(name, channel_names)
        self.trigger_source: str | None = None
        self.trigger_edge: Edge | None = None
        self.retriggerable = False
        self.last_write: np.ndarray | None = None
        self.reserved = False

    def write(self, data: np.ndarray) -> int:
        if self._status == TaskStatus.RUNNING:
            msg = f"Cannot write to task '{self._name}' while it is running"
            raise RuntimeError(msg)
        if self.reserved and data.shape[-1] != self.samps_per_chan:
            msg = f"Buffer of task '{self._name}' is reserved; unreserve before resizing"
            raise RuntimeError(msg)
        self.last_write = np.array(data)
        self.reserved = True
        return data.shape[-1]

    def cfg_dig_edge_start_trig(self, trigger_source: str, *, edge: Edge, retriggerable: bool = False) -> None:
        self.trigger_source = trigger_source
        self.trigger_edge = edge
        self.retriggerable = retriggerable

    def unreserve(self) -> None:
        self.reserved = False


class MockAITask(_MockTask):
    """Analog input task; blocks are pushed with ``feed``."""

    def __init__(self, name: str, channel_names: list[str]) -> None:
        super().__init__(name, channel_names)
        self.n_samples = 0
        self._callback: BlockCallback | None = None

    def register_every_n_samples(self, n_samples: int, callback: BlockCallback) -> None:
        self.n_samples = n_samples
        self._callback = callback

    def feed(self, block: np.ndarray | None = None, error: str = "") -> None:
        """Deliver a block (samples x channels) as the driver callback would."""
        if self._callback is None:
            return
        if block is None:
            block = np.zeros((self.n_samples, len(self._channel_names)), dtype=np.int16)
        if error:
            self._status = TaskStatus.ERROR
        self._callback(np.asarray(block, dtype=np.int16), error)


class MockCICountTask(_MockTask):
    def __init__(self, name: str, channel_names: list[str]) -> None:
        super().__init__(name, channel_names)
        self.count = 0

    def read_scalar(self) -> int:
        return self.count


class SimulatedDaq(SiDaq):
    """DAQ device that records what would have been sent to hardware."""

    def __init__(self, dev: str = "SimDev1", uid: str = "SimulatedDAQ") -> None:
        super().__init__(uid=uid)
        self._name = dev

    @property
    def device_name(self) -> str:
        return self._name

    def _create_do_task(self, task_name: str, lines: list[str]) -> MockDOTask:
        return MockDOTask(task_name, list(lines))

    def _create_ai_task(self, task_name: str, channels: list[int], voltage_range: float) -> MockAITask:
        return MockAITask(task_name, [f"ai{channel}" for channel in channels])

    def _create_ci_count_task(self, task_name: str, counter: int, input_terminal: str) -> MockCICountTask:
        return MockCICountTask(task_name, [f"ctr{counter}"])
