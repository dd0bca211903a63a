"""NI-DAQmx driver."""

import numpy as np
from nidaqmx.constants import AcquisitionType as NiAcqType
from nidaqmx.constants import CountDirection as NiCountDirection
from nidaqmx.constants import Edge as NiEdge
from nidaqmx.constants import LineGrouping as NiLineGrouping
from nidaqmx.constants import TaskMode as NiTaskMode
from nidaqmx.constants import TerminalConfiguration as NiTerminalConfig
from nidaqmx.errors import DaqError
from nidaqmx.stream_readers import AnalogUnscaledReader
from nidaqmx.system import System as NiSystem
from nidaqmx.task import Task as NiTask

from sitools.daq.base import AcqSampleMode, BlockCallback, Edge, SiDaq, TaskStatus
from sitools.errors import DaqConnectionError


def _ni_sample_mode(sample_mode: AcqSampleMode) -> NiAcqType:
    return NiAcqType.FINITE if sample_mode == AcqSampleMode.FINITE else NiAcqType.CONTINUOUS


class _NiTaskBase:
    """Status tracking and lifecycle shared by the NI task wrappers."""

    def __init__(self, task: NiTask, channel_names: list[str]) -> None:
        self._inst = task
        self._channel_names = channel_names
        self._status = TaskStatus.IDLE

    @property
    def name(self) -> str:
        return self._inst.name

    @property
    def status(self) -> TaskStatus:
        return self._status

    @property
    def channel_names(self) -> list[str]:
        return self._channel_names

    def start(self) -> None:
        self._inst.start()
        self._status = TaskStatus.RUNNING

    def stop(self) -> None:
        self._inst.stop()
        self._status = TaskStatus.IDLE

    def close(self) -> None:
        self._inst.close()
        self._status = TaskStatus.IDLE

    def is_task_done(self) -> bool:
        return self._inst.is_task_done()

    def cfg_samp_clk_timing(self, rate: float, sample_mode: AcqSampleMode, samps_per_chan: int) -> None:
        self._inst.timing.cfg_samp_clk_timing(
            rate=rate, sample_mode=_ni_sample_mode(sample_mode), samps_per_chan=samps_per_chan
        )


class NiDOTask(_NiTaskBase):
    """Digital output task, one channel per line."""

    def write(self, data: np.ndarray) -> int:
        # Output buffer must match the finite sample count exactly.
        n_samples = data.shape[-1]
        self._inst.out_stream.output_buf_size = n_samples
        return self._inst.write(data.tolist(), auto_start=False)

    def cfg_dig_edge_start_trig(self, trigger_source: str, *, edge: Edge, retriggerable: bool = False) -> None:
        ni_edge = NiEdge.FALLING if edge == Edge.FALLING else NiEdge.RISING
        self._inst.triggers.start_trigger.cfg_dig_edge_start_trig(trigger_source=trigger_source, trigger_edge=ni_edge)
        self._inst.triggers.start_trigger.retriggerable = retriggerable

    def unreserve(self) -> None:
        self._inst.control(NiTaskMode.TASK_UNRESERVE)


class NiAITask(_NiTaskBase):
    """Analog input task reading unscaled int16 samples."""

    def __init__(self, task: NiTask, channel_names: list[str]) -> None:
        super().__init__(task, channel_names)
        self._reader = AnalogUnscaledReader(task.in_stream)

    def register_every_n_samples(self, n_samples: int, callback: BlockCallback) -> None:
        n_channels = len(self._channel_names)

        # DAQmx invokes this on its own thread; exceptions raised here are lost.
        def _on_samples(task_handle, event_type, number_of_samples, callback_data) -> int:
            buffer = np.zeros((n_channels, number_of_samples), dtype=np.int16)
            try:
                self._reader.read_int16(buffer, number_of_samples_per_channel=number_of_samples)
            except DaqError as e:
                self._status = TaskStatus.ERROR
                callback(np.empty((0, n_channels), dtype=np.int16), str(e))
                return 0
            callback(buffer.T, "")
            return 0

        self._inst.register_every_n_samples_acquired_into_buffer_event(n_samples, _on_samples)


class NiCICountTask(_NiTaskBase):
    def read_scalar(self) -> int:
        return int(self._inst.read())


class NiDaq(SiDaq):
    """NI-DAQmx device.

    Args:
        dev: NI-DAQmx device name (e.g. "Dev1").
        uid: Identifier used in log messages.
    """

    def __init__(self, dev: str, uid: str = "NiDAQ") -> None:
        super().__init__(uid=uid)
        self._name = dev
        self._check_device_present()

    def __repr__(self) -> str:
        return f"DAQ Device - Uid: {self.uid} - Name: {self._name}"

    @property
    def device_name(self) -> str:
        return self._name

    def _check_device_present(self) -> None:
        try:
            names = list(NiSystem.local().devices.device_names)
        except DaqError as e:
            msg = f"Unable to query NI-DAQmx devices: {e}"
            raise DaqConnectionError(msg) from e
        if self._name not in names:
            msg = f"Device '{self._name}' not present on system. Available devices are: {', '.join(names) or 'none'}"
            raise DaqConnectionError(msg)

    def _new_task(self, task_name: str) -> NiTask:
        try:
            return NiTask(task_name)
        except DaqError as e:
            msg = f"Unable to create task '{task_name}' on {self._name}: {e}"
            raise DaqConnectionError(msg) from e

    def _create_do_task(self, task_name: str, lines: list[str]) -> NiDOTask:
        task = self._new_task(task_name)
        try:
            for line in lines:
                task.do_channels.add_do_chan(f"{self._name}/{line}", line_grouping=NiLineGrouping.CHAN_PER_LINE)
        except DaqError as e:
            task.close()
            msg = f"Failed to create DO task '{task_name}': {e}"
            raise DaqConnectionError(msg) from e
        return NiDOTask(task, list(lines))

    def _create_ai_task(self, task_name: str, channels: list[int], voltage_range: float) -> NiAITask:
        task = self._new_task(task_name)
        try:
            for channel in channels:
                task.ai_channels.add_ai_voltage_chan(
                    f"{self._name}/ai{channel}",
                    terminal_config=NiTerminalConfig.NRSE,
                    min_val=-voltage_range,
                    max_val=voltage_range,
                )
        except DaqError as e:
            task.close()
            msg = f"Failed to create AI task '{task_name}': {e}"
            raise DaqConnectionError(msg) from e
        return NiAITask(task, [f"ai{channel}" for channel in channels])

    def _create_ci_count_task(self, task_name: str, counter: int, input_terminal: str) -> NiCICountTask:
        task = self._new_task(task_name)
        try:
            channel = task.ci_channels.add_ci_count_edges_chan(
                f"{self._name}/ctr{counter}",
                edge=NiEdge.RISING,
                count_direction=NiCountDirection.COUNT_UP,
            )
            channel.ci_count_edges_term = input_terminal
        except DaqError as e:
            task.close()
            msg = f"Failed to create CI task '{task_name}': {e}"
            raise DaqConnectionError(msg) from e
        return NiCICountTask(task, [f"ctr{counter}"])
