"""Auxiliary analog-input recorder."""

import logging
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import numpy as np
from pydantic import ValidationError

from sitools.config import RecorderConfig, RecorderSettings, dump_yaml, load_yaml
from sitools.daq.base import AcqSampleMode, AITask, SiDaq
from sitools.errors import AcquisitionError, DaqConnectionError, LoggerClosedError
from sitools.events import EventEmitter, EventType
from sitools.recorder.binary import BinaryLogger, MetadataRecord

# Driver buffer holds this many callback blocks.
BUFFER_BLOCKS = 40

# Fields baked into the driver task when connecting.
LOCKED_FIELDS = frozenset({"ai_channels", "voltage_range", "sample_rate", "dev_name"})


class AIRecorder:
    """Acquire analog input blocks, keep a rolling buffer and optionally log them.

    Data are read in blocks of ``sample_read_size`` samples per channel. Each
    block is appended to a rolling buffer of ``num_points_in_plot`` rows and,
    while ``fname`` is set when ``start`` is called, written to a binary file
    with a sidecar metadata record.

    Blocks may arrive on a driver thread. Errors reported there are held
    until the next host call (``start``, ``stop`` or ``check_error``), which
    tears the session down and raises ``AcquisitionError``.

    Example:
        recorder = AIRecorder(daq, RecorderConfig(ai_channels=[0, 1]))
        recorder.connect()
        recorder.fname = "test.bin"
        recorder.start()
        ...
        recorder.stop()
        recorder.close()
    """

    def __init__(self, daq: SiDaq, cfg: RecorderConfig | None = None, *, events: EventEmitter | None = None) -> None:
        self._daq = daq
        self._cfg = cfg.model_copy(deep=True) if cfg is not None else RecorderConfig()
        self._log = logging.getLogger(f"AIRecorder[{self._cfg.task_name}]")
        self.events = events if events is not None else EventEmitter()
        self.fname: str = ""
        self._task: AITask | None = None
        self._logger = BinaryLogger()
        self._data = np.empty((0, len(self._cfg.ai_channels)), dtype=self._cfg.data_type)
        self._lock = threading.Lock()
        self._error = ""

    @property
    def cfg(self) -> RecorderConfig:
        return self._cfg

    @property
    def task(self) -> AITask | None:
        return self._task

    @property
    def binary_logger(self) -> BinaryLogger:
        return self._logger

    @property
    def data(self) -> np.ndarray:
        """The most recent ``num_points_in_plot`` rows (samples x channels)."""
        return self._data

    @property
    def is_connected(self) -> bool:
        return self._task is not None

    @property
    def pending_error(self) -> str:
        return self._error

    def is_task_done(self) -> bool:
        return self._task is None or self._task.is_task_done()

    def set(self, **fields: Any) -> None:
        """Update settings; the whole batch is rejected if any value is invalid."""
        unknown = fields.keys() - RecorderConfig.model_fields.keys()
        if unknown:
            msg = f"Unknown recorder settings: {sorted(unknown)}"
            raise ValueError(msg)
        changed = {name for name, value in fields.items() if value != getattr(self._cfg, name)}
        if self._task is not None and changed & LOCKED_FIELDS:
            msg = "Acquisition properties can not be changed while connected. Close, change and reconnect."
            raise RuntimeError(msg)
        try:
            updated = RecorderConfig.model_validate({**self._cfg.model_dump(), **fields})
        except ValidationError:
            self._log.exception("Rejected settings update; previous values retained")
            raise
        self._cfg = updated
        for name, value in fields.items():
            self.events.emit(EventType.FIELD_CHANGED, name, value)
        if "ai_channels" in changed or "data_type" in changed:
            self._data = np.empty((0, len(self._cfg.ai_channels)), dtype=self._cfg.data_type)

    def connect(self) -> bool:
        """Create the AI task. Returns False if the device could not be used."""
        if self._task is not None:
            self._log.error(f"Not connecting to DAQ device '{self._cfg.dev_name}'. Already connected.")
            return False
        try:
            task = self._daq.create_ai_task(self._cfg.task_name, self._cfg.ai_channels, self._cfg.voltage_range)
        except (DaqConnectionError, ValueError) as e:
            self._log.error(f"Unable to connect to '{self._cfg.dev_name}': {e}")
            return False
        try:
            task.cfg_samp_clk_timing(
                self._cfg.sample_rate,
                AcqSampleMode.CONTINUOUS,
                BUFFER_BLOCKS * self._cfg.sample_read_size,
            )
            task.register_every_n_samples(self._cfg.sample_read_size, self.on_block)
        except Exception as e:
            self._log.error(f"Unable to configure AI task: {e}")
            self._daq.close_task(self._cfg.task_name)
            return False
        self._task = task
        self._error = ""
        self._log.info(f"Connected to {self._cfg.dev_name} with {len(self._cfg.ai_channels)} AI channels")
        return True

    def start(self) -> bool:
        """Open the log file (if ``fname`` is set) and start the task.

        Returns:
            False if no task is connected or the driver refused to start.
        """
        self.check_error()
        if self._task is None:
            self._log.warning("No DAQ connected to AIRecorder")
            return False
        self.open_log_file()
        try:
            self._task.start()
        except Exception as e:
            self._log.error(f"Unable to start AI task: {e}")
            self.close_log_file()
            return False
        if self.fname:
            self._log.info(f"Recording data on {self._cfg.dev_name}, saving to {self.fname}")
        else:
            self._log.info(f"Recording data on {self._cfg.dev_name}")
        return True

    def stop(self) -> bool:
        self.check_error()
        if self._task is None:
            self._log.warning("No DAQ connected to AIRecorder")
            return False
        self._task.stop()
        self.close_log_file()
        return True

    def connect_and_start(self) -> bool:
        return self.connect() and self.start()

    def check_error(self) -> None:
        """Tear down and raise ``AcquisitionError`` if the driver reported an error."""
        if not self._error:
            return
        error = self._error
        self._log.error(f"DAQ reported an error, shutting down: {error}")
        self.close()
        raise AcquisitionError(error)

    def open_log_file(self) -> None:
        """Open the binary logger if ``fname`` is set and nothing is open yet."""
        with self._lock:
            if not self.fname or self._logger.is_open:
                return
            self._logger.open(self.fname, MetadataRecord.model_validate(self._cfg.model_dump()))

    def close_log_file(self) -> None:
        with self._lock:
            if self._logger.is_open:
                self._logger.close()
            self.fname = ""

    def on_block(self, block: np.ndarray, error: str = "") -> None:
        """Handle one block from the driver.

        Never raises: a driver error, or a failure to write the block, is
        stored and surfaced by the next ``check_error``.
        """
        if error:
            self._log.error(f"DAQ reported an error: {error}")
            self._error = error
            return
        if self._error:
            return
        if block.size == 0:
            self._log.warning("Input buffer is empty!")
            return

        with self._lock:
            self._data = np.concatenate([self._data, block.astype(self._data.dtype, copy=False)])[
                -self._cfg.num_points_in_plot :
            ]
            if self._logger.is_open:
                try:
                    self._logger.append_block(block)
                except (LoggerClosedError, OSError, ValueError) as e:
                    self._log.error(f"Failed to log block to {self._logger.path}: {e}")
                    self._error = str(e)
                    return
        self.events.emit(EventType.SAMPLE_BLOCK_READY, block)

    def close(self) -> None:
        self.close_log_file()
        self._error = ""
        if self._task is not None:
            self._daq.close_task(self._task.name)
            self._task = None
            self._log.info("AIRecorder is shut down")

    def save_settings(self, path: Path | str) -> None:
        """Write the persisted settings subset to ``path``."""
        settings = RecorderSettings.model_validate(self._cfg.model_dump())
        dump_yaml(settings.model_dump(mode="json"), Path(path))
        self._log.info(f"Saved settings to {path}")

    def load_settings(self, source: Path | str | Mapping[str, Any] | RecorderSettings) -> int:
        """Apply settings from a file, a mapping or a settings record.

        A metadata sidecar can be passed too; fields that are not settings are
        ignored. Returns the number of fields applied.
        """
        if isinstance(source, RecorderSettings):
            data = source.model_dump()
        elif isinstance(source, Mapping):
            data = dict(source)
        else:
            data = load_yaml(Path(source))
        fields = {}
        for name in RecorderSettings.model_fields:
            if name not in data:
                self._log.warning(f"No field '{name}' found in loaded settings. Skipping!")
                continue
            fields[name] = data[name]
        self.set(**fields)
        if len(fields) == len(RecorderSettings.model_fields):
            self._log.info("All settings updated")
        return len(fields)

    def __enter__(self) -> "AIRecorder":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
