"""Monitor blanking tasks replayed on every scan-line trigger."""

import logging
from typing import Any

from pydantic import ValidationError

from sitools.bridge import ScanEngine
from sitools.config import BlankerConfig, VDaqBlankerConfig
from sitools.daq.base import AcqSampleMode, DOTask, Edge, SiDaq
from sitools.errors import DaqConnectionError
from sitools.events import EventEmitter, EventType
from sitools.waveform import TimingSpec, Waveform, build_blanking_waveform, build_monitor_waveform


class MonitorBlanker:
    """Retriggerable digital output task driving the monitor and PMT blank lines.

    The waveform is a finite buffer replayed once per edge on the trigger
    line. Timing changes are batched with ``update`` and pushed to the device
    by a single stop/rebuild/start sequence in ``apply``.

    Example:
        blanker = MonitorBlanker(daq, BlankerConfig(trigger_channel="PFI0"))
        blanker.configure()
        blanker.start()
        blanker.update(pulse_duration_1=4, pulse_duration_2=8)
        blanker.close()
    """

    def __init__(self, daq: SiDaq, cfg: BlankerConfig | None = None, *, events: EventEmitter | None = None) -> None:
        self._daq = daq
        self._cfg = cfg.model_copy(deep=True) if cfg is not None else BlankerConfig()
        self._log = logging.getLogger(f"MonitorBlanker[{self._cfg.task_name}]")
        self.events = events if events is not None else EventEmitter()
        self._task: DOTask | None = None
        self._waveform: Waveform | None = None
        self._applying = False

    @property
    def cfg(self) -> BlankerConfig:
        return self._cfg

    @property
    def timing(self) -> TimingSpec:
        return self._cfg.timing

    @property
    def waveform(self) -> Waveform | None:
        return self._waveform

    @property
    def task(self) -> DOTask | None:
        return self._task

    @property
    def is_configured(self) -> bool:
        return self._task is not None

    def build_waveform(self) -> Waveform:
        self._waveform = build_blanking_waveform(
            self._cfg.timing,
            scanner_frequency=self._cfg.scanner_frequency,
            sample_rate=self._cfg.sample_rate,
            with_pmt=self._cfg.pmt_blank_line is not None,
        )
        self._log.info(f"New waveform is of length {len(self._waveform)}")
        return self._waveform

    def _lines(self) -> list[str]:
        lines = [self._cfg.monitor_blank_line]
        if self._cfg.pmt_blank_line is not None:
            lines.append(self._cfg.pmt_blank_line)
        return lines

    def configure(self, trigger_channel: str | None = None, edge: Edge | str | None = None) -> bool:
        """Create the DO task and load the waveform without starting it.

        Args:
            trigger_channel: Start trigger line, e.g. "PFI0". Defaults to the configured one.
            edge: Trigger edge. Defaults to the configured one.

        Returns:
            False if a task is already configured or the device refused it.
        """
        if self._task is not None:
            self._log.error(f"Not connecting to DAQ device '{self._cfg.dev_name}'. Blanker is already connected.")
            return False
        self._set_trigger_cfg(trigger_channel, edge)
        waveform = self.build_waveform()

        try:
            task = self._daq.create_do_task(self._cfg.task_name, self._lines())
        except (DaqConnectionError, ValueError) as e:
            self._log.error(f"Unable to connect to '{self._cfg.dev_name}': {e}")
            return False

        try:
            task.cfg_samp_clk_timing(self._cfg.sample_rate, AcqSampleMode.FINITE, len(waveform))
            task.cfg_dig_edge_start_trig(self._cfg.trigger_source, edge=self._cfg.trigger_edge, retriggerable=True)
            task.write(waveform.data)
        except Exception as e:
            self._log.error(f"Unable to configure blanking task: {e}")
            self._daq.close_task(self._cfg.task_name)
            return False

        self._task = task
        self._log.info(f"Configured blanking on {self._lines()} triggered by {self._cfg.trigger_source}")
        return True

    def start(self) -> bool:
        if self._task is None:
            self._log.warning("No DAQ connected to MonitorBlanker")
            return False
        self._task.start()
        self._log.info("Monitor blanker has started")
        return True

    def stop(self) -> bool:
        if self._task is None:
            self._log.warning("No DAQ connected to MonitorBlanker")
            return False
        self._task.stop()
        return True

    def update(self, **fields: Any) -> None:
        """Validate a batch of timing changes and apply them once.

        Keys are ``TimingSpec`` fields or ``scanner_frequency``. Any invalid
        value rejects the whole batch and the previous values are kept.
        """
        timing_fields = {k: v for k, v in fields.items() if k in TimingSpec.model_fields}
        unknown = fields.keys() - timing_fields.keys() - {"scanner_frequency"}
        if unknown:
            msg = f"Unknown blanker parameters: {sorted(unknown)}"
            raise ValueError(msg)

        try:
            timing = TimingSpec.model_validate({**self._cfg.timing.model_dump(), **timing_fields})
            cfg = BlankerConfig.model_validate(
                {
                    **self._cfg.model_dump(),
                    "timing": timing.model_dump(),
                    "scanner_frequency": fields.get("scanner_frequency", self._cfg.scanner_frequency),
                }
            )
        except ValidationError:
            self._log.exception("Rejected blanker parameters; previous values retained")
            raise

        self._cfg = cfg
        for name, value in fields.items():
            self.events.emit(EventType.FIELD_CHANGED, name, value)
        self.apply()

    def apply(self) -> None:
        """Stop, rebuild the waveform, resize and rewrite the buffer, then restart.

        The buffer of an armed task can not be resized in place, so the task
        is unreserved before the new timing and data are written. Runs
        synchronously; re-entry while an apply is in flight is rejected.
        """
        if self._applying:
            msg = "Blanker is already being reconfigured"
            raise RuntimeError(msg)
        if self._task is None:
            self.build_waveform()
            return

        self._applying = True
        try:
            self._task.stop()
            waveform = self.build_waveform()
            self._task.unreserve()
            self._task.cfg_samp_clk_timing(self._cfg.sample_rate, AcqSampleMode.FINITE, len(waveform))
            self._task.write(waveform.data)
            self._task.start()
        except Exception:
            self._log.exception("Failed to reconfigure blanking task, shutting down")
            self.close()
            raise
        finally:
            self._applying = False

    def rebuild(self, timing: TimingSpec) -> None:
        """Replace the whole timing and push it to the device."""
        self._cfg.timing = TimingSpec.model_validate(timing.model_dump())
        self.events.emit(EventType.FIELD_CHANGED, "timing", self._cfg.timing)
        self.apply()

    def restart(self) -> None:
        """Tear the task down and configure it again from the current settings."""
        self.close()
        if self.configure():
            self.start()

    def _set_trigger_cfg(self, channel: str | None, edge: Edge | str | None) -> None:
        updates: dict[str, Any] = {}
        if channel is not None:
            updates["trigger_channel"] = channel
        if edge is not None:
            updates["trigger_edge"] = Edge(edge)
        if updates:
            self._cfg = BlankerConfig.model_validate({**self._cfg.model_dump(), **updates})

    def set_trigger(self, channel: str | None = None, edge: Edge | str | None = None) -> None:
        """Change the start trigger line and/or edge."""
        self._set_trigger_cfg(channel, edge)
        if self._task is None:
            return
        self._task.stop()
        self._task.cfg_dig_edge_start_trig(self._cfg.trigger_source, edge=self._cfg.trigger_edge, retriggerable=True)
        self._task.start()

    def close(self) -> None:
        if self._task is None:
            return
        self._log.info("Monitor blanker is shutting down")
        task_name = self._task.name
        self._task = None
        self._daq.close_task(task_name)

    def __enter__(self) -> "MonitorBlanker":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class VDaqMonitorBlanker:
    """Single-line blanker driven by the engine's beam-modified line clock.

    Scanner frequency and scan direction are read from the engine when the
    waveform is built.
    """

    def __init__(self, daq: SiDaq, engine: ScanEngine, cfg: VDaqBlankerConfig | None = None) -> None:
        self._daq = daq
        self._engine = engine
        self._cfg = cfg.model_copy(deep=True) if cfg is not None else VDaqBlankerConfig()
        self._log = logging.getLogger(f"VDaqMonitorBlanker[{self._cfg.task_name}]")
        self._waveform: Waveform | None = None
        self._task = daq.create_do_task(self._cfg.task_name, [self._cfg.line])
        self._task.cfg_dig_edge_start_trig(engine.beam_clock_terminal, edge=Edge.RISING, retriggerable=True)
        self.make_waveform()

    @property
    def cfg(self) -> VDaqBlankerConfig:
        return self._cfg

    @property
    def waveform(self) -> Waveform | None:
        return self._waveform

    @property
    def on_duration(self) -> float:
        return self._cfg.on_duration_us

    @on_duration.setter
    def on_duration(self, value: float) -> None:
        if value < 0:
            self._log.warning("Waveform timings must be a positive number (in usec).")
            return
        self._cfg.on_duration_us = value
        running = not self._task.is_task_done()
        if running:
            self._task.stop()
        self.make_waveform()
        if running:
            self._task.start()

    def make_waveform(self) -> Waveform:
        self._waveform = build_monitor_waveform(
            self._cfg.on_duration_us,
            scanner_frequency=self._engine.scanner_frequency,
            sample_rate=self._cfg.sample_rate,
            bidirectional=self._engine.bidirectional,
        )
        self._task.unreserve()
        self._task.cfg_samp_clk_timing(self._cfg.sample_rate, AcqSampleMode.FINITE, len(self._waveform))
        self._task.write(self._waveform.data)
        return self._waveform

    def start(self) -> None:
        self._task.start()
        self._log.info("Monitor blanker has started")

    def stop(self) -> None:
        self._task.stop()

    def close(self) -> None:
        if self._task.name not in self._daq.active_tasks:
            return
        self._log.info("Monitor blanker is shutting down")
        # Arm once so the line is left at the waveform's final (low) state.
        self._task.start()
        self._daq.close_task(self._task.name)
