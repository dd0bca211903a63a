"""Configuration models and YAML persistence."""

import logging
from pathlib import Path
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from ruyaml import YAML

from sitools.daq.base import Edge
from sitools.waveform import DEFAULT_SAMPLE_RATE, TimingSpec

_yaml = YAML()

logger = logging.getLogger(__name__)

SampleType = Literal["int8", "int16", "int32", "int64"]


class ConfigError(Exception):
    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        super().__init__("\n".join(errors))


def load_yaml(path: Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        msg = f"Configuration file not found: {path}"
        raise ConfigError(msg)
    with path.open("r") as f:
        data = _yaml.load(f)
    return dict(data or {})


def dump_yaml(data: dict[str, Any], path: Path) -> None:
    with Path(path).open("w") as f:
        _yaml.dump(data, f)


class BlankerConfig(BaseModel):
    """NI-DAQmx monitor/PMT blanker."""

    model_config = ConfigDict(validate_assignment=True)

    dev_name: str = "galvo"
    task_name: str = "monitorblanker_DO1"
    timing: TimingSpec = Field(default_factory=TimingSpec)
    monitor_blank_line: str = "port0/line1"
    pmt_blank_line: str | None = "port0/line2"
    trigger_channel: str = "PFI0"
    trigger_edge: Edge = Edge.FALLING
    scanner_frequency: float = Field(12e3, gt=0, description="Hz, resonant scanner line rate")
    sample_rate: float = Field(DEFAULT_SAMPLE_RATE, gt=0)

    @property
    def trigger_source(self) -> str:
        return f"/{self.dev_name}/{self.trigger_channel}"


class VDaqBlankerConfig(BaseModel):
    """Single-line blanker triggered from the beam-modified line clock."""

    model_config = ConfigDict(validate_assignment=True)

    dev_name: str = "vDAQ0"
    task_name: str = "Blanking waveform"
    monitor_port: int = Field(1, ge=0)
    monitor_line: int = Field(7, ge=0)
    on_duration_us: float = Field(15.0, ge=0)
    sample_rate: float = Field(DEFAULT_SAMPLE_RATE, gt=0)

    @property
    def line(self) -> str:
        return f"port{self.monitor_port}/line{self.monitor_line}"


class RecorderSettings(BaseModel):
    """Analog input recorder settings that can be saved and re-applied."""

    model_config = ConfigDict(validate_assignment=True)

    dev_name: str = "Dev1"
    data_type: SampleType = "int16"
    ai_channels: list[int] = Field(default_factory=lambda: [0, 1, 2, 3])
    voltage_range: float = Field(5.0, gt=0)
    sample_rate: float = Field(1e3, gt=0)
    chan_names: list[str] = Field(default_factory=list)
    y_min: list[float] | None = None
    y_max: list[float] | None = None
    num_points_in_plot: int = Field(5000, gt=0)
    overlay_traces: bool = False

    @field_validator("ai_channels")
    @classmethod
    def channels_must_be_valid(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("at least one AI channel is required")
        if any(ch < 0 for ch in v):
            raise ValueError("AI channel numbers must be non-negative")
        if len(set(v)) != len(v):
            raise ValueError("AI channels must be unique")
        return v

    @model_validator(mode="after")
    def plot_points_cover_one_second(self) -> Self:
        if self.num_points_in_plot < self.sample_rate:
            logger.warning("num_points_in_plot can not be smaller than the sample rate. Setting to the sample rate")
            # Bypass validate_assignment to avoid re-entering this validator.
            self.__dict__["num_points_in_plot"] = int(self.sample_rate)
        return self


class RecorderConfig(RecorderSettings):
    task_name: str = "airecorder"
    sample_read_size: int = Field(250, gt=0, description="Samples per channel per callback")


class FrameTimesConfig(BaseModel):
    dev_name: str = "Dev1"
    task_name: str = "clk_cam_task"
    input_line: str = Field("PFI1", description="Terminal receiving the frame trigger")
    counter_id: int = Field(0, ge=0)


class SitoolsConfig(BaseModel):
    blanker: BlankerConfig | None = None
    vdaq_blanker: VDaqBlankerConfig | None = None
    recorder: RecorderConfig | None = None
    frame_times: FrameTimesConfig | None = None
    config_path: Path | None = Field(default=None, exclude=True)

    @classmethod
    def from_yaml(cls, config_path: Path) -> Self:
        config_path = Path(config_path)
        data = load_yaml(config_path)
        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ConfigError(errors) from e
        config.config_path = config_path
        logger.info(f"Loaded configuration from {config_path}")
        return config

    def save(self) -> None:
        """Save configuration to the current config_path."""
        if self.config_path is None:
            msg = "No config path set. Use save_as() instead."
            raise ValueError(msg)
        self.save_as(self.config_path)

    def save_as(self, config_path: Path) -> None:
        """Save configuration to a new path."""
        config_path = Path(config_path)
        dump_yaml(self.model_dump(mode="json", exclude_none=True), config_path)
        self.config_path = config_path
