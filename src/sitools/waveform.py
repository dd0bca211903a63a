"""Digital blanking waveforms.

Waveforms are built from run lengths expressed in samples. At the default
1 MHz output rate one sample is one microsecond, so the timing fields can be
read directly as microseconds.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 1e6
# The vDAQ waveform trims this many samples off the last "on" pulse.
MONITOR_TAIL_TRIM = 10


class TimingSpec(BaseModel):
    """Run lengths (in samples) of the two-pulse blanking waveform."""

    model_config = ConfigDict(validate_assignment=True)

    initial_delay: int = Field(0, ge=0)
    pulse_duration_1: int = Field(5, ge=0)
    pulse_spacing_1: int = Field(31, ge=0)
    pulse_duration_2: int = Field(10, ge=0)
    pulse_spacing_2: int = Field(31, ge=0)
    end_state: int = Field(1, ge=0, le=1)
    pmt_latency: int = Field(1, ge=0, description="Samples the PMT blank leads and trails each pulse")

    @property
    def runs(self) -> list[tuple[int, int]]:
        """(value, length) pairs in output order, without the terminal sample."""
        return [
            (0, self.initial_delay),
            (1, self.pulse_duration_1),
            (0, self.pulse_spacing_1),
            (1, self.pulse_duration_2),
            (0, self.pulse_spacing_2),
        ]

    @property
    def length(self) -> int:
        return sum(length for _, length in self.runs) + 1


@dataclass(frozen=True, eq=False)
class Waveform:
    blank: np.ndarray
    pmt: np.ndarray | None = None
    truncated: bool = False
    length_mismatch: bool = False
    sample_rate: float = DEFAULT_SAMPLE_RATE
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.blank.setflags(write=False)
        if self.pmt is not None:
            self.pmt.setflags(write=False)

    def __len__(self) -> int:
        return len(self.blank)

    @property
    def num_channels(self) -> int:
        return 1 if self.pmt is None else 2

    @property
    def data(self) -> np.ndarray:
        """Channels x samples array ready to be written to a DO task."""
        if self.pmt is None:
            return self.blank.astype(bool)
        return np.vstack([self.blank, self.pmt]).astype(bool)


def max_samples_per_period(scanner_frequency: float, sample_rate: float = DEFAULT_SAMPLE_RATE) -> int:
    """Number of output samples available between two line triggers."""
    if scanner_frequency <= 0:
        msg = f"Scanner frequency must be positive, got {scanner_frequency}"
        raise ValueError(msg)
    return int(round(sample_rate / scanner_frequency))


def _runs_to_array(runs: list[tuple[int, int]], terminal: int) -> np.ndarray:
    parts = [np.full(max(length, 0), value, dtype=np.uint8) for value, length in runs]
    parts.append(np.array([terminal], dtype=np.uint8))
    return np.concatenate(parts)


def _pmt_runs(spec: TimingSpec) -> list[tuple[int, int]]:
    lead = spec.pmt_latency
    return [
        (1, spec.initial_delay),
        (0, spec.pulse_duration_1 + lead),
        (1, spec.pulse_spacing_1 - lead - 1),
        (0, spec.pulse_duration_2 + lead + 1),
        (1, spec.pulse_spacing_2 - lead),
    ]


def build_blanking_waveform(
    spec: TimingSpec,
    *,
    scanner_frequency: float,
    sample_rate: float = DEFAULT_SAMPLE_RATE,
    with_pmt: bool = True,
) -> Waveform:
    """Build the monitor blanking waveform and, optionally, its PMT shadow.

    The PMT channel is low while the monitor is on, widened by
    ``spec.pmt_latency`` samples on both sides of each pulse. When the shadow
    does not come out the same length as the blank channel (a spacing shorter
    than the latency), it is replaced by the logical inverse of the blank
    channel and ``length_mismatch`` is set.

    If the waveform is longer than one scan period it is truncated to exactly
    ``max_samples_per_period`` and ``truncated`` is set. Playback must finish
    before the next trigger arrives.
    """
    max_points = max_samples_per_period(scanner_frequency, sample_rate)
    warnings: list[str] = []

    blank = _runs_to_array(spec.runs, spec.end_state)
    truncated = len(blank) > max_points
    if truncated:
        msg = f"Waveform is longer than the scan period ({len(blank)} > {max_points}), truncating to {max_points}"
        logger.warning(msg)
        warnings.append(msg)
        blank = blank[:max_points]
    else:
        logger.debug(f"New waveform is of length {len(blank)}")

    pmt = None
    length_mismatch = False
    if with_pmt:
        pmt = _runs_to_array(_pmt_runs(spec), spec.end_state)
        if truncated:
            pmt = pmt[:max_points]
        if len(pmt) != len(blank):
            msg = f"PMT length={len(pmt)} but blank length={len(blank)}. Setting PMT to inverse of blank."
            logger.warning(msg)
            warnings.append(msg)
            pmt = (1 - blank).astype(np.uint8)
            length_mismatch = True

    return Waveform(
        blank=blank,
        pmt=pmt,
        truncated=truncated,
        length_mismatch=length_mismatch,
        sample_rate=sample_rate,
        warnings=tuple(warnings),
    )


def build_monitor_waveform(
    on_duration_us: float,
    *,
    scanner_frequency: float,
    sample_rate: float,
    bidirectional: bool,
) -> Waveform:
    """Build the single-line monitor waveform used with the beam-modified line clock.

    The monitor is switched on once per line for bidirectional scanning and
    twice for unidirectional scanning. The last sample is always low so the
    monitor is never left on between lines.
    """
    if on_duration_us < 0:
        msg = f"Waveform timings must be a positive number (in usec), got {on_duration_us}"
        raise ValueError(msg)

    on_samples = int(round(on_duration_us * 1e-6 * sample_rate))
    period = max_samples_per_period(scanner_frequency, sample_rate)
    off_samples = int(round((period - 2 * on_samples) / 2))
    tail = max(on_samples - MONITOR_TAIL_TRIM, 0)

    if bidirectional:
        runs = [(0, off_samples), (1, tail)]
    else:
        runs = [(0, off_samples), (1, on_samples), (0, off_samples), (1, tail)]

    wave = _runs_to_array(runs, 0)
    logger.debug(f"Monitor waveform: {len(wave)} samples, on={on_samples}, off={off_samples}")
    return Waveform(blank=wave, sample_rate=sample_rate)
