"""Helpers invoked from the scan engine's user-function hooks.

The engine object is always passed in explicitly. Functions that need state
across calls (the monitor blanker) keep it in a ``BlankerRegistry`` owned by
the caller.
"""

import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from sitools.blanker import VDaqMonitorBlanker
from sitools.bridge import ScanEngine
from sitools.config import VDaqBlankerConfig
from sitools.daq.base import SiDaq

logger = logging.getLogger(__name__)

STEM_SEPARATOR = "__"
STEM_DATE_FORMAT = "%Y%m%d_%H%M%S"


def timestamped_stem(sample_name: str, now: datetime | None = None) -> str:
    """``YYYYmmdd_HHMMSS__<sample_name>``"""
    now = now or datetime.now()
    return f"{now.strftime(STEM_DATE_FORMAT)}{STEM_SEPARATOR}{sample_name}"


def append_date_and_time_to_fname(engine: Any, save_path: str | Path | None = None, now: datetime | None = None) -> str:
    """Prefix the engine's log file stem with the current date and time.

    Only the part after the last ``__`` is kept as the sample name, so the
    stem is refreshed rather than growing on every Grab or Loop.

    Args:
        engine: Object with writable ``log_file_stem`` and ``log_file_path``.
        save_path: Directory to save into. Ignored (with a warning) if it does not exist.
        now: Time to stamp with, defaults to the current time.

    Returns:
        The new stem.
    """
    if save_path is not None:
        if Path(save_path).is_dir():
            engine.log_file_path = str(save_path)
        else:
            logger.warning(f"Can not find directory {save_path}. Will not set the save path")

    parts = engine.log_file_stem.split(STEM_SEPARATOR)
    if len(parts) > 2:
        logger.warning("You placed a double underscore in the sample name! The file string may now not be what you expect")

    engine.log_file_stem = timestamped_stem(parts[-1], now)
    return engine.log_file_stem


class BlankerRegistry:
    """Holds the blanker created by ``blank_monitor_start`` until it is stopped."""

    def __init__(self) -> None:
        self.blanker: VDaqMonitorBlanker | None = None

    def blank_monitor_start(
        self,
        engine: ScanEngine,
        daq: SiDaq,
        on_duration: float | None = None,
        cfg: VDaqBlankerConfig | None = None,
    ) -> VDaqMonitorBlanker:
        if self.blanker is not None:
            logger.warning("Monitor blanker already running, replacing it")
            self.blank_monitor_stop()
        blanker = VDaqMonitorBlanker(daq, engine, cfg)
        if on_duration is not None:
            blanker.on_duration = on_duration
        blanker.start()
        self.blanker = blanker
        return blanker

    def blank_monitor_stop(self) -> None:
        if self.blanker is None:
            return
        self.blanker.stop()
        self.blanker.close()
        self.blanker = None


class StripeData(Protocol):
    """Most recent frame from the engine's display buffer."""

    channel_numbers: list[int]
    images: list[np.ndarray]


@dataclass
class ChannelMeanTrace:
    """Rolling mean intensity of each imaging channel.

    ``update`` is called once per acquired frame. Channels that are not
    being acquired contribute NaN.
    """

    frame_period: float
    seconds_to_display: float = 5.0
    min_update_interval: float = 0.05
    colors: str = "rgbc"
    max_channels: int = 4
    clock: Any = time.monotonic
    traces: list[deque] = field(init=False)
    last_update: float = field(init=False, default=-math.inf)

    def __post_init__(self) -> None:
        if len(self.colors) != self.max_channels:
            msg = f"colors must be a character array of length {self.max_channels}"
            raise ValueError(msg)
        self.traces = [deque(maxlen=self.num_points) for _ in range(self.max_channels)]

    @property
    def num_points(self) -> int:
        return max(int(round(self.seconds_to_display / self.frame_period)), 1)

    def update(self, stripe: StripeData) -> bool:
        """Add one frame. Returns True if the display is due for a refresh."""
        means = self.frame_means(stripe)
        for trace, mu in zip(self.traces, means, strict=True):
            trace.append(mu)
        now = self.clock()
        if now - self.last_update > self.min_update_interval:
            self.last_update = now
            return True
        return False

    def frame_means(self, stripe: StripeData) -> list[float]:
        means = [math.nan] * self.max_channels
        for channel, image in zip(stripe.channel_numbers, stripe.images, strict=False):
            if 1 <= channel <= self.max_channels:
                means[channel - 1] = float(np.mean(image))
        return means

    def title(self) -> str:
        latest = [trace[-1] if trace else math.nan for trace in self.traces]
        return " ".join(f"CH{i + 1}={mu:0.2f}" for i, mu in enumerate(latest) if not math.isnan(mu))

    def as_array(self) -> np.ndarray:
        """(num_points x max_channels), NaN padded at the start until full."""
        out = np.full((self.num_points, self.max_channels), np.nan)
        for i, trace in enumerate(self.traces):
            if trace:
                out[-len(trace) :, i] = list(trace)
        return out


@dataclass
class UserFunctionEntry:
    event_name: str
    user_fcn_name: str
    arguments: tuple = ()
    enable: bool = False


class UserFunctionInjector:
    """Installs user-function entries into the engine's user function table.

    The engine must expose a mutable ``user_functions_cfg`` list and an
    ``active`` flag.
    """

    def __init__(self, engine: Any, user_functions: list[UserFunctionEntry]) -> None:
        self._engine = engine
        self.user_functions = list(user_functions)

    @property
    def _names(self) -> set[str]:
        return {uf.user_fcn_name for uf in self.user_functions}

    def is_acquiring(self) -> bool:
        return bool(self._engine.active)

    def inject(self) -> None:
        """Replace any entries with the same names; new entries start disabled."""
        self.remove()
        for uf in self.user_functions:
            self._engine.user_functions_cfg.append(
                UserFunctionEntry(uf.event_name, uf.user_fcn_name, tuple(uf.arguments), enable=False)
            )
        logger.info(f"Injected user functions: {sorted(self._names)}")

    def remove(self) -> None:
        self._engine.user_functions_cfg[:] = [
            entry for entry in self._engine.user_functions_cfg if entry.user_fcn_name not in self._names
        ]

    def _toggle(self, state: bool) -> None:
        for entry in self._engine.user_functions_cfg:
            if entry.user_fcn_name in self._names:
                entry.enable = state

    def enable(self) -> None:
        self._toggle(True)

    def disable(self) -> None:
        self._toggle(False)

    def update_arguments(self, user_fcn_name: str, arguments: tuple) -> bool:
        """Re-inject ``user_fcn_name`` with new arguments and enable it.

        Returns False (nothing changed) while the engine is acquiring.
        """
        if self.is_acquiring():
            logger.warning("Can not change user function settings during an acquisition")
            return False
        for uf in self.user_functions:
            if uf.user_fcn_name == user_fcn_name:
                uf.arguments = tuple(arguments)
                break
        else:
            msg = f"Unknown user function '{user_fcn_name}'"
            raise ValueError(msg)
        self.inject()
        self.enable()
        return True
