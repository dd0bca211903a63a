"""Log camera frame times against a counted frame trigger.

For every acquired camera frame two ``int32`` values are appended: the
elapsed time in milliseconds and the number of trigger edges counted so far.
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

import numpy as np

from sitools.config import FrameTimesConfig
from sitools.daq.base import CICountTask, SiDaq
from sitools.user_functions import timestamped_stem

logger = logging.getLogger(__name__)

FRAME_TIMES_SUFFIX = "_frameTimes.bin"


class FrameTimeLogger:
    def __init__(
        self,
        daq: SiDaq,
        sample_name: str,
        cfg: FrameTimesConfig | None = None,
        *,
        directory: Path | str = ".",
        now: datetime | None = None,
        clock=time.perf_counter,
    ) -> None:
        self._daq = daq
        self._cfg = cfg or FrameTimesConfig()
        self._clock = clock
        self.path = Path(directory) / f"{timestamped_stem(sample_name, now)}{FRAME_TIMES_SUFFIX}"
        self._task: CICountTask | None = None
        self._fid: BinaryIO | None = None
        self.frames_logged = 0

        logger.info(f"Writing frame times to {self.path}")
        self._fid = self.path.open("wb")
        try:
            self._task = daq.create_ci_count_task(self._cfg.task_name, self._cfg.counter_id, self._cfg.input_line)
            self._task.start()
        except Exception:
            logger.exception("Unable to start frame counter, shutting down")
            self.close()
            raise
        self._t0 = self._clock()

    def frame_acquired(self) -> None:
        """Write the time stamp and trigger count for one frame."""
        if self._fid is None or self._task is None:
            msg = "Frame time logger is closed"
            raise RuntimeError(msg)
        elapsed_ms = (self._clock() - self._t0) * 1e3
        record = np.array([int(elapsed_ms), self._task.read_scalar()], dtype=np.int32)
        self._fid.write(record.tobytes())
        self.frames_logged += 1

    def close(self) -> None:
        if self._fid is not None:
            self._fid.close()
            self._fid = None
        if self._task is not None:
            logger.info("Cleaning up DAQ task")
            self._daq.close_task(self._task.name)
            self._task = None

    def __enter__(self) -> "FrameTimeLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def read_frame_times(path: Path | str) -> np.ndarray:
    """Return an (n x 2) int32 array of (elapsed ms, trigger count)."""
    return np.fromfile(Path(path), dtype=np.int32).reshape(-1, 2)
