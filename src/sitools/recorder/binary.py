"""Flat binary sample files with a YAML sidecar.

The data file has no header: samples are fixed-width signed integers written
sample by sample, with each sample's channels contiguous. The sidecar
``<stem>_meta.yaml`` records the sample type and channel list needed to
reshape the stream into a samples x channels matrix.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import numpy as np

from sitools.config import RecorderSettings, dump_yaml, load_yaml
from sitools.errors import LoggerClosedError

logger = logging.getLogger(__name__)

META_SUFFIX = "_meta.yaml"
FALLBACK_DTYPE = np.int16


class MetadataRecord(RecorderSettings):
    """Recorder settings snapshot stored next to a binary file."""

    fname: str = ""

    def save(self, path: Path) -> None:
        dump_yaml(self.model_dump(mode="json"), path)

    @classmethod
    def load(cls, path: Path) -> "MetadataRecord":
        return cls.model_validate(load_yaml(path))


def sidecar_path(path: Path | str) -> Path:
    path = Path(path)
    return path.with_name(f"{path.stem}{META_SUFFIX}")


class BinaryLogger:
    """Appends sample blocks to a flat binary file.

    Each ``append_block`` call is a direct write to the underlying stream;
    nothing is batched.
    """

    def __init__(self) -> None:
        self._fid: BinaryIO | None = None
        self._path: Path | None = None
        self._dtype: np.dtype = np.dtype(FALLBACK_DTYPE)
        self._n_channels = 0
        self.blocks_written = 0
        self.samples_written = 0

    @property
    def is_open(self) -> bool:
        return self._fid is not None

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    def open(self, path: Path | str, metadata: MetadataRecord) -> Path:
        """Create ``path`` for writing and write the sidecar first.

        Returns:
            The sidecar path.
        """
        if self._fid is not None:
            msg = f"Logger is already writing to {self._path}"
            raise RuntimeError(msg)

        path = Path(path)
        metadata = metadata.model_copy(update={"fname": str(path)})
        if metadata.chan_names and len(metadata.chan_names) != len(metadata.ai_channels):
            logger.warning(
                f"{len(metadata.chan_names)} channel names given for {len(metadata.ai_channels)} channels"
            )

        meta_path = sidecar_path(path)
        metadata.save(meta_path)
        self._fid = path.open("wb")
        self._path = path
        self._dtype = np.dtype(metadata.data_type)
        self._n_channels = len(metadata.ai_channels)
        self.blocks_written = 0
        self.samples_written = 0
        logger.info(f"Opened file {path} for writing")
        return meta_path

    def append_block(self, samples: np.ndarray) -> None:
        """Write a (samples x channels) block."""
        if self._fid is None:
            msg = "Cannot append to a closed binary logger"
            raise LoggerClosedError(msg)
        block = np.asarray(samples)
        if block.ndim == 1:
            block = block.reshape(-1, 1)
        if block.shape[1] != self._n_channels:
            msg = f"Block has {block.shape[1]} channels, expected {self._n_channels}"
            raise ValueError(msg)
        info = np.iinfo(self._dtype)
        if block.size and (block.min() < info.min or block.max() > info.max):
            msg = f"Block values span [{block.min()}, {block.max()}], outside the {self._dtype} range"
            raise ValueError(msg)
        self._fid.write(np.ascontiguousarray(block, dtype=self._dtype).tobytes())
        self.blocks_written += 1
        self.samples_written += block.shape[0]

    def close(self) -> None:
        if self._fid is None:
            return
        self._fid.flush()
        self._fid.close()
        logger.info(f"Closed {self._path} after {self.samples_written} samples")
        self._fid = None

    def __enter__(self) -> "BinaryLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


@dataclass
class RecordingData:
    data: np.ndarray
    metadata: MetadataRecord | None = None

    @property
    def channels_by_samples(self) -> np.ndarray:
        if self.data.ndim == 1:
            return self.data.reshape(1, -1)
        return self.data.T


def read_bin_file(path: Path | str) -> RecordingData:
    """Read a binary file produced by the recorder.

    Without a sidecar the stream is returned flat as int16 with
    ``metadata=None``.
    """
    path = Path(path)
    if not path.exists():
        msg = f"Can not find file {path}"
        raise FileNotFoundError(msg)

    meta_path = sidecar_path(path)
    if not meta_path.exists():
        logger.warning(f"Can not find meta data file at {meta_path}. Returning data as a single vector of 16 bit ints")
        return RecordingData(data=np.fromfile(path, dtype=FALLBACK_DTYPE))

    metadata = MetadataRecord.load(meta_path)
    raw = np.fromfile(path, dtype=np.dtype(metadata.data_type))
    n_channels = len(metadata.ai_channels)
    if raw.size % n_channels:
        logger.warning(f"{path} holds {raw.size} samples, not a multiple of {n_channels} channels; dropping the tail")
        raw = raw[: raw.size - raw.size % n_channels]
    return RecordingData(data=raw.reshape(-1, n_channels), metadata=metadata)
