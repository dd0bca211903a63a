from .ai_recorder import AIRecorder
from .binary import BinaryLogger, MetadataRecord, RecordingData, read_bin_file, sidecar_path

__all__ = [
    "AIRecorder",
    "BinaryLogger",
    "MetadataRecord",
    "RecordingData",
    "read_bin_file",
    "sidecar_path",
]
