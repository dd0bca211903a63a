"""DAQ interface and drivers.

- SiDaq: abstract device with task factories
- DOTask, AITask, CICountTask: task protocols
- SimulatedDaq: driver without hardware
- NiDaq lives in ``sitools.daq.ni`` so nidaqmx is only imported when used
"""

from .base import (
    AcqSampleMode,
    AITask,
    BlockCallback,
    CICountTask,
    DaqTask,
    DOTask,
    Edge,
    SiDaq,
    TaskStatus,
)
from .simulated import SimulatedDaq

__all__ = [
    "AITask",
    "AcqSampleMode",
    "BlockCallback",
    "CICountTask",
    "DOTask",
    "DaqTask",
    "Edge",
    "SiDaq",
    "SimulatedDaq",
    "TaskStatus",
]
