"""testing the acquisition state bridge"""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np

from sitools.bridge import AcqState, AcquisitionStateBridge, ai_log_fname
from sitools.config import RecorderConfig
from sitools.daq.simulated import SimulatedDaq
from sitools.errors import AcquisitionError
from sitools.events import EventEmitter, EventType
from sitools.recorder import AIRecorder, read_bin_file


class AcquisitionStateBridgeTests(unittest.TestCase):
    """tests for AcquisitionStateBridge"""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.engine = MagicMock()
        self.engine.configure_mock(
            logging_enabled=True,
            log_file_stem="20240102_030405__mouse1",
            log_file_counter=7,
            log_file_path=str(self.tmp),
        )
        cfg = RecorderConfig(ai_channels=[0, 1], sample_rate=1000, num_points_in_plot=1000, sample_read_size=4)
        self.recorder = AIRecorder(SimulatedDaq(), cfg)
        self.recorder.connect()
        self.events = EventEmitter()
        self.bridge = AcquisitionStateBridge(self.engine, self.recorder, events=self.events)
        self.block = np.array([[1, 2], [3, 4], [5, 6], [7, 8]], dtype=np.int16)

    def tearDown(self):
        self.recorder.close()
        shutil.rmtree(self.tmp)

    def test_fname_format(self):
        self.assertEqual(ai_log_fname(self.engine), self.tmp / "20240102_030405__mouse1_AI_007.bin")

    def test_idle_grab_idle_logs_one_session(self):
        """Only blocks delivered between grab and idle reach the file"""
        self.recorder.task.feed(self.block)
        self.events.emit(EventType.STATE_CHANGED, AcqState.GRAB)
        self.assertTrue(self.recorder.binary_logger.is_open)
        self.recorder.task.feed(self.block)
        self.recorder.task.feed(self.block)
        self.events.emit(EventType.STATE_CHANGED, AcqState.IDLE)
        self.assertFalse(self.recorder.binary_logger.is_open)
        self.recorder.task.feed(self.block)

        self.assertEqual(sorted(p.name for p in self.tmp.glob("*.bin")), ["20240102_030405__mouse1_AI_007.bin"])
        recording = read_bin_file(self.tmp / "20240102_030405__mouse1_AI_007.bin")
        np.testing.assert_array_equal(recording.data, np.vstack([self.block, self.block]))

    def test_grab_then_focus_closes_logger_before_restart(self):
        self.bridge.state_changed("grab")
        self.recorder.task.feed(self.block)
        self.bridge.state_changed("focus")

        self.assertFalse(self.recorder.binary_logger.is_open)
        self.assertEqual(self.recorder.fname, "")
        self.assertFalse(self.recorder.is_task_done())
        self.recorder.task.feed(self.block)
        recording = read_bin_file(ai_log_fname(self.engine))
        self.assertEqual(recording.data.shape, (4, 2))

    def test_grab_while_running_is_ignored(self):
        self.bridge.state_changed(AcqState.GRAB)
        first = self.recorder.binary_logger.path
        self.engine.log_file_counter = 8
        self.bridge.state_changed(AcqState.LOOP)
        self.assertEqual(self.recorder.binary_logger.path, first)

    def test_logging_disabled_records_without_file(self):
        self.engine.logging_enabled = False
        self.bridge.state_changed(AcqState.GRAB)
        self.assertFalse(self.recorder.binary_logger.is_open)
        self.assertFalse(self.recorder.is_task_done())
        self.assertEqual(list(self.tmp.glob("*.bin")), [])

    def test_detach(self):
        self.bridge.detach()
        self.events.emit(EventType.STATE_CHANGED, AcqState.GRAB)
        self.assertTrue(self.recorder.is_task_done())

    def test_driver_error_raised_on_next_state_change(self):
        self.bridge.state_changed(AcqState.GRAB)
        self.recorder.task.feed(error="device disconnected")
        with self.assertRaises(AcquisitionError):
            self.bridge.state_changed(AcqState.IDLE)
        self.assertFalse(self.recorder.is_connected)
        self.assertFalse(self.recorder.binary_logger.is_open)
