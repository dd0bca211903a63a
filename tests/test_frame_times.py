"""testing the frame time logger"""

import shutil
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import numpy as np

from sitools.daq.simulated import MockCICountTask, SimulatedDaq
from sitools.frame_times import FrameTimeLogger, read_frame_times


class FrameTimeLoggerTests(unittest.TestCase):
    """tests for FrameTimeLogger"""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.daq = SimulatedDaq("Dev1")

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def test_frames_logged(self):
        times = iter([8.0, 8.015625, 8.0625])
        with FrameTimeLogger(
            self.daq, "mouse1", directory=self.tmp, now=datetime(2024, 1, 2, 3, 4, 5), clock=lambda: next(times)
        ) as frame_logger:
            self.assertEqual(frame_logger.path.name, "20240102_030405__mouse1_frameTimes.bin")
            counter = self.daq.active_tasks["clk_cam_task"]
            counter.count = 1
            frame_logger.frame_acquired()
            counter.count = 3
            frame_logger.frame_acquired()

        self.assertEqual(self.daq.active_tasks, {})
        records = read_frame_times(frame_logger.path)
        self.assertEqual(records.dtype, np.int32)
        np.testing.assert_array_equal(records, [[15, 1], [62, 3]])

    def test_frame_after_close_raises(self):
        frame_logger = FrameTimeLogger(self.daq, "m", directory=self.tmp)
        frame_logger.close()
        with self.assertRaises(RuntimeError):
            frame_logger.frame_acquired()

    def test_counter_start_failure_releases_task(self):
        with patch.object(MockCICountTask, "start", side_effect=RuntimeError("route unavailable")):
            with self.assertRaises(RuntimeError):
                FrameTimeLogger(self.daq, "m", directory=self.tmp)
        self.assertEqual(self.daq.active_tasks, {})
        FrameTimeLogger(self.daq, "m", directory=self.tmp).close()

    def test_counter_failure_closes_file(self):
        self.daq.create_ci_count_task("clk_cam_task", 0, "PFI1")
        with self.assertRaises(ValueError):
            FrameTimeLogger(self.daq, "m", directory=self.tmp)
        self.assertEqual(len(list(self.tmp.glob("*_frameTimes.bin"))), 1)
