"""testing monitor blankers"""

import unittest
from unittest.mock import MagicMock

import numpy as np
from pydantic import ValidationError

from sitools.blanker import MonitorBlanker, VDaqMonitorBlanker
from sitools.config import BlankerConfig, VDaqBlankerConfig
from sitools.daq.base import AcqSampleMode, Edge, TaskStatus
from sitools.daq.simulated import SimulatedDaq
from sitools.events import EventType
from sitools.waveform import TimingSpec


class MonitorBlankerTests(unittest.TestCase):
    """tests for MonitorBlanker"""

    def setUp(self):
        self.daq = SimulatedDaq("galvo")
        self.blanker = MonitorBlanker(self.daq, BlankerConfig(dev_name="galvo"))

    def tearDown(self):
        self.blanker.close()

    def test_configure(self):
        self.assertTrue(self.blanker.configure())
        task = self.blanker.task
        self.assertEqual(task.channel_names, ["port0/line1", "port0/line2"])
        self.assertEqual(task.sample_mode, AcqSampleMode.FINITE)
        self.assertEqual(task.samps_per_chan, len(self.blanker.waveform))
        self.assertEqual(task.trigger_source, "/galvo/PFI0")
        self.assertEqual(task.trigger_edge, Edge.FALLING)
        self.assertTrue(task.retriggerable)
        np.testing.assert_array_equal(task.last_write, self.blanker.waveform.data)

    def test_configure_twice_fails(self):
        self.assertTrue(self.blanker.configure())
        self.assertFalse(self.blanker.configure())

    def test_configure_fails_when_task_name_taken(self):
        self.daq.create_do_task("monitorblanker_DO1", ["port0/line0"])
        self.assertFalse(self.blanker.configure())
        self.assertFalse(self.blanker.is_configured)

    def test_start_without_task(self):
        self.assertFalse(self.blanker.start())
        self.assertFalse(self.blanker.stop())

    def test_update_resizes_running_task(self):
        """A longer waveform is written to a running task via stop/unreserve/restart"""
        self.blanker.configure()
        self.blanker.start()
        self.blanker.update(pulse_spacing_1=30, pulse_spacing_2=30)

        task = self.blanker.task
        self.assertEqual(len(self.blanker.waveform), 0 + 5 + 30 + 10 + 30 + 1)
        self.assertFalse(self.blanker.waveform.truncated)
        self.assertEqual(task.samps_per_chan, len(self.blanker.waveform))
        self.assertEqual(task.last_write.shape, (2, len(self.blanker.waveform)))
        self.assertEqual(task.status, TaskStatus.RUNNING)

    def test_update_longer_than_scan_period_truncates(self):
        self.blanker.configure()
        self.blanker.start()
        self.blanker.update(pulse_spacing_1=40, pulse_spacing_2=35)

        task = self.blanker.task
        self.assertTrue(self.blanker.waveform.truncated)
        self.assertEqual(len(self.blanker.waveform), 83)
        self.assertEqual(task.samps_per_chan, 83)
        self.assertEqual(task.status, TaskStatus.RUNNING)

    def test_update_emits_field_changed(self):
        handler = MagicMock()
        self.blanker.events.subscribe(EventType.FIELD_CHANGED, handler)
        self.blanker.update(pulse_duration_1=4)
        handler.assert_called_once_with("pulse_duration_1", 4)
        self.assertEqual(self.blanker.timing.pulse_duration_1, 4)

    def test_invalid_update_keeps_previous_values(self):
        self.blanker.configure()
        before = self.blanker.task.last_write.copy()
        with self.assertRaises(ValidationError):
            self.blanker.update(pulse_duration_1=3, end_state=5)
        self.assertEqual(self.blanker.timing.pulse_duration_1, 5)
        np.testing.assert_array_equal(self.blanker.task.last_write, before)

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValueError):
            self.blanker.update(duty_cycle=0.5)

    def test_update_scanner_frequency_truncates(self):
        self.blanker.configure()
        self.blanker.update(scanner_frequency=40e3)
        self.assertTrue(self.blanker.waveform.truncated)
        self.assertEqual(len(self.blanker.waveform), 25)

    def test_apply_reentry_rejected(self):
        self.blanker.configure()
        self.blanker._applying = True
        with self.assertRaises(RuntimeError):
            self.blanker.apply()
        self.blanker._applying = False

    def test_apply_failure_closes_task(self):
        self.blanker.configure()
        self.blanker.task.write = MagicMock(side_effect=RuntimeError("device lost"))
        with self.assertRaises(RuntimeError):
            self.blanker.apply()
        self.assertFalse(self.blanker.is_configured)
        self.assertEqual(self.daq.active_tasks, {})

    def test_set_trigger(self):
        self.blanker.configure()
        self.blanker.set_trigger("PFI3", "rising")
        self.assertEqual(self.blanker.task.trigger_source, "/galvo/PFI3")
        self.assertEqual(self.blanker.task.trigger_edge, Edge.RISING)

    def test_close_releases_task(self):
        self.blanker.configure()
        task = self.blanker.task
        self.blanker.close()
        self.blanker.close()
        self.assertTrue(task.closed)
        self.assertEqual(self.daq.active_tasks, {})

    def test_configure_with_trigger(self):
        self.assertTrue(self.blanker.configure("PFI5", Edge.RISING))
        self.assertEqual(self.blanker.task.trigger_source, "/galvo/PFI5")
        self.assertEqual(self.blanker.task.trigger_edge, Edge.RISING)

    def test_rebuild(self):
        self.blanker.configure()
        self.blanker.start()
        timing = TimingSpec(
            initial_delay=0, pulse_duration_1=2, pulse_spacing_1=31, pulse_duration_2=10, pulse_spacing_2=31
        )
        self.blanker.rebuild(timing)
        self.assertEqual(self.blanker.task.samps_per_chan, 75)
        self.assertEqual(self.blanker.task.status, TaskStatus.RUNNING)

    def test_restart(self):
        self.blanker.configure()
        self.blanker.restart()
        self.assertTrue(self.blanker.is_configured)
        self.assertEqual(self.blanker.task.status, TaskStatus.RUNNING)

    def test_without_pmt_line(self):
        blanker = MonitorBlanker(SimulatedDaq(), BlankerConfig(pmt_blank_line=None))
        blanker.configure()
        self.assertEqual(blanker.task.channel_names, ["port0/line1"])
        self.assertEqual(blanker.task.last_write.shape, (len(blanker.waveform),))
        blanker.close()


class VDaqMonitorBlankerTests(unittest.TestCase):
    """tests for VDaqMonitorBlanker"""

    def setUp(self):
        self.daq = SimulatedDaq("vDAQ0")
        self.engine = MagicMock()
        self.engine.configure_mock(scanner_frequency=10e3, beam_clock_terminal="/vDAQ0/D1.6", bidirectional=True)
        self.blanker = VDaqMonitorBlanker(self.daq, self.engine, VDaqBlankerConfig(on_duration_us=20))

    def test_task_setup(self):
        task = self.daq.active_tasks["Blanking waveform"]
        self.assertEqual(task.channel_names, ["port1/line7"])
        self.assertEqual(task.trigger_source, "/vDAQ0/D1.6")
        self.assertEqual(task.trigger_edge, Edge.RISING)
        self.assertEqual(len(self.blanker.waveform), 41)

    def test_unidirectional_scan_from_engine(self):
        self.blanker.close()
        self.engine.bidirectional = False
        blanker = VDaqMonitorBlanker(self.daq, self.engine, VDaqBlankerConfig(on_duration_us=20))
        self.assertEqual(len(blanker.waveform), 91)
        blanker.close()

    def test_on_duration_restarts_running_task(self):
        self.blanker.start()
        self.blanker.on_duration = 10
        task = self.daq.active_tasks["Blanking waveform"]
        self.assertEqual(task.status, TaskStatus.RUNNING)
        self.assertEqual(task.samps_per_chan, len(self.blanker.waveform))
        self.assertEqual(self.blanker.cfg.on_duration_us, 10)

    def test_negative_on_duration_ignored(self):
        self.blanker.on_duration = -5
        self.assertEqual(self.blanker.on_duration, 20)

    def test_close(self):
        task = self.daq.active_tasks["Blanking waveform"]
        self.blanker.close()
        self.blanker.close()
        self.assertTrue(task.closed)
        self.assertEqual(self.daq.active_tasks, {})
