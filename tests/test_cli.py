"""testing the command line interface"""

import shutil
import tempfile
import unittest
from pathlib import Path

import numpy as np
from click.testing import CliRunner

from sitools.cli import main
from sitools.config import SitoolsConfig
from sitools.recorder import BinaryLogger, MetadataRecord


class CliTests(unittest.TestCase):
    """tests for the sitools command group"""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.runner = CliRunner()

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def test_waveform(self):
        result = self.runner.invoke(main, ["waveform", "--pulse-duration-1", "2"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("length: 75 samples", result.output)

    def test_waveform_truncated(self):
        result = self.runner.invoke(main, ["waveform", "--scanner-frequency", "40000"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("truncated", result.output)

    def test_read(self):
        path = self.tmp / "rec.bin"
        with BinaryLogger() as bin_logger:
            bin_logger.open(path, MetadataRecord(ai_channels=[0, 1], chan_names=["a", "b"], sample_rate=1000))
            bin_logger.append_block(np.zeros((500, 2), dtype=np.int16))
        result = self.runner.invoke(main, ["read", str(path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("0.500 s", result.output)

    def test_read_missing_file(self):
        result = self.runner.invoke(main, ["read", str(self.tmp / "none.bin")])
        self.assertEqual(result.exit_code, 1)

    def test_init_config(self):
        path = self.tmp / "sitools.yaml"
        result = self.runner.invoke(main, ["init-config", str(path)])
        self.assertEqual(result.exit_code, 0, result.output)
        config = SitoolsConfig.from_yaml(path)
        self.assertIsNotNone(config.blanker)
        self.assertIsNotNone(config.recorder)
