import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from sitools.blanker import MonitorBlanker
from sitools.config import (
    BlankerConfig,
    ConfigError,
    FrameTimesConfig,
    RecorderConfig,
    SitoolsConfig,
    VDaqBlankerConfig,
)
from sitools.daq.base import SiDaq
from sitools.daq.simulated import SimulatedDaq
from sitools.errors import DaqConnectionError
from sitools.log import setup_logging
from sitools.recorder import AIRecorder, read_bin_file
from sitools.waveform import TimingSpec, build_blanking_waveform

console = Console()


def _open_daq(dev_name: str, simulated: bool) -> SiDaq:
    if simulated:
        return SimulatedDaq(dev_name)
    from sitools.daq.ni import NiDaq  # noqa: PLC0415

    return NiDaq(dev_name)


def _load_config(config_path: Path | None) -> SitoolsConfig:
    if config_path is None:
        return SitoolsConfig()
    try:
        return SitoolsConfig.from_yaml(config_path)
    except ConfigError as e:
        console.print("[red]Invalid configuration:[/red]")
        for err in e.errors:
            console.print(f"  - {err}")
        sys.exit(1)


def _wait_for_interrupt() -> None:
    try:
        while True:
            time.sleep(0.1)
    except KeyboardInterrupt:
        console.print("[yellow]Stopping...[/yellow]")


@click.group()
@click.option("--log-level", default="INFO", show_default=True, help="console/file log level")
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="also write logs to this file")
def main(log_level: str, log_file: Path | None) -> None:
    """ScanImage companion tools."""
    setup_logging(log_level.upper(), log_file)


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
def read(path: Path) -> None:
    """Summarise a binary file written by the AI recorder."""
    try:
        recording = read_bin_file(path)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    table = Table(title=str(path))
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    if recording.metadata is None:
        table.add_row("metadata", "[red]missing[/red]")
        table.add_row("samples", str(recording.data.size))
    else:
        meta = recording.metadata
        table.add_row("data type", meta.data_type)
        table.add_row("channels", ", ".join(str(ch) for ch in meta.ai_channels))
        table.add_row("names", ", ".join(meta.chan_names) or "-")
        table.add_row("sample rate", f"{meta.sample_rate:g} Hz")
        table.add_row("voltage range", f"+/- {meta.voltage_range:g} V")
        table.add_row("samples", str(recording.data.shape[0]))
        table.add_row("duration", f"{recording.data.shape[0] / meta.sample_rate:.3f} s")
    console.print(table)


@main.command()
@click.option("--initial-delay", default=0, show_default=True)
@click.option("--pulse-duration-1", default=5, show_default=True)
@click.option("--pulse-spacing-1", default=31, show_default=True)
@click.option("--pulse-duration-2", default=10, show_default=True)
@click.option("--pulse-spacing-2", default=31, show_default=True)
@click.option("--end-state", type=click.IntRange(0, 1), default=1, show_default=True)
@click.option("--pmt-latency", default=1, show_default=True)
@click.option("--scanner-frequency", default=12e3, show_default=True, help="Hz")
@click.option("--sample-rate", default=1e6, show_default=True, help="Hz")
def waveform(scanner_frequency: float, sample_rate: float, **timing: int) -> None:
    """Print the blanking waveform for the given timing (in samples)."""
    spec = TimingSpec(**timing)
    wave = build_blanking_waveform(spec, scanner_frequency=scanner_frequency, sample_rate=sample_rate)
    console.print(f"length: {len(wave)} samples ({len(wave) / sample_rate * 1e6:g} us)")
    if wave.truncated:
        console.print("[yellow]truncated to one scan period[/yellow]")
    if wave.length_mismatch:
        console.print("[yellow]PMT channel replaced by the inverse of the blank channel[/yellow]")
    console.print("blank: " + "".join(str(v) for v in wave.blank))
    if wave.pmt is not None:
        console.print("pmt:   " + "".join(str(v) for v in wave.pmt))


@main.command()
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None)
@click.option("--simulated", is_flag=True, help="use the simulated DAQ")
def blank(config_path: Path | None, simulated: bool) -> None:
    """Run the monitor blanker until Ctrl+C."""
    cfg = _load_config(config_path).blanker
    if cfg is None:
        cfg = BlankerConfig()
    try:
        daq = _open_daq(cfg.dev_name, simulated)
    except DaqConnectionError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    blanker = MonitorBlanker(daq, cfg)
    try:
        if not blanker.configure() or not blanker.start():
            sys.exit(1)
        console.print(f"[green]Blanking on {cfg.trigger_source}. Press Ctrl+C to stop.[/green]")
        _wait_for_interrupt()
    finally:
        blanker.close()
        daq.close()


@main.command()
@click.argument("output", type=click.Path(path_type=Path), required=False)
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None)
@click.option("--simulated", is_flag=True, help="use the simulated DAQ")
def record(output: Path | None, config_path: Path | None, simulated: bool) -> None:
    """Record analog input until Ctrl+C, optionally saving to OUTPUT."""
    cfg = _load_config(config_path).recorder
    try:
        daq = _open_daq(cfg.dev_name if cfg else "Dev1", simulated)
    except DaqConnectionError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    recorder = AIRecorder(daq, cfg)
    try:
        if not recorder.connect():
            sys.exit(1)
        if output is not None:
            recorder.fname = str(output)
        recorder.start()
        _wait_for_interrupt()
        recorder.stop()
    finally:
        recorder.close()
        daq.close()


@main.command("init-config")
@click.argument("path", type=click.Path(path_type=Path))
def init_config(path: Path) -> None:
    """Write a configuration file with default settings."""
    config = SitoolsConfig(
        blanker=BlankerConfig(),
        vdaq_blanker=VDaqBlankerConfig(),
        recorder=RecorderConfig(),
        frame_times=FrameTimesConfig(),
    )
    config.save_as(path)
    console.print(f"[green]Wrote {path}[/green]")


if __name__ == "__main__":
    main()
