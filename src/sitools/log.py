import logging
from logging import FileHandler
from pathlib import Path

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d,%H:%M:%S"


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Install a rich console handler and, optionally, a file handler on the root logger."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG)

    rich_handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=True,
        show_level=True,
        show_path=True,
    )
    rich_handler.setLevel(level)
    root_logger.addHandler(rich_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = FileHandler(log_file, "w")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
        root_logger.addHandler(file_handler)
