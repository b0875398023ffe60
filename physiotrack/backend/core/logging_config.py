import logging
from logging.handlers import RotatingFileHandler

from core.config import Settings


def configure_logging(cfg: Settings) -> None:
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(cfg.log_level.upper())
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if cfg.log_file:
        file_handler = RotatingFileHandler(cfg.log_file, maxBytes=5_000_000, backupCount=3)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
