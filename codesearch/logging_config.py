import logging
import sys
from pathlib import Path
from typing import Optional, TextIO


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, stream: Optional[TextIO] = None):
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(str(log_path), encoding='utf-8'))
        except OSError as e:
            print(f"[logging] Cannot open log file {log_path}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )
