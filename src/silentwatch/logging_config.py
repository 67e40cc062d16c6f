"""Logging setup for SilentWatch entry points.

``configure_logging()`` leaves existing root handlers alone, so test runners
and embedding applications keep control of the console. A scan still gets
its ``scan.log`` in the artifact directory either way.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SCAN_LOG_FILE = "scan.log"


def _has_file_handler(root: logging.Logger, path: str) -> bool:
    return any(
        isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(path)
        for h in root.handlers
    )


def configure_logging(level: int = logging.INFO, artifact_dir: Optional[str] = None) -> None:
    """Send logs to stderr and, for scans, to ``<artifact_dir>/scan.log``."""
    root = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)

    if not root.handlers:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)
        root.setLevel(level)

    if artifact_dir is None:
        return

    path = os.path.join(artifact_dir, SCAN_LOG_FILE)
    if _has_file_handler(root, path):
        return

    try:
        os.makedirs(artifact_dir, exist_ok=True)
        # One log per run
        fh = logging.FileHandler(path, mode="w")
    except OSError as e:
        root.warning(f"Scan log unavailable in {artifact_dir}: {e}")
        return
    fh.setFormatter(formatter)
    fh.setLevel(level)
    root.addHandler(fh)
