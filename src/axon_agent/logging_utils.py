"""axon_agent.logging_utils

Process-wide logging setup: terminal + `<log_dir>/axon.log` (append).

Library modules only create loggers; handlers are attached here, once, by
the entry point.
"""

from __future__ import annotations

import logging
from pathlib import Path

_ROOT = logging.getLogger("axon_agent")


def configure_logging(*, log_dir: Path, level: int = logging.INFO) -> None:
    if getattr(_ROOT, "_configured", False):
        return
    try:
        log_path = (Path(log_dir) / "axon.log").resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _ROOT.setLevel(level)
        _ROOT.propagate = False
        fh = logging.FileHandler(str(log_path), mode="a", encoding="utf-8")
        sh = logging.StreamHandler()
        fmt = logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        fh.setFormatter(fmt)
        sh.setFormatter(fmt)
        _ROOT.handlers.clear()
        _ROOT.addHandler(fh)
        _ROOT.addHandler(sh)
    except OSError:
        # Unwritable log dir: keep terminal logging only.
        logging.basicConfig(level=level)
    setattr(_ROOT, "_configured", True)
