from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

_STREAMS = ("info", "err", "tx")
_LINE_FORMAT = "%(asctime)s >> %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class RunLog:
    """
    Log streams of one run: <logs_dir>/<name>_<stamp>/{info,err,tx}.out.

    Each stream is a logger with its own file handler. Records still propagate
    to the console logger configured by the CLI.
    """

    def __init__(self, logs_dir: str | Path, name: str, now: Optional[datetime] = None) -> None:
        self.started_at = now or datetime.now()
        self.stamp = self.started_at.strftime("%Y-%m-%d_%H-%M-%S")
        self.dir = Path(logs_dir) / f"{name}_{self.stamp}"
        self._loggers: Dict[str, logging.Logger] = {}
        self._handlers: List[logging.Handler] = []

    def open(self) -> "RunLog":
        self.dir.mkdir(parents=True, exist_ok=True)
        formatter = logging.Formatter(_LINE_FORMAT, datefmt=_DATE_FORMAT)
        for stream in _STREAMS:
            lg = logging.getLogger(f"candy_minter.run.{id(self)}.{stream}")
            lg.setLevel(logging.INFO)
            h = logging.FileHandler(self.dir / f"{stream}.out", mode="w", encoding="utf-8")
            h.setFormatter(formatter)
            lg.addHandler(h)
            self._handlers.append(h)
            self._loggers[stream] = lg
        return self

    def close(self) -> None:
        for stream, lg in self._loggers.items():
            for h in list(lg.handlers):
                lg.removeHandler(h)
        for h in self._handlers:
            h.close()
        self._handlers.clear()
        self._loggers.clear()

    def __enter__(self) -> "RunLog":
        return self.open()

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _get(self, stream: str) -> logging.Logger:
        if stream not in self._loggers:
            raise RuntimeError("RunLog is not open")
        return self._loggers[stream]

    def info(self, msg: str, *args: Any) -> None:
        self._get("info").info(msg, *args)

    def err(self, msg: str, *args: Any) -> None:
        self._get("err").error(msg, *args)

    def tx(self, msg: str, *args: Any) -> None:
        self._get("tx").info(msg, *args)

    @property
    def result_path(self) -> Path:
        return self.dir / f"mint_result_{self.stamp}.json"

    def write_results(self, results: List[Dict[str, Any]]) -> Path:
        path = self.result_path
        with open(path, "w", encoding="utf-8") as f:
            json.dump(results, f, indent=2)
        return path
