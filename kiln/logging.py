# kiln/logging.py
# -*- coding: utf-8 -*-
"""
kiln logging

Features:
 - Configured from kiln.config (logging section), re-appliable at runtime
 - Console color formatter
 - Rotating file handler
 - JSONL transparency log
 - Module-level configurable log levels (module_levels)
 - Build output streaming helper for stage scripts
 - Handlers are set up on the first logged record, not at import
"""

from __future__ import annotations
import sys
import json
import time
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Dict, Any, Optional, List

from kiln.config import DEFAULTS, get_config
from kiln.errors import ConfigError

_logger = logging.getLogger("kiln.logging")

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(kiln_module)s] %(message)s"

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str = None, datefmt: str = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# JSONL formatter for transparency log
# ----------------------
class JSONLineFormatter(logging.Formatter):
    def format(self, record):
        obj = {
            "timestamp": time.time(),
            "level": record.levelname,
            "module": getattr(record, "kiln_module", record.name),
            "message": record.getMessage(),
        }
        if record.exc_info:
            obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False)

# ----------------------
# Handler filter: per-module levels, default module name
# ----------------------
class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        self.module_levels = {m: getattr(logging, str(lvl).upper(), logging.INFO) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        # records logged straight on a "kiln.*" logger carry no adapter extra
        if not hasattr(record, "kiln_module"):
            record.kiln_module = record.name.split(".", 1)[-1]
        mod = record.kiln_module
        if mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True

# ----------------------
# Config access and the lazy adapter
# ----------------------
def _logging_section() -> Dict[str, Any]:
    try:
        return get_config().merged.get("logging", {})
    except ConfigError as e:
        _logger.warning("logging: using defaults, config not loadable: %s", e)
        return dict(DEFAULTS["logging"])


class KilnAdapter(logging.LoggerAdapter):
    """LoggerAdapter that sets up the kiln handlers on its first record."""

    def log(self, level, msg, *args, **kwargs):
        _instance()
        super().log(level, msg, *args, **kwargs)

# ----------------------
# KilnLogger (singleton)
# ----------------------
class KilnLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger("kiln")
        self._root.setLevel(logging.DEBUG)
        self._handlers: List[logging.Handler] = []
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
        self._root.addFilter(self._count_levels_filter)
        self._apply_config(_logging_section())
        self._inited = True

    def _count_levels_filter(self, record):
        name = record.levelname
        if name in self._metrics:
            self._metrics[name] += 1
        return True

    # ----------------------
    # Configuration
    # ----------------------
    def _apply_config(self, cfg: Dict[str, Any]):
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            module_filter = ModuleLevelFilter(cfg.get("module_levels", {}) or {})
            fmt = cfg.get("format") or DEFAULT_FORMAT
            datefmt = cfg.get("datefmt", "%H:%M:%S")

            # console handler
            ch = logging.StreamHandler(sys.stdout)
            ch.setLevel(getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO))
            ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=bool(cfg.get("color", True)) and sys.stdout.isatty()))
            ch.addFilter(module_filter)
            self._add_handler(ch)

            # rotating file handler
            if cfg.get("file"):
                file_path = Path(cfg["file"]).expanduser()
                try:
                    file_path.parent.mkdir(parents=True, exist_ok=True)
                    fh = logging.handlers.RotatingFileHandler(
                        str(file_path),
                        maxBytes=parse_size(cfg.get("max_size", "10M")) or 10 * 1024 * 1024,
                        backupCount=int(cfg.get("backups", 5)),
                        encoding="utf-8",
                    )
                except OSError:
                    _logger.exception("logging: failed to configure file handler %s", file_path)
                else:
                    fh.setLevel(getattr(logging, str(cfg.get("file_level", "DEBUG")).upper(), logging.DEBUG))
                    fh.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
                    fh.addFilter(module_filter)
                    self._add_handler(fh)

            # jsonl transparency log
            jsonl_cfg = cfg.get("jsonl", {}) or {}
            if jsonl_cfg.get("enabled"):
                path = Path(jsonl_cfg.get("path", "~/.kiln/transparency.jsonl")).expanduser()
                try:
                    path.parent.mkdir(parents=True, exist_ok=True)
                    jh = logging.FileHandler(str(path), encoding="utf-8")
                except OSError:
                    _logger.exception("logging: failed to configure jsonl handler %s", path)
                else:
                    jh.setLevel(getattr(logging, str(jsonl_cfg.get("level", "INFO")).upper(), logging.INFO))
                    jh.setFormatter(JSONLineFormatter())
                    jh.addFilter(module_filter)
                    self._add_handler(jh)

    def _add_handler(self, handler: logging.Handler):
        self._root.addHandler(handler)
        self._handlers.append(handler)

    def reload_config(self):
        """Re-read the logging section from kiln.config and re-apply it."""
        self._apply_config(_logging_section())

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'kiln_module' into records."""
        return KilnAdapter(self._root, {"kiln_module": module_name})

    def stream_build_output(self, module: str, line: str):
        self.get_logger(module).info(line.rstrip("\n"))

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)

# ----------------------
# Helper parse size (public)
# ----------------------
def parse_size(s: Any) -> Optional[int]:
    if s is None:
        return None
    if isinstance(s, int):
        return s
    ss = str(s).strip().upper()
    units = (("KB", 1024), ("K", 1024), ("MB", 1024**2), ("M", 1024**2), ("GB", 1024**3), ("G", 1024**3))
    try:
        for suffix, mul in units:
            if ss.endswith(suffix):
                return int(float(ss[: -len(suffix)]) * mul)
        return int(float(ss))
    except ValueError:
        _logger.debug("logging: parse size failed for %s", s)
        return None

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER: Optional[KilnLogger] = None

def _instance() -> KilnLogger:
    global _GLOBAL_LOGGER
    if _GLOBAL_LOGGER is None:
        _GLOBAL_LOGGER = KilnLogger()
    return _GLOBAL_LOGGER

def get_logger(module: str) -> logging.LoggerAdapter:
    return KilnAdapter(logging.getLogger("kiln"), {"kiln_module": module})

def stream_build_output(module: str, line: str):
    return _instance().stream_build_output(module, line)

def reload_config():
    return _instance().reload_config()

def get_metrics():
    return _instance().get_metrics()
