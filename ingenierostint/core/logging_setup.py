from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILE = "ingenierostint.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# librerías que ensucian el log en DEBUG
_QUIET = ("asyncio",)


def _level_from_str(s: str) -> int:
    s = (s or "INFO").upper().strip()
    return getattr(logging, s, logging.INFO)


def _attach(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def setup_logging(cfg: Any) -> None:
    """
    Logging de proceso: consola + archivo rotativo en `cfg.log_dir`.

    - Atributos faltantes en cfg -> "logs" / "INFO".
    - Llamarlo dos veces no duplica handlers (el supervisor lo llama en cada reinicio).
    - Si el archivo no se puede abrir, sigue solo por consola.
    """
    log_dir = getattr(cfg, "log_dir", None) or "logs"
    log_level = getattr(cfg, "log_level", None) or "INFO"

    # AppConfig es frozen: solo objetos mutables reciben los defaults
    try:
        cfg.log_dir = log_dir
        cfg.log_level = log_level
    except Exception:
        pass

    level = _level_from_str(log_level)
    root = logging.getLogger()
    root.setLevel(level)

    for name in _QUIET:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        _attach(root, logging.StreamHandler(), level)

    try:
        if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
            return
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            str(Path(log_dir) / LOG_FILE),
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUPS,
            encoding="utf-8",
        )
        _attach(root, fh, level)
    except Exception:
        root.exception("Log file unavailable in %s; console only", log_dir)
