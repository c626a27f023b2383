"""Logging setup: console and an optional rotating file, with secrets masked.

Everything is driven by the ``logging`` section of config.json. Values of the
environment variables listed under ``redact.patterns`` are replaced in every
formatted line, tracebacks included, and so are bearer tokens.
"""

from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from typing import Iterable, List, Mapping, Optional

MASK = "***"
LINE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_SECRETS = ("BOT_TOKEN", "API_HASH", "OSU_CLIENT_SECRET")

_BEARER = re.compile(r"(Bearer\s+)[\w.~+/-]+=*", re.IGNORECASE)


class MaskingFormatter(logging.Formatter):
    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__(LINE_FORMAT, DATE_FORMAT)
        # Longest first so a secret that contains another is masked whole.
        ordered = sorted({secret for secret in secrets if secret}, key=len, reverse=True)
        self._secrets: Optional[re.Pattern] = None
        if ordered:
            self._secrets = re.compile("|".join(re.escape(secret) for secret in ordered))

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if self._secrets is not None:
            text = self._secrets.sub(MASK, text)
        return _BEARER.sub(r"\g<1>" + MASK, text)


def secret_values(names: Iterable[str], environ: Mapping[str, str] = os.environ) -> List[str]:
    """Values of the named variables; unset or empty ones are skipped."""

    return [environ[name] for name in names if environ.get(name)]


def _level(name: object, default: int) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def _rotating_file(file_cfg: dict, root: str) -> RotatingFileHandler:
    # os.path.join keeps an absolute path as is.
    path = os.path.join(root, file_cfg.get("path", "logs/midnight.log"))
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def build_handlers(config: dict, root: str, secrets: Iterable[str]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        handlers.append(_rotating_file(file_cfg, root))

    formatter = MaskingFormatter(secrets)
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logging(
    config: Optional[dict],
    root: str,
    environ: Mapping[str, str] = os.environ,
) -> bool:
    """Install the configured handlers. Returns False when nothing was installed."""

    config = config or {}
    if not config.get("enabled", True):
        return False

    redact = config.get("redact", {})
    names = redact.get("patterns", DEFAULT_SECRETS) if redact.get("enabled", True) else ()
    handlers = build_handlers(config, root, secret_values(names, environ))
    if not handlers:
        return False

    logging.basicConfig(level=_level(config.get("level", "INFO"), logging.INFO), handlers=handlers)
    logging.getLogger("telethon").setLevel(
        _level(config.get("telethon_level", "WARNING"), logging.WARNING)
    )
    return True
