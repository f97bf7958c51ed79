"""Shared constants, error types, profiling records and logging setup."""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


class RelayError(Exception):
    """Base class for all relay errors."""


class ServerAlreadyRunningError(RelayError):
    """Raised when a server is started twice."""

    def __init__(self, message: str = "server already running") -> None:
        super().__init__(message)


class InvalidSlotError(RelayError):
    """Raised for a slot that is not acceptable."""

    def __init__(self, message: str = "invalid slot") -> None:
        super().__init__(message)


class InvalidHashError(RelayError):
    """Raised for a malformed or unexpected hash."""

    def __init__(self, message: str = "invalid hash") -> None:
        super().__init__(message)


class InvalidPubkeyError(RelayError):
    """Raised for a malformed or unexpected public key."""

    def __init__(self, message: str = "invalid pubkey") -> None:
        super().__init__(message)


class InvalidSignatureError(RelayError):
    """Raised for a signature that does not verify."""

    def __init__(self, message: str = "invalid signature") -> None:
        super().__init__(message)


def _env_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


SECONDS_PER_SLOT: int = _env_int("SEC_PER_SLOT", 12)
DURATION_PER_SLOT: timedelta = timedelta(seconds=SECONDS_PER_SLOT)

SLOTS_PER_EPOCH: int = _env_int("SLOTS_PER_EPOCH", 32)
DURATION_PER_EPOCH: timedelta = DURATION_PER_SLOT * SLOTS_PER_EPOCH


def slot_to_epoch(slot: int) -> int:
    """Return the epoch that contains ``slot``."""
    return slot // SLOTS_PER_EPOCH


@dataclass
class HTTPServerTimeouts:
    """Timeouts for the HTTP server; a zero duration means no timeout."""

    read: timedelta = timedelta(0)
    read_header: timedelta = timedelta(0)
    write: timedelta = timedelta(0)
    idle: timedelta = timedelta(0)


@dataclass
class BuilderStatus:
    """How blocks from a builder are processed."""

    is_high_prio: bool = False
    is_blacklisted: bool = False
    is_optimistic: bool = False


@dataclass
class Profile:
    """Per-stage timings, in microseconds, of a block submission."""

    payload_load: int = 0
    decode: int = 0
    prechecks: int = 0
    simulation: int = 0
    redis_update: int = 0
    total: int = 0

    redis_save_payload: int = 0
    redis_update_top_bid: int = 0
    redis_update_floor: int = 0

    is_gzip: bool = False
    content_type: str = ""
    above_floor_bid: bool = False
    simulation_success: bool = False
    was_bid_saved: bool = False
    optimistic: bool = False

    def __str__(self) -> str:
        return ",".join(
            str(v)
            for v in (self.decode, self.prechecks, self.simulation, self.redis_update, self.total)
        )


TRACE = logging.DEBUG - 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def _level_name(levelno: int) -> str:
    if levelno >= logging.CRITICAL:
        return "fatal"
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warning"
    if levelno >= logging.INFO:
        return "info"
    if levelno >= logging.DEBUG:
        return "debug"
    return "trace"


def _extra_fields(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


def _timestamp(record: logging.LogRecord) -> str:
    moment = datetime.fromtimestamp(record.created, timezone.utc).astimezone()
    return moment.isoformat(timespec="seconds")


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = dict(_extra_fields(record))
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        entry["level"] = _level_name(record.levelno)
        entry["msg"] = record.getMessage()
        entry["time"] = _timestamp(record)
        return json.dumps(entry, default=str)


def _text_value(value: object) -> str:
    text = str(value)
    if not text or any(c in text for c in ' ="\t\n'):
        return json.dumps(text)
    return text


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [
            f"time={json.dumps(_timestamp(record))}",
            f"level={_level_name(record.levelno)}",
            f"msg={json.dumps(record.getMessage())}",
        ]
        fields = _extra_fields(record)
        if record.exc_info:
            fields["error"] = self.formatException(record.exc_info)
        parts.extend(f"{k}={_text_value(v)}" for k, v in sorted(fields.items()))
        return " ".join(parts)


def log_setup(json_format: bool, log_level: str) -> logging.Logger:
    """Configure and return the relay logger, writing to standard output.

    Raises ValueError when ``log_level`` is not a known level name.
    """
    level = None
    if log_level:
        level = _LEVELS.get(log_level.lower())
        if level is None:
            raise ValueError(f"Invalid loglevel: {log_level}")

    logger = logging.getLogger("boostrelay")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JSONFormatter() if json_format else _TextFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(level if level is not None else logging.INFO)
    return logger