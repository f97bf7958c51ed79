"""Helpers for environment variables, HTTP requests and hex values."""

from __future__ import annotations

import binascii
import json
import os
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

import requests

from boostrelay.common import SLOTS_PER_EPOCH, RelayError

PUBLIC_KEY_LENGTH = 48
HASH32_LENGTH = 32
U256_LENGTH = 32


class InvalidForkVersionError(RelayError):
    """Raised when a fork version is not four hex-encoded bytes."""

    def __init__(self, message: str = "invalid fork version") -> None:
        super().__init__(message)


class HTTPErrorResponseError(RelayError):
    """Raised when a remote endpoint answers with an error status."""

    def __init__(self, message: str = "got an HTTP error response", response: Any = None) -> None:
        super().__init__(message)
        self.response = response


class IncorrectLengthError(RelayError):
    """Raised when decoded bytes have the wrong length."""

    def __init__(self, message: str = "incorrect length") -> None:
        super().__init__(message)


def slot_pos(slot: int) -> int:
    """Return the slot's 1-based position within its epoch."""
    return slot % SLOTS_PER_EPOCH + 1


def make_request(
    method: str,
    url: str,
    payload: Any = None,
    timeout: float | None = None,
) -> requests.Response:
    """Send ``payload`` as JSON and return the response.

    Raises HTTPErrorResponseError for a status above 299, and TypeError when
    the payload cannot be encoded as JSON.
    """
    body = None if payload is None else json.dumps(payload).encode()
    response = requests.request(
        method,
        url,
        data=body,
        headers={"Content-Type": "application/json"},
        timeout=timeout,
    )
    if response.status_code > 299:
        raise HTTPErrorResponseError(
            f"got an HTTP error response: {response.status_code} / {response.text}",
            response=response,
        )
    return response


def get_env(key: str, default: str) -> str:
    """Return the environment variable, or ``default`` when it is unset."""
    return os.environ.get(key, default)


def get_slice_env(key: str, default: list[str] | None) -> list[str] | None:
    """Return the comma-separated environment variable as a list."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.split(",")


def get_env_str_slice(key: str, default: list[str] | None) -> list[str] | None:
    """Return a list of strings from a comma-separated environment variable."""
    return get_slice_env(key, default)


def get_env_duration_sec(key: str, default_sec: int) -> timedelta:
    """Return the environment variable as a duration in seconds.

    Falls back to ``default_sec`` when the variable is unset or not an integer.
    """
    value = os.environ.get(key)
    if value is not None:
        try:
            return timedelta(seconds=int(value))
        except ValueError:
            pass
    return timedelta(seconds=default_sec)


def get_ip_x_forwarded_for(headers: Mapping[str, str], remote_addr: str) -> str:
    """Return the first X-Forwarded-For address, or the remote address."""
    forwarded = next(
        (v for k, v in headers.items() if k.lower() == "x-forwarded-for"),
        "",
    )
    if forwarded:
        return forwarded.split(",")[0]
    return remote_addr


def get_mev_boost_version_from_user_agent(ua: str) -> str:
    """Return the mev-boost version from a user agent, or "-" if there is none."""
    first = ua.split(" ")[0]
    if first.startswith("mev-boost"):
        parts = first.split("/")
        if len(parts) == 2:
            return parts[1]
    return "-"


def u256_str_to_int(value: bytes) -> int:
    """Decode a 32-byte little-endian unsigned integer."""
    if len(value) != U256_LENGTH:
        raise IncorrectLengthError()
    return int.from_bytes(value, "little")


def _decode_hex(s: str, length: int) -> bytes:
    raw = binascii.unhexlify(s.removeprefix("0x"))
    if len(raw) != length:
        raise IncorrectLengthError()
    return raw


def str_to_pubkey(s: str) -> bytes:
    """Decode a hex BLS public key of 48 bytes."""
    return _decode_hex(s, PUBLIC_KEY_LENGTH)


def str_to_hash(s: str) -> bytes:
    """Decode a hex 32-byte hash."""
    return _decode_hex(s, HASH32_LENGTH)