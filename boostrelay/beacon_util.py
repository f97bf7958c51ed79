"""Low-level HTTP access to beacon nodes and broadcast-mode parsing."""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

import requests
from requests.structures import CaseInsensitiveDict

from boostrelay.common import RelayError

STATE_ID_HEAD = "head"
STATE_ID_GENESIS = "genesis"
STATE_ID_FINALIZED = "finalized"
STATE_ID_JUSTIFIED = "justified"


class BroadcastMode(str, Enum):
    """Validation a beacon node performs before broadcasting a block."""

    GOSSIP = "gossip"
    CONSENSUS = "consensus"
    CONSENSUS_AND_EQUIVOCATION = "consensus_and_equivocation"

    def __str__(self) -> str:
        return self.value


class BeaconHTTPError(RelayError):
    """Raised when a beacon node answers with an error status."""

    def __init__(
        self, message: str = "got an HTTP error response", status_code: int = 0
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidRequestPayloadError(RelayError):
    """Raised for a request payload that cannot be sent."""

    def __init__(self, message: str = "invalid request payload") -> None:
        super().__init__(message)


def parse_broadcast_mode(s: str) -> BroadcastMode:
    """Parse a broadcast mode name, ignoring case.

    Raises ValueError for an unknown name.
    """
    try:
        return BroadcastMode(s.lower())
    except ValueError:
        raise ValueError(f"invalid broadcast mode: {s}") from None


def _error_message(parsed: Any) -> str:
    if parsed is None:
        return ""
    if not isinstance(parsed, dict):
        raise ValueError("error response is not an object")
    code = parsed.get("code")
    if code is not None and (isinstance(code, bool) or not isinstance(code, int)):
        raise ValueError("code is not an integer")
    message = parsed.get("message")
    if message is None:
        return ""
    if not isinstance(message, str):
        raise ValueError("message is not a string")
    return message


def fetch_beacon(
    method: str,
    url: str,
    payload: bytes | None = None,
    headers: Mapping[str, str] | None = None,
    ssz: bool = False,
    timeout: float | None = None,
    session: requests.Session | None = None,
) -> tuple[int, bytes]:
    """Send a request to a beacon node and return its status code and body.

    Raises BeaconHTTPError for a status of 300 or above and RelayError when
    the request cannot be made.
    """
    request_headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
    request_headers["Content-Type"] = "application/octet-stream" if ssz else "application/json"
    for key, value in (headers or {}).items():
        request_headers[key] = value
    request_headers["accept"] = "application/json"

    client: Any = session if session is not None else requests
    try:
        response = client.request(
            method, url, data=payload, headers=request_headers, timeout=timeout
        )
    except (
        requests.exceptions.InvalidURL,
        requests.exceptions.MissingSchema,
        requests.exceptions.InvalidSchema,
    ) as exc:
        raise RelayError(f"invalid request for {url}: {exc}") from exc
    except requests.RequestException as exc:
        raise RelayError(f"client refused for {url}: {exc}") from exc

    body = response.content
    if response.status_code >= 300:
        try:
            message = _error_message(json.loads(body))
        except ValueError as exc:
            text = body.decode("utf-8", "replace")
            raise BeaconHTTPError(
                f"could not unmarshal error response from beacon node for {url} from {text}: {exc}",
                status_code=response.status_code,
            ) from None
        raise BeaconHTTPError(
            f"got an HTTP error response: {message}", status_code=response.status_code
        )
    return response.status_code, body