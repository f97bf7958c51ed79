"""Bid traces: the builder's bid message and its JSON and CSV views."""

from __future__ import annotations

import binascii
import struct
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from boostrelay.utils import IncorrectLengthError

HASH_LENGTH = 32
PUBKEY_LENGTH = 48
ADDRESS_LENGTH = 20
BID_TRACE_SSZ_SIZE = 236
_UINT64_MAX = 2**64 - 1
_UINT256_MAX = 2**256 - 1

_BYTE_FIELDS = {
    "parent_hash": HASH_LENGTH,
    "block_hash": HASH_LENGTH,
    "builder_pubkey": PUBKEY_LENGTH,
    "proposer_pubkey": PUBKEY_LENGTH,
    "proposer_fee_recipient": ADDRESS_LENGTH,
}


def normalize_pubkey_hex(pk: str) -> str:
    """Return a public key hex string in its canonical lower-case form."""
    return pk.lower()


def _hex(value: bytes) -> str:
    return "0x" + value.hex()


def _decode_fixed(text: Any, length: int, key: str) -> bytes:
    if not isinstance(text, str):
        raise ValueError(f"{key}: expected a hex string")
    try:
        raw = binascii.unhexlify(text.removeprefix("0x"))
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"{key}: invalid hex: {exc}") from None
    if len(raw) != length:
        raise IncorrectLengthError(f"{key}: incorrect length")
    return raw


def _required(data: Mapping[str, Any], key: str) -> Any:
    if key not in data:
        raise ValueError(f"{key} missing")
    return data[key]


def _parse_uint(value: Any, key: str, maximum: int = _UINT64_MAX) -> int:
    if not isinstance(value, str) or not value.isdigit():
        raise ValueError(f"{key}: expected a decimal string")
    number = int(value)
    if number > maximum:
        raise ValueError(f"{key}: value out of range")
    return number


def _optional_uint(data: Mapping[str, Any], key: str) -> int:
    if key not in data:
        return 0
    return _parse_uint(data[key], key)


@dataclass
class BidTrace:
    """The message a builder signs when submitting a block."""

    slot: int = 0
    parent_hash: bytes = bytes(HASH_LENGTH)
    block_hash: bytes = bytes(HASH_LENGTH)
    builder_pubkey: bytes = bytes(PUBKEY_LENGTH)
    proposer_pubkey: bytes = bytes(PUBKEY_LENGTH)
    proposer_fee_recipient: bytes = bytes(ADDRESS_LENGTH)
    gas_limit: int = 0
    gas_used: int = 0
    value: int = 0

    def __post_init__(self) -> None:
        for name, length in _BYTE_FIELDS.items():
            if len(getattr(self, name)) != length:
                raise IncorrectLengthError(f"{name}: incorrect length")
        for name in ("slot", "gas_limit", "gas_used"):
            if not 0 <= getattr(self, name) <= _UINT64_MAX:
                raise ValueError(f"{name}: value out of range")
        if not 0 <= self.value <= _UINT256_MAX:
            raise ValueError("value: value out of range")

    def to_ssz(self) -> bytes:
        """Encode as the fixed 236-byte SSZ container."""
        return b"".join(
            (
                struct.pack("<Q", self.slot),
                self.parent_hash,
                self.block_hash,
                self.builder_pubkey,
                self.proposer_pubkey,
                self.proposer_fee_recipient,
                struct.pack("<QQ", self.gas_limit, self.gas_used),
                self.value.to_bytes(32, "little"),
            )
        )

    @classmethod
    def from_ssz(cls, data: bytes) -> BidTrace:
        """Decode the 236-byte SSZ container; raises ValueError on a wrong size."""
        if len(data) != BID_TRACE_SSZ_SIZE:
            raise ValueError("incorrect size")
        data = bytes(data)
        (slot,) = struct.unpack_from("<Q", data, 0)
        gas_limit, gas_used = struct.unpack_from("<QQ", data, 188)
        return cls(
            slot=slot,
            parent_hash=data[8:40],
            block_hash=data[40:72],
            builder_pubkey=data[72:120],
            proposer_pubkey=data[120:168],
            proposer_fee_recipient=data[168:188],
            gas_limit=gas_limit,
            gas_used=gas_used,
            value=int.from_bytes(data[204:236], "little"),
        )

    def to_dict(self) -> dict[str, str]:
        """Return the JSON representation, numbers as decimal strings."""
        return {
            "slot": str(self.slot),
            "parent_hash": _hex(self.parent_hash),
            "block_hash": _hex(self.block_hash),
            "builder_pubkey": _hex(self.builder_pubkey),
            "proposer_pubkey": _hex(self.proposer_pubkey),
            "proposer_fee_recipient": _hex(self.proposer_fee_recipient),
            "gas_limit": str(self.gas_limit),
            "gas_used": str(self.gas_used),
            "value": str(self.value),
        }

    @classmethod
    def _kwargs_from_dict(cls, data: Mapping[str, Any]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "slot": _parse_uint(_required(data, "slot"), "slot"),
            "gas_limit": _parse_uint(_required(data, "gas_limit"), "gas_limit"),
            "gas_used": _parse_uint(_required(data, "gas_used"), "gas_used"),
            "value": _parse_uint(_required(data, "value"), "value", _UINT256_MAX),
        }
        for name, length in _BYTE_FIELDS.items():
            kwargs[name] = _decode_fixed(_required(data, name), length, name)
        return kwargs

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BidTrace:
        """Parse the JSON representation; raises ValueError on missing or bad fields."""
        return cls(**cls._kwargs_from_dict(data))

    def _json_view(self, **extra: int) -> BidTraceV2JSON:
        return BidTraceV2JSON(
            slot=self.slot,
            parent_hash=_hex(self.parent_hash),
            block_hash=_hex(self.block_hash),
            builder_pubkey=_hex(self.builder_pubkey),
            proposer_pubkey=_hex(self.proposer_pubkey),
            proposer_fee_recipient=_hex(self.proposer_fee_recipient),
            gas_limit=self.gas_limit,
            gas_used=self.gas_used,
            value=str(self.value),
            **extra,
        )


@dataclass
class BidTraceV2(BidTrace):
    """A bid trace with the block number and transaction count."""

    block_number: int = 0
    num_tx: int = 0

    def to_dict(self) -> dict[str, str]:
        return self._json_view(num_tx=self.num_tx, block_number=self.block_number).to_dict()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BidTraceV2:
        kwargs = cls._kwargs_from_dict(data)
        return cls(
            **kwargs,
            num_tx=_optional_uint(data, "num_tx"),
            block_number=_optional_uint(data, "block_number"),
        )


@dataclass
class BidTraceV2WithBlobFields(BidTrace):
    """A bid trace that also carries the blob statistics of the block."""

    block_number: int = 0
    num_tx: int = 0
    num_blobs: int = 0
    blob_gas_used: int = 0
    excess_blob_gas: int = 0

    def to_dict(self) -> dict[str, str]:
        result = self._json_view(num_tx=self.num_tx, block_number=self.block_number).to_dict()
        result["num_blobs"] = str(self.num_blobs)
        result["blob_gas_used"] = str(self.blob_gas_used)
        result["excess_blob_gas"] = str(self.excess_blob_gas)
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BidTraceV2WithBlobFields:
        kwargs = cls._kwargs_from_dict(data)
        return cls(
            **kwargs,
            num_tx=_optional_uint(data, "num_tx"),
            block_number=_optional_uint(data, "block_number"),
            num_blobs=_optional_uint(data, "num_blobs"),
            blob_gas_used=_optional_uint(data, "blob_gas_used"),
            excess_blob_gas=_optional_uint(data, "excess_blob_gas"),
        )


@dataclass
class BidTraceV2JSON:
    """Flat, export-ready view of a bid trace."""

    slot: int = 0
    parent_hash: str = ""
    block_hash: str = ""
    builder_pubkey: str = ""
    proposer_pubkey: str = ""
    proposer_fee_recipient: str = ""
    gas_limit: int = 0
    gas_used: int = 0
    value: str = ""
    num_tx: int = 0
    block_number: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": str(self.slot),
            "parent_hash": self.parent_hash,
            "block_hash": self.block_hash,
            "builder_pubkey": self.builder_pubkey,
            "proposer_pubkey": self.proposer_pubkey,
            "proposer_fee_recipient": self.proposer_fee_recipient,
            "gas_limit": str(self.gas_limit),
            "gas_used": str(self.gas_used),
            "value": self.value,
            "num_tx": str(self.num_tx),
            "block_number": str(self.block_number),
        }

    def csv_header(self) -> list[str]:
        return [f.name for f in fields(BidTraceV2JSON)]

    def to_csv_record(self) -> list[str]:
        return [
            str(self.slot),
            self.parent_hash,
            self.block_hash,
            self.builder_pubkey,
            self.proposer_pubkey,
            self.proposer_fee_recipient,
            str(self.gas_limit),
            str(self.gas_used),
            self.value,
            str(self.num_tx),
            str(self.block_number),
        ]


@dataclass
class BidTraceV2WithTimestampJSON(BidTraceV2JSON):
    """Export view of a bid trace with its receipt time."""

    timestamp: int = 0
    timestamp_ms: int = 0
    optimistic_submission: bool = False

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.timestamp:
            result["timestamp"] = str(self.timestamp)
        if self.timestamp_ms:
            result["timestamp_ms"] = str(self.timestamp_ms)
        result["optimistic_submission"] = self.optimistic_submission
        return result

    def csv_header(self) -> list[str]:
        return [*super().csv_header(), "timestamp", "timestamp_ms", "optimistic_submission"]

    def to_csv_record(self) -> list[str]:
        return [
            *super().to_csv_record(),
            str(self.timestamp),
            str(self.timestamp_ms),
            "true" if self.optimistic_submission else "false",
        ]