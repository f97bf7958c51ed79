"""SSZ encoding of the optimistic v2 block submission and its parts.

The v2 submission puts the bid, the signature and the execution payload
header first, so the header-only decoder can read the bid from the first
944 bytes. The transactions and withdrawals follow and are decoded in full
only when needed.

Header-only layout::

    [000-236) Message    (236 bytes)
    [236-240) offset1    (  4 bytes)
    [240-336) Signature  ( 96 bytes)
    [336-340) offset2    (  4 bytes)
    [340-344) offset3    (  4 bytes)
    [344-944) Header     (600 bytes)
"""

from __future__ import annotations

import binascii
import struct
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from boostrelay.bidtrace import BidTrace
from boostrelay.common import RelayError
from boostrelay.utils import IncorrectLengthError

ADDRESS_LENGTH = 20
ROOT_LENGTH = 32
LOGS_BLOOM_LENGTH = 256
SIGNATURE_LENGTH = 96
MAX_EXTRA_DATA_BYTES = 32

WITHDRAWAL_SSZ_SIZE = 44
MAX_WITHDRAWALS = 16
MAX_TRANSACTIONS = 1073741824
MAX_BYTES_PER_TRANSACTION = 1073741824

HEADER_FIXED_SIZE = 568
REQUEST_FIXED_SIZE = 344

_UINT64_MAX = 2**64 - 1


class SSZError(RelayError, ValueError):
    """Raised when data cannot be SSZ encoded or decoded."""


def _size_error() -> SSZError:
    return SSZError("incorrect size")


def _offset_error() -> SSZError:
    return SSZError("incorrect offset")


def _variable_offset_error() -> SSZError:
    return SSZError(
        "invalid ssz encoding. first variable element offset indexes into fixed value data"
    )


def _list_too_big(name: str, size: int, limit: int) -> SSZError:
    return SSZError(f"{name} (list too big): {size} > {limit}")


def _bytes_too_long(name: str, size: int, limit: int) -> SSZError:
    return SSZError(f"{name} (bytes array does not have the correct length): {size} > {limit}")


def _read_offset(buf: bytes, pos: int) -> int:
    return int.from_bytes(buf[pos : pos + 4], "little")


def _write_offset(offset: int) -> bytes:
    return struct.pack("<I", offset)


def _check_length(name: str, value: bytes, length: int) -> None:
    if len(value) != length:
        raise IncorrectLengthError(f"{name}: incorrect length")


def _parse_uint64(data: Mapping[str, Any], key: str) -> int:
    if key not in data:
        raise ValueError(f"{key} missing")
    value = data[key]
    if not isinstance(value, str) or not value.isdigit():
        raise ValueError(f"{key}: expected a decimal string")
    number = int(value)
    if number > _UINT64_MAX:
        raise ValueError(f"{key}: value out of range")
    return number


@dataclass
class Withdrawal:
    """A validator withdrawal included in an execution payload."""

    index: int = 0
    validator_index: int = 0
    address: bytes = bytes(ADDRESS_LENGTH)
    amount: int = 0

    def __post_init__(self) -> None:
        _check_length("address", self.address, ADDRESS_LENGTH)
        for name in ("index", "validator_index", "amount"):
            if not 0 <= getattr(self, name) <= _UINT64_MAX:
                raise ValueError(f"{name}: value out of range")

    def to_ssz(self) -> bytes:
        """Encode as the fixed 44-byte SSZ container."""
        return (
            struct.pack("<QQ", self.index, self.validator_index)
            + bytes(self.address)
            + struct.pack("<Q", self.amount)
        )

    @classmethod
    def from_ssz(cls, data: bytes) -> Withdrawal:
        """Decode the 44-byte SSZ container."""
        if len(data) != WITHDRAWAL_SSZ_SIZE:
            raise _size_error()
        data = bytes(data)
        index, validator_index = struct.unpack_from("<QQ", data, 0)
        (amount,) = struct.unpack_from("<Q", data, 36)
        return cls(
            index=index,
            validator_index=validator_index,
            address=data[16:36],
            amount=amount,
        )

    def to_dict(self) -> dict[str, str]:
        """Return the JSON representation, numbers as decimal strings."""
        return {
            "index": str(self.index),
            "validator_index": str(self.validator_index),
            "address": "0x" + self.address.hex(),
            "amount": str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Withdrawal:
        """Parse the JSON representation; raises ValueError on bad fields."""
        if "address" not in data:
            raise ValueError("address missing")
        text = data["address"]
        if not isinstance(text, str):
            raise ValueError("address: expected a hex string")
        try:
            address = binascii.unhexlify(text.removeprefix("0x"))
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"address: invalid hex: {exc}") from None
        return cls(
            index=_parse_uint64(data, "index"),
            validator_index=_parse_uint64(data, "validator_index"),
            address=address,
            amount=_parse_uint64(data, "amount"),
        )


@dataclass
class ExecutionPayloadHeader:
    """The execution payload header of the capella fork."""

    parent_hash: bytes = bytes(ROOT_LENGTH)
    fee_recipient: bytes = bytes(ADDRESS_LENGTH)
    state_root: bytes = bytes(ROOT_LENGTH)
    receipts_root: bytes = bytes(ROOT_LENGTH)
    logs_bloom: bytes = bytes(LOGS_BLOOM_LENGTH)
    prev_randao: bytes = bytes(ROOT_LENGTH)
    block_number: int = 0
    gas_limit: int = 0
    gas_used: int = 0
    timestamp: int = 0
    extra_data: bytes = b""
    base_fee_per_gas: bytes = bytes(ROOT_LENGTH)
    block_hash: bytes = bytes(ROOT_LENGTH)
    transactions_root: bytes = bytes(ROOT_LENGTH)
    withdrawals_root: bytes = bytes(ROOT_LENGTH)

    def __post_init__(self) -> None:
        for name, length in (
            ("parent_hash", ROOT_LENGTH),
            ("fee_recipient", ADDRESS_LENGTH),
            ("state_root", ROOT_LENGTH),
            ("receipts_root", ROOT_LENGTH),
            ("logs_bloom", LOGS_BLOOM_LENGTH),
            ("prev_randao", ROOT_LENGTH),
            ("base_fee_per_gas", ROOT_LENGTH),
            ("block_hash", ROOT_LENGTH),
            ("transactions_root", ROOT_LENGTH),
            ("withdrawals_root", ROOT_LENGTH),
        ):
            _check_length(name, getattr(self, name), length)
        for name in ("block_number", "gas_limit", "gas_used", "timestamp"):
            if not 0 <= getattr(self, name) <= _UINT64_MAX:
                raise ValueError(f"{name}: value out of range")

    def size_ssz(self) -> int:
        """Return the encoded size in bytes."""
        return HEADER_FIXED_SIZE + len(self.extra_data)

    def to_ssz(self) -> bytes:
        """Encode as SSZ; raises SSZError when the extra data is too long."""
        if len(self.extra_data) > MAX_EXTRA_DATA_BYTES:
            raise _bytes_too_long(
                "ExecutionPayloadHeader.ExtraData", len(self.extra_data), MAX_EXTRA_DATA_BYTES
            )
        return b"".join(
            (
                self.parent_hash,
                self.fee_recipient,
                self.state_root,
                self.receipts_root,
                self.logs_bloom,
                self.prev_randao,
                struct.pack(
                    "<QQQQ", self.block_number, self.gas_limit, self.gas_used, self.timestamp
                ),
                _write_offset(HEADER_FIXED_SIZE),
                self.base_fee_per_gas,
                self.block_hash,
                self.transactions_root,
                self.withdrawals_root,
                self.extra_data,
            )
        )

    @classmethod
    def from_ssz(cls, data: bytes) -> ExecutionPayloadHeader:
        """Decode SSZ bytes; raises SSZError on malformed input."""
        data = bytes(data)
        size = len(data)
        if size < HEADER_FIXED_SIZE:
            raise _size_error()
        extra_offset = _read_offset(data, 436)
        if extra_offset > size:
            raise _offset_error()
        if extra_offset < HEADER_FIXED_SIZE:
            raise _variable_offset_error()
        extra_data = data[extra_offset:]
        if len(extra_data) > MAX_EXTRA_DATA_BYTES:
            raise _bytes_too_long(
                "ExecutionPayloadHeader.ExtraData", len(extra_data), MAX_EXTRA_DATA_BYTES
            )
        block_number, gas_limit, gas_used, timestamp = struct.unpack_from("<QQQQ", data, 404)
        return cls(
            parent_hash=data[0:32],
            fee_recipient=data[32:52],
            state_root=data[52:84],
            receipts_root=data[84:116],
            logs_bloom=data[116:372],
            prev_randao=data[372:404],
            block_number=block_number,
            gas_limit=gas_limit,
            gas_used=gas_used,
            timestamp=timestamp,
            extra_data=extra_data,
            base_fee_per_gas=data[440:472],
            block_hash=data[472:504],
            transactions_root=data[504:536],
            withdrawals_root=data[536:568],
        )


def _decode_transactions(buf: bytes) -> list[bytes]:
    if not buf:
        return []
    if len(buf) < 4:
        raise _offset_error()
    first = _read_offset(buf, 0)
    if first == 0 or first % 4:
        raise _variable_offset_error()
    count = first // 4
    if count > MAX_TRANSACTIONS:
        raise _list_too_big("SubmitBlockRequestV2Optimistic.Transactions", count, MAX_TRANSACTIONS)
    if first > len(buf):
        raise _offset_error()
    bounds = [_read_offset(buf, 4 * i) for i in range(count)] + [len(buf)]
    transactions = []
    for start, end in zip(bounds, bounds[1:]):
        if start > end or end > len(buf):
            raise _offset_error()
        if end - start > MAX_BYTES_PER_TRANSACTION:
            raise _bytes_too_long(
                "SubmitBlockRequestV2Optimistic.Transactions[ii]",
                end - start,
                MAX_BYTES_PER_TRANSACTION,
            )
        transactions.append(buf[start:end])
    return transactions


def _decode_withdrawals(buf: bytes) -> list[Withdrawal]:
    count, remainder = divmod(len(buf), WITHDRAWAL_SSZ_SIZE)
    if remainder:
        raise SSZError(f"withdrawals: {len(buf)} is not a multiple of {WITHDRAWAL_SSZ_SIZE}")
    if count > MAX_WITHDRAWALS:
        raise _list_too_big("SubmitBlockRequestV2Optimistic.Withdrawals", count, MAX_WITHDRAWALS)
    return [
        Withdrawal.from_ssz(buf[pos : pos + WITHDRAWAL_SSZ_SIZE])
        for pos in range(0, len(buf), WITHDRAWAL_SSZ_SIZE)
    ]


@dataclass
class SubmitBlockRequestV2Optimistic:
    """The v2 SSZ block submission whose bid can be read from its head alone."""

    message: BidTrace = field(default_factory=BidTrace)
    execution_payload_header: ExecutionPayloadHeader = field(
        default_factory=ExecutionPayloadHeader
    )
    signature: bytes = bytes(SIGNATURE_LENGTH)
    transactions: list[bytes] = field(default_factory=list)
    withdrawals: list[Withdrawal] = field(default_factory=list)

    def __post_init__(self) -> None:
        _check_length("signature", self.signature, SIGNATURE_LENGTH)

    def size_ssz(self) -> int:
        """Return the encoded size in bytes."""
        return (
            REQUEST_FIXED_SIZE
            + self.execution_payload_header.size_ssz()
            + sum(4 + len(tx) for tx in self.transactions)
            + len(self.withdrawals) * WITHDRAWAL_SSZ_SIZE
        )

    def to_ssz(self) -> bytes:
        """Encode as SSZ; raises SSZError when a list or field is too large."""
        transactions: Sequence[bytes] = self.transactions
        if len(transactions) > MAX_TRANSACTIONS:
            raise _list_too_big(
                "SubmitBlockRequestV2Optimistic.Transactions", len(transactions), MAX_TRANSACTIONS
            )
        for tx in transactions:
            if len(tx) > MAX_BYTES_PER_TRANSACTION:
                raise _bytes_too_long(
                    "SubmitBlockRequestV2Optimistic.Transactions[ii]",
                    len(tx),
                    MAX_BYTES_PER_TRANSACTION,
                )
        if len(self.withdrawals) > MAX_WITHDRAWALS:
            raise _list_too_big(
                "SubmitBlockRequestV2Optimistic.Withdrawals", len(self.withdrawals), MAX_WITHDRAWALS
            )

        header = self.execution_payload_header.to_ssz()
        transactions_offset = REQUEST_FIXED_SIZE + len(header)
        withdrawals_offset = transactions_offset + sum(4 + len(tx) for tx in transactions)

        tx_offsets = []
        position = 4 * len(transactions)
        for tx in transactions:
            tx_offsets.append(_write_offset(position))
            position += len(tx)

        return b"".join(
            (
                self.message.to_ssz(),
                _write_offset(REQUEST_FIXED_SIZE),
                bytes(self.signature),
                _write_offset(transactions_offset),
                _write_offset(withdrawals_offset),
                header,
                *tx_offsets,
                *(bytes(tx) for tx in transactions),
                *(w.to_ssz() for w in self.withdrawals),
            )
        )

    @staticmethod
    def _decode_head(data: bytes) -> tuple[BidTrace, bytes, int, int]:
        size = len(data)
        if size < REQUEST_FIXED_SIZE:
            raise _size_error()
        message = BidTrace.from_ssz(data[0:236])
        header_offset = _read_offset(data, 236)
        if header_offset > size:
            raise _offset_error()
        if header_offset < REQUEST_FIXED_SIZE:
            raise _variable_offset_error()
        signature = data[240:336]
        transactions_offset = _read_offset(data, 336)
        if transactions_offset > size or header_offset > transactions_offset:
            raise _offset_error()
        return message, signature, header_offset, transactions_offset

    @classmethod
    def from_ssz(cls, data: bytes) -> SubmitBlockRequestV2Optimistic:
        """Decode the full submission; raises SSZError on malformed input."""
        data = bytes(data)
        message, signature, header_offset, transactions_offset = cls._decode_head(data)
        withdrawals_offset = _read_offset(data, 340)
        if withdrawals_offset > len(data) or transactions_offset > withdrawals_offset:
            raise _offset_error()
        return cls(
            message=message,
            execution_payload_header=ExecutionPayloadHeader.from_ssz(
                data[header_offset:transactions_offset]
            ),
            signature=signature,
            transactions=_decode_transactions(data[transactions_offset:withdrawals_offset]),
            withdrawals=_decode_withdrawals(data[withdrawals_offset:]),
        )

    @classmethod
    def from_ssz_header_only(cls, data: bytes) -> SubmitBlockRequestV2Optimistic:
        """Decode only the bid, signature and payload header.

        The transactions and withdrawals of the result are left empty.
        """
        data = bytes(data)
        message, signature, header_offset, transactions_offset = cls._decode_head(data)
        return cls(
            message=message,
            execution_payload_header=ExecutionPayloadHeader.from_ssz(
                data[header_offset:transactions_offset]
            ),
            signature=signature,
        )