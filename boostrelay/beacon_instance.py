"""A single beacon node reached over its HTTP API."""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar, runtime_checkable

import requests

from boostrelay.beacon_util import BroadcastMode, fetch_beacon
from boostrelay.common import RelayError
from boostrelay.optimistic import Withdrawal

_UINT64_MAX = 2**64 - 1
_T = TypeVar("_T")


def _uint(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if not isinstance(value, str) or not value.isdigit():
        raise ValueError(f"{key}: expected a decimal string")
    number = int(value)
    if number > _UINT64_MAX:
        raise ValueError(f"{key}: value out of range")
    return number


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected a string")
    return value


def _bool(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key}: expected a boolean")
    return value


def _as_obj(value: Any, key: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key}: expected an object")
    return value


def _obj(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    return _as_obj(data.get(key), key)


def _list(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{key}: expected a list")
    return value


def _withdrawals(data: Mapping[str, Any]) -> list[Withdrawal]:
    return [Withdrawal.from_dict(_as_obj(w, "withdrawals")) for w in _list(data, "withdrawals")]


@dataclass
class HeadEventData:
    """A head event from the beacon node's event stream."""

    slot: int = 0
    block: str = ""
    state: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HeadEventData:
        data = _as_obj(data, "head")
        return cls(slot=_uint(data, "slot"), block=_str(data, "block"), state=_str(data, "state"))


@dataclass
class PayloadAttributes:
    """Attributes the next payload must be built with."""

    timestamp: int = 0
    prev_randao: str = ""
    suggested_fee_recipient: str = ""
    withdrawals: list[Withdrawal] = field(default_factory=list)
    parent_beacon_block_root: str = ""


@dataclass
class PayloadAttributesEventData:
    """Body of a payload_attributes event."""

    proposer_index: int = 0
    proposal_slot: int = 0
    parent_block_number: int = 0
    parent_block_root: str = ""
    parent_block_hash: str = ""
    payload_attributes: PayloadAttributes = field(default_factory=PayloadAttributes)


@dataclass
class PayloadAttributesEvent:
    """A payload_attributes event from the beacon node's event stream."""

    version: str = ""
    data: PayloadAttributesEventData = field(default_factory=PayloadAttributesEventData)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PayloadAttributesEvent:
        data = _as_obj(data, "event")
        body = _obj(data, "data")
        attrs = _obj(body, "payload_attributes")
        return cls(
            version=_str(data, "version"),
            data=PayloadAttributesEventData(
                proposer_index=_uint(body, "proposer_index"),
                proposal_slot=_uint(body, "proposal_slot"),
                parent_block_number=_uint(body, "parent_block_number"),
                parent_block_root=_str(body, "parent_block_root"),
                parent_block_hash=_str(body, "parent_block_hash"),
                payload_attributes=PayloadAttributes(
                    timestamp=_uint(attrs, "timestamp"),
                    prev_randao=_str(attrs, "prev_randao"),
                    suggested_fee_recipient=_str(attrs, "suggested_fee_recipient"),
                    withdrawals=_withdrawals(attrs),
                    parent_beacon_block_root=_str(attrs, "parent_beacon_block_root"),
                ),
            ),
        )


@dataclass
class ValidatorResponseValidatorData:
    """The validator record of a validator-set entry."""

    pubkey: str = ""
    withdrawal_credentials: str = ""
    effective_balance: str = ""
    slashed: bool = False
    activation_eligibility: int = 0
    activation_epoch: int = 0
    exit_epoch: int = 0
    withdrawable_epoch: int = 0


@dataclass
class ValidatorResponseEntry:
    """One validator of the validator set, with balance in gwei."""

    index: int = 0
    balance: str = ""
    status: str = ""
    validator: ValidatorResponseValidatorData = field(
        default_factory=ValidatorResponseValidatorData
    )


def _validator_entry(data: Mapping[str, Any]) -> ValidatorResponseEntry:
    record = _obj(data, "validator")
    return ValidatorResponseEntry(
        index=_uint(data, "index"),
        balance=_str(data, "balance"),
        status=_str(data, "status"),
        validator=ValidatorResponseValidatorData(
            pubkey=_str(record, "pubkey"),
            withdrawal_credentials=_str(record, "withdrawal_credentials"),
            effective_balance=_str(record, "effective_balance"),
            slashed=_bool(record, "slashed"),
            activation_eligibility=_uint(record, "activation_eligibility_epoch"),
            activation_epoch=_uint(record, "activation_epoch"),
            exit_epoch=_uint(record, "exit_epoch"),
            withdrawable_epoch=_uint(record, "withdrawable_epoch"),
        ),
    )


@dataclass
class GetStateValidatorsResponse:
    """The active and pending validators of a beacon state."""

    execution_optimistic: bool = False
    finalized: bool = False
    data: list[ValidatorResponseEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GetStateValidatorsResponse:
        data = _as_obj(data, "response")
        return cls(
            execution_optimistic=_bool(data, "execution_optimistic"),
            finalized=_bool(data, "finalized"),
            data=[_validator_entry(_as_obj(e, "data")) for e in _list(data, "data")],
        )


@dataclass
class SyncStatusPayloadData:
    """The sync status of a beacon node."""

    head_slot: int = 0
    is_syncing: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SyncStatusPayloadData:
        data = _as_obj(data, "data")
        return cls(head_slot=_uint(data, "head_slot"), is_syncing=_bool(data, "is_syncing"))


@dataclass
class ProposerDutiesResponseData:
    """The proposer assigned to one slot."""

    slot: int = 0
    pubkey: str = ""
    validator_index: int = 0


@dataclass
class ProposerDutiesResponse:
    """Proposer duties for every slot of an epoch."""

    data: list[ProposerDutiesResponseData] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProposerDutiesResponse:
        data = _as_obj(data, "response")
        return cls(
            data=[
                ProposerDutiesResponseData(
                    slot=_uint(d, "slot"),
                    pubkey=_str(d, "pubkey"),
                    validator_index=_uint(d, "validator_index"),
                )
                for d in (_as_obj(e, "data") for e in _list(data, "data"))
            ]
        )


@dataclass
class HeaderMessage:
    """The message of a beacon block header."""

    slot: int = 0
    proposer_index: int = 0
    parent_root: str = ""


@dataclass
class GetHeaderResponse:
    """A beacon block header and its root."""

    root: str = ""
    message: HeaderMessage | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GetHeaderResponse:
        body = _obj(_as_obj(data, "response"), "data")
        header = _obj(body, "header")
        raw_message = header.get("message")
        message = None
        if raw_message is not None:
            msg = _as_obj(raw_message, "message")
            message = HeaderMessage(
                slot=_uint(msg, "slot"),
                proposer_index=_uint(msg, "proposer_index"),
                parent_root=_str(msg, "parent_root"),
            )
        return cls(root=_str(body, "root"), message=message)


@dataclass
class GetGenesisResponse:
    """Genesis information of the chain."""

    genesis_time: int = 0
    genesis_validators_root: str = ""
    genesis_fork_version: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GetGenesisResponse:
        body = _obj(_as_obj(data, "response"), "data")
        return cls(
            genesis_time=_uint(body, "genesis_time"),
            genesis_validators_root=_str(body, "genesis_validators_root"),
            genesis_fork_version=_str(body, "genesis_fork_version"),
        )


@dataclass
class GetSpecResponse:
    """Selected chain specification values."""

    seconds_per_slot: int = 0
    deposit_contract_address: str = ""
    deposit_network_id: str = ""
    domain_aggregate_and_proof: str = ""
    inactivity_penalty_quotient: str = ""
    inactivity_penalty_quotient_altair: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GetSpecResponse:
        data = _as_obj(data, "response")
        return cls(
            seconds_per_slot=_uint(data, "SECONDS_PER_SLOT"),
            deposit_contract_address=_str(data, "DEPOSIT_CONTRACT_ADDRESS"),
            deposit_network_id=_str(data, "DEPOSIT_NETWORK_ID"),
            domain_aggregate_and_proof=_str(data, "DOMAIN_AGGREGATE_AND_PROOF"),
            inactivity_penalty_quotient=_str(data, "INACTIVITY_PENALTY_QUOTIENT"),
            inactivity_penalty_quotient_altair=_str(data, "INACTIVITY_PENALTY_QUOTIENT_ALTAIR"),
        )


@dataclass
class ForkScheduleEntry:
    """One fork of the fork schedule."""

    previous_version: str = ""
    current_version: str = ""
    epoch: int = 0


@dataclass
class GetForkScheduleResponse:
    """The chain's fork schedule."""

    data: list[ForkScheduleEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GetForkScheduleResponse:
        data = _as_obj(data, "response")
        return cls(
            data=[
                ForkScheduleEntry(
                    previous_version=_str(d, "previous_version"),
                    current_version=_str(d, "current_version"),
                    epoch=_uint(d, "epoch"),
                )
                for d in (_as_obj(e, "data") for e in _list(data, "data"))
            ]
        )


@dataclass
class GetRandaoResponse:
    """The RANDAO mix of a state."""

    randao: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GetRandaoResponse:
        body = _obj(_as_obj(data, "response"), "data")
        return cls(randao=_str(body, "randao"))


@dataclass
class GetWithdrawalsResponse:
    """The expected withdrawals of a state."""

    withdrawals: list[Withdrawal] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GetWithdrawalsResponse:
        body = _obj(_as_obj(data, "response"), "data")
        return cls(withdrawals=_withdrawals(body))


@runtime_checkable
class SignedProposal(Protocol):
    """A signed block proposal that can be published to a beacon node."""

    version: str

    def slot(self) -> int:
        """Return the slot of the proposal."""

    def execution_block_hash(self) -> str:
        """Return the hex hash of the execution block."""

    def to_json(self) -> str:
        """Return the proposal encoded as JSON."""

    def to_ssz(self) -> bytes:
        """Return the proposal encoded as SSZ."""


class _FieldLogger(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def _iter_sse_data(response: requests.Response) -> Iterator[str]:
    lines: list[str] = []
    for raw in response.iter_lines():
        line = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
        if not line:
            if lines:
                yield "\n".join(lines)
                lines = []
            continue
        if line.startswith("data:"):
            value = line[5:]
            lines.append(value[1:] if value.startswith(" ") else value)


class ProdBeaconInstance:
    """Client for one beacon node."""

    def __init__(
        self,
        beacon_uri: str,
        beacon_publish_uri: str,
        log: logging.Logger | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.uri = beacon_uri
        self.publish_uri = beacon_publish_uri
        self.log = _FieldLogger(
            log or logging.getLogger("boostrelay"),
            {
                "component": "beaconInstance",
                "beaconURI": beacon_uri,
                "beaconPublishURI": beacon_publish_uri,
            },
        )
        self._session = session if session is not None else requests.Session()

        self.use_v1_publish_block_endpoint = False
        self.use_ssz_encoding_publish_block = False
        if os.environ.get("USE_V1_PUBLISH_BLOCK_ENDPOINT"):
            self.log.warning("env: USE_V1_PUBLISH_BLOCK_ENDPOINT: use the v1 publish block endpoint")
            self.use_v1_publish_block_endpoint = True
        if os.environ.get("USE_SSZ_ENCODING_PUBLISH_BLOCK"):
            self.log.warning(
                "env: USE_SSZ_ENCODING_PUBLISH_BLOCK: using SSZ encoding to publish blocks"
            )
            self.use_ssz_encoding_publish_block = True

    def _get(
        self, url: str, parse: Callable[[Any], _T], timeout: float | None = None
    ) -> _T:
        _, body = fetch_beacon("GET", url, timeout=timeout, session=self._session)
        try:
            return parse(json.loads(body))
        except ValueError as exc:
            text = body.decode("utf-8", "replace")
            raise RelayError(f"could not unmarshal response for {url} from {text}: {exc}") from exc

    def _subscribe(
        self, topic: str, parse: Callable[[Any], _T], sink: Callable[[_T], Any]
    ) -> None:
        url = f"{self.uri}/eth/v1/events?topics={topic}"
        log = _FieldLogger(self.log.logger, {**self.log.extra, "url": url})
        log.info("subscribing to %s events", topic)
        while True:
            try:
                with self._session.get(
                    url, stream=True, headers={"Accept": "text/event-stream"}
                ) as response:
                    response.raise_for_status()
                    for payload in _iter_sse_data(response):
                        try:
                            event = parse(json.loads(payload))
                        except ValueError as exc:
                            log.error("could not unmarshal %s event: %s", topic, exc)
                            continue
                        sink(event)
            except requests.RequestException as exc:
                log.error("failed to subscribe to %s events: %s", topic, exc)
                time.sleep(1)
            self.log.warning("beacon event subscription to %s ended, reconnecting", topic)
            time.sleep(0.5)

    def subscribe_to_head_events(self, sink: Callable[[HeadEventData], Any]) -> None:
        """Pass every head event to ``sink``, reconnecting forever."""
        self._subscribe("head", HeadEventData.from_dict, sink)

    def subscribe_to_payload_attributes_events(
        self, sink: Callable[[PayloadAttributesEvent], Any]
    ) -> None:
        """Pass every payload_attributes event to ``sink``, reconnecting forever."""
        self._subscribe("payload_attributes", PayloadAttributesEvent.from_dict, sink)

    def get_state_validators(self, state_id: str) -> GetStateValidatorsResponse:
        """Return all active and pending validators of a state."""
        url = f"{self.uri}/eth/v1/beacon/states/{state_id}/validators?status=active,pending"
        return self._get(url, GetStateValidatorsResponse.from_dict)

    def sync_status(self) -> SyncStatusPayloadData:
        """Return the node's current sync status."""
        url = f"{self.uri}/eth/v1/node/syncing"
        return self._get(
            url, lambda d: SyncStatusPayloadData.from_dict(_obj(_as_obj(d, "response"), "data")),
            timeout=5.0,
        )

    def current_slot(self) -> int:
        """Return the node's head slot."""
        return self.sync_status().head_slot

    def get_proposer_duties(self, epoch: int) -> ProposerDutiesResponse:
        """Return the proposer duties for every slot of ``epoch``."""
        url = f"{self.uri}/eth/v1/validator/duties/proposer/{epoch}"
        return self._get(url, ProposerDutiesResponse.from_dict)

    def get_header(self) -> GetHeaderResponse:
        """Return the latest block header."""
        return self._get(f"{self.uri}/eth/v1/beacon/headers/head", GetHeaderResponse.from_dict)

    def get_header_for_slot(self, slot: int) -> GetHeaderResponse:
        """Return the block header of ``slot``."""
        return self._get(f"{self.uri}/eth/v1/beacon/headers/{slot}", GetHeaderResponse.from_dict)

    def publish_block(
        self, block: SignedProposal, broadcast_mode: BroadcastMode | str
    ) -> int:
        """Publish a signed block and return the node's status code."""
        if self.use_v1_publish_block_endpoint:
            url = f"{self.publish_uri}/eth/v1/beacon/blocks"
        else:
            mode = BroadcastMode(broadcast_mode).value
            url = f"{self.publish_uri}/eth/v2/beacon/blocks?broadcast_validation={mode}"
        headers = {"Eth-Consensus-Version": str(block.version).lower()}

        try:
            slot = block.slot()
        except (ValueError, RelayError):
            slot = 0

        use_ssz = self.use_ssz_encoding_publish_block
        content_type = "ssz" if use_ssz else "json"
        encode_start = time.monotonic()
        try:
            payload = block.to_ssz() if use_ssz else block.to_json().encode()
        except (ValueError, TypeError, RelayError) as exc:
            raise RelayError(f"could not marshal request: {exc}") from exc
        publish_start = time.monotonic()
        code = 0
        try:
            code, _ = fetch_beacon(
                "POST", url, payload=payload, headers=headers, ssz=use_ssz, session=self._session
            )
        finally:
            self.log.info(
                "finished publish block request",
                extra={
                    "publishContentType": content_type,
                    "slot": slot,
                    "encodeDurationMs": int((publish_start - encode_start) * 1000),
                    "publishDurationMs": int((time.monotonic() - publish_start) * 1000),
                    "payloadBytes": len(payload),
                },
            )
        return code

    def get_genesis(self) -> GetGenesisResponse:
        """Return the genesis information."""
        return self._get(f"{self.uri}/eth/v1/beacon/genesis", GetGenesisResponse.from_dict)

    def get_spec(self) -> GetSpecResponse:
        """Return the chain specification."""
        return self._get(f"{self.uri}/eth/v1/config/spec", GetSpecResponse.from_dict)

    def get_fork_schedule(self) -> GetForkScheduleResponse:
        """Return the fork schedule."""
        return self._get(
            f"{self.uri}/eth/v1/config/fork_schedule", GetForkScheduleResponse.from_dict
        )

    def get_randao(self, slot: int) -> GetRandaoResponse:
        """Return the RANDAO mix of the state at ``slot``."""
        return self._get(
            f"{self.uri}/eth/v1/beacon/states/{slot}/randao", GetRandaoResponse.from_dict
        )

    def get_withdrawals(self, slot: int) -> GetWithdrawalsResponse:
        """Return the expected withdrawals of the state at ``slot``."""
        return self._get(
            f"{self.uri}/eth/v1/beacon/states/{slot}/withdrawals",
            GetWithdrawalsResponse.from_dict,
        )