"""A client that spreads beacon-node requests over several nodes."""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from boostrelay.beacon_instance import (
    GetForkScheduleResponse,
    GetGenesisResponse,
    GetRandaoResponse,
    GetSpecResponse,
    GetStateValidatorsResponse,
    GetWithdrawalsResponse,
    HeadEventData,
    PayloadAttributesEvent,
    ProposerDutiesResponse,
    SignedProposal,
    SyncStatusPayloadData,
)
from boostrelay.beacon_util import BroadcastMode, parse_broadcast_mode
from boostrelay.common import RelayError

_T = TypeVar("_T")

_CAPELLA_NOT_REACHED = "Withdrawals not enabled before capella"


class BeaconNodeSyncingError(RelayError):
    """Raised when no beacon node is synced."""

    def __init__(self, message: str = "beacon node is syncing or unavailable") -> None:
        super().__init__(message)


class BeaconNodesUnavailableError(RelayError):
    """Raised when every beacon node answered with an error."""

    def __init__(self, message: str = "all beacon nodes responded with error") -> None:
        super().__init__(message)


class WithdrawalsBeforeCapellaError(RelayError):
    """Raised when withdrawals are requested for a slot before capella."""

    def __init__(
        self, message: str = "withdrawals are not supported before capella"
    ) -> None:
        super().__init__(message)


@runtime_checkable
class BeaconInstance(Protocol):
    """What the multi-node client needs from a single beacon node."""

    uri: str
    publish_uri: str

    def sync_status(self) -> SyncStatusPayloadData: ...

    def current_slot(self) -> int: ...

    def subscribe_to_head_events(self, sink: Callable[[HeadEventData], Any]) -> None: ...

    def subscribe_to_payload_attributes_events(
        self, sink: Callable[[PayloadAttributesEvent], Any]
    ) -> None: ...

    def get_state_validators(self, state_id: str) -> GetStateValidatorsResponse: ...

    def get_proposer_duties(self, epoch: int) -> ProposerDutiesResponse: ...

    def publish_block(self, block: SignedProposal, broadcast_mode: BroadcastMode) -> int: ...

    def get_genesis(self) -> GetGenesisResponse: ...

    def get_spec(self) -> GetSpecResponse: ...

    def get_fork_schedule(self) -> GetForkScheduleResponse: ...

    def get_randao(self, slot: int) -> GetRandaoResponse: ...

    def get_withdrawals(self, slot: int) -> GetWithdrawalsResponse: ...


@dataclass
class _PublishResult:
    index: int
    code: int
    error: Exception | None


class MultiBeaconClient:
    """Routes requests to several beacon nodes, preferring the last good one."""

    def __init__(
        self,
        beacon_instances: Sequence[BeaconInstance],
        log: logging.Logger | None = None,
    ) -> None:
        self.log = log or logging.getLogger("boostrelay.beaconclient")
        self.beacon_instances: list[BeaconInstance] = list(beacon_instances)
        self._best_index = 0
        self._index_lock = threading.Lock()

        self.allow_syncing_beacon_node = False
        self.broadcast_mode = BroadcastMode.CONSENSUS_AND_EQUIVOCATION

        if os.environ.get("ALLOW_SYNCING_BEACON_NODE"):
            self.log.warning("env: ALLOW_SYNCING_BEACON_NODE: allow syncing beacon node")
            self.allow_syncing_beacon_node = True

        mode_text = os.environ.get("BROADCAST_MODE", "")
        if mode_text:
            try:
                mode = parse_broadcast_mode(mode_text)
            except ValueError:
                self.log.warning(
                    "env: BROADCAST_MODE: invalid value %s, leaving to default value %s",
                    mode_text,
                    self.broadcast_mode,
                )
            else:
                self.log.info("env: BROADCAST_MODE: setting mode to %s", mode)
                self.broadcast_mode = mode

    @property
    def best_index(self) -> int:
        """Index of the node that answered last, in the order it was asked."""
        with self._index_lock:
            return self._best_index

    def _store_best(self, index: int) -> None:
        with self._index_lock:
            self._best_index = index

    def _by_last_response(self) -> list[BeaconInstance]:
        instances = list(self.beacon_instances)
        index = self.best_index
        if index:
            instances[0], instances[index] = instances[index], instances[0]
        return instances

    def _by_least_used(self) -> list[BeaconInstance]:
        return list(reversed(self._by_last_response()))

    def best_sync_status(self) -> SyncStatusPayloadData:
        """Return the status of the first synced node to answer.

        Raises BeaconNodeSyncingError when none is synced (unless syncing
        nodes are allowed) and BeaconNodesUnavailableError when none answered.
        """
        best: SyncStatusPayloadData | None = None
        found_synced = False

        if self.beacon_instances:
            with ThreadPoolExecutor(max_workers=len(self.beacon_instances)) as pool:
                futures = {
                    pool.submit(instance.sync_status): instance
                    for instance in self.beacon_instances
                }
                for future in as_completed(futures):
                    uri = futures[future].uri
                    try:
                        status = future.result()
                    except Exception as exc:  # any node failure just skips the node
                        self.log.error("failed to get sync status from %s: %s", uri, exc)
                        continue
                    if found_synced:
                        continue
                    if best is None:
                        best = status
                    if not status.is_syncing:
                        best = status
                        found_synced = True

        if not found_synced and not self.allow_syncing_beacon_node:
            raise BeaconNodeSyncingError()
        if best is None:
            raise BeaconNodesUnavailableError()
        return best

    def _spawn(self, target: Callable[..., Any], sink: Callable[..., Any]) -> threading.Thread:
        thread = threading.Thread(target=target, args=(sink,), daemon=True)
        thread.start()
        return thread

    def subscribe_to_head_events(
        self, sink: Callable[[HeadEventData], Any]
    ) -> list[threading.Thread]:
        """Subscribe every node's head events to ``sink``.

        Each head event usually arrives once per node.
        """
        return [self._spawn(i.subscribe_to_head_events, sink) for i in self.beacon_instances]

    def subscribe_to_payload_attributes_events(
        self, sink: Callable[[PayloadAttributesEvent], Any]
    ) -> list[threading.Thread]:
        """Subscribe every node's payload_attributes events to ``sink``."""
        return [
            self._spawn(i.subscribe_to_payload_attributes_events, sink)
            for i in self.beacon_instances
        ]

    def get_state_validators(self, state_id: str) -> GetStateValidatorsResponse:
        """Return the validators, asking the least recently used node first."""
        for i, instance in enumerate(self._by_least_used()):
            try:
                validators = instance.get_state_validators(state_id)
            except Exception as exc:
                self.log.error("failed to fetch validators from %s: %s", instance.uri, exc)
                continue
            self._store_best(i)
            return validators
        raise BeaconNodesUnavailableError()

    def get_proposer_duties(self, epoch: int) -> ProposerDutiesResponse:
        """Return the first successful node's proposer duties for ``epoch``."""
        for i, instance in enumerate(self._by_last_response()):
            try:
                duties = instance.get_proposer_duties(epoch)
            except Exception as exc:
                self.log.error(
                    "failed to get proposer duties for epoch %d from %s: %s",
                    epoch,
                    instance.uri,
                    exc,
                )
                continue
            self._store_best(i)
            return duties
        raise BeaconNodesUnavailableError()

    def publish_block(self, block: SignedProposal) -> int:
        """Publish a block on every node at once and return the first success code.

        A 202 answer means the block was broadcast but failed validation; it
        counts as a success only when no node does better. Raises RelayError
        when every node failed.
        """
        try:
            slot = block.slot()
        except Exception:
            self.log.warning("failed to publish block as block slot is missing")
            raise
        try:
            block_hash = block.execution_block_hash()
        except Exception:
            self.log.warning("failed to publish block as block hash is missing")
            raise

        instances = self._by_last_response()
        results: queue.Queue[_PublishResult] = queue.Queue()

        def publish(index: int, instance: BeaconInstance) -> None:
            try:
                code = instance.publish_block(block, self.broadcast_mode)
            except Exception as exc:
                results.put(_PublishResult(index, getattr(exc, "status_code", 0), exc))
            else:
                results.put(_PublishResult(index, code, None))

        for i, instance in enumerate(instances):
            self.log.debug("publishing block %s (slot %d) to %s", block_hash, slot, instance.publish_uri)
            threading.Thread(target=publish, args=(i, instance), daemon=True).start()

        last_failure = _PublishResult(0, 0, None)
        for _ in instances:
            result = results.get()
            uri = instances[result.index].publish_uri
            if result.error is not None:
                self.log.warning(
                    "failed to publish block on %s (status %d): %s", uri, result.code, result.error
                )
                last_failure = result
                continue
            if result.code == 202:
                self.log.warning(
                    "CL client %s failed block integration, but block was successfully broadcast",
                    uri,
                )
                last_failure = result
                continue
            self._store_best(result.index)
            self.log.info("published block %s on %s (status %d)", block_hash, uri, result.code)
            return result.code

        if last_failure.error is None:
            return last_failure.code
        self.log.error("failed to publish block on any CL node")
        raise RelayError(f"last error: {last_failure.error}") from last_failure.error

    def _first_success(
        self, what: str, call: Callable[[BeaconInstance], _T], remember: bool = True
    ) -> _T:
        last_error: Exception | None = None
        for i, instance in enumerate(self._by_last_response()):
            try:
                result = call(instance)
            except Exception as exc:
                self.log.warning("failed to get %s from %s: %s", what, instance.uri, exc)
                last_error = exc
                continue
            if remember:
                self._store_best(i)
            return result
        self.log.error("failed to get %s on any CL node: %s", what, last_error)
        if last_error is None:
            raise BeaconNodesUnavailableError()
        raise last_error

    def get_genesis(self) -> GetGenesisResponse:
        """Return the genesis info from the first node that answers."""
        return self._first_success("genesis info", lambda i: i.get_genesis())

    def get_spec(self) -> GetSpecResponse:
        """Return the chain spec from the first node that answers."""
        return self._first_success("spec", lambda i: i.get_spec(), remember=False)

    def get_fork_schedule(self) -> GetForkScheduleResponse:
        """Return the fork schedule from the first node that answers."""
        return self._first_success("fork schedule", lambda i: i.get_fork_schedule())

    def get_randao(self, slot: int) -> GetRandaoResponse:
        """Return the RANDAO mix at ``slot`` from the first node that answers."""
        return self._first_success(f"randao for slot {slot}", lambda i: i.get_randao(slot))

    def get_withdrawals(self, slot: int) -> GetWithdrawalsResponse:
        """Return the withdrawals at ``slot`` from the first node that answers.

        Raises WithdrawalsBeforeCapellaError when a node reports that capella
        has not been reached yet.
        """
        last_error: Exception | None = None
        for i, instance in enumerate(self._by_last_response()):
            try:
                result = instance.get_withdrawals(slot)
            except Exception as exc:
                last_error = exc
                if _CAPELLA_NOT_REACHED in str(exc):
                    break
                self.log.warning(
                    "failed to get withdrawals for slot %d from %s: %s", slot, instance.uri, exc
                )
                continue
            self._store_best(i)
            return result

        if last_error is None:
            raise BeaconNodesUnavailableError()
        if _CAPELLA_NOT_REACHED in str(last_error):
            self.log.debug("failed to get withdrawals as capella has not been reached")
            raise WithdrawalsBeforeCapellaError() from last_error
        self.log.warning("failed to get withdrawals for slot %d from any CL node", slot)
        raise last_error