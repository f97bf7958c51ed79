# boostrelay

Core pieces of an Ethereum MEV-Boost relay, written in plain Python:

- **`boostrelay.common`**: slot and epoch arithmetic (`slot_to_epoch`), the
  `RelayError` family of errors, `HTTPServerTimeouts`, `BuilderStatus`, the
  per-submission `Profile`, and `log_setup` for text or JSON logging to
  standard output.
- **`boostrelay.utils`**: environment helpers (`get_env`, `get_slice_env`,
  `get_env_str_slice`, `get_env_duration_sec`), `slot_pos`, `make_request`,
  `get_ip_x_forwarded_for`, user-agent parsing
  (`get_mev_boost_version_from_user_agent`), little-endian 256-bit decoding
  (`u256_str_to_int`) and hex parsing for pubkeys and hashes
  (`str_to_pubkey`, `str_to_hash`).
- **`boostrelay.network`**: fork versions, genesis roots and signing domains
  for mainnet, holesky, sepolia, goerli and custom networks
  (`new_eth_network_details`, `compute_domain`).
- **`boostrelay.bidtrace`**: `BidTrace` (with its 236-byte SSZ encoding),
  `BidTraceV2`, `BidTraceV2WithBlobFields`, and the export views
  `BidTraceV2JSON` and `BidTraceV2WithTimestampJSON` with JSON dictionaries
  and CSV rows.
- **`boostrelay.optimistic`**: SSZ encoding and decoding of `Withdrawal`,
  `ExecutionPayloadHeader` and `SubmitBlockRequestV2Optimistic`, including
  the header-only decode (`from_ssz_header_only`).
- **`boostrelay.beacon_util`**: `BroadcastMode`, `parse_broadcast_mode` and
  `fetch_beacon`, the low-level HTTP call to a beacon node.
- **`boostrelay.beacon_instance`** and **`boostrelay.multi_beacon`**: a client
  for one beacon node (`ProdBeaconInstance`) and a client that spreads requests
  over several nodes with fail-over (`MultiBeaconClient`).

## Installation

```sh
pip install .
```

To run the tests:

```sh
pip install ".[test]"
pytest
```

## Quick look

```python
from boostrelay.common import slot_to_epoch
from boostrelay.network import new_eth_network_details
from boostrelay.utils import get_mev_boost_version_from_user_agent

slot_to_epoch(100)                                           # 3
get_mev_boost_version_from_user_agent("mev-boost/v1.0.0 x")  # "v1.0.0"

details = new_eth_network_details("mainnet")
print(details)
```

An unknown network name raises `UnknownNetworkError`. The `custom` network
reads `GENESIS_FORK_VERSION`, `GENESIS_VALIDATORS_ROOT`,
`BELLATRIX_FORK_VERSION`, `CAPELLA_FORK_VERSION` and `DENEB_FORK_VERSION`
from the environment.

## Beacon nodes

```python
from boostrelay.beacon_instance import ProdBeaconInstance
from boostrelay.multi_beacon import MultiBeaconClient

nodes = [ProdBeaconInstance("http://localhost:3500", "http://localhost:3500")]
client = MultiBeaconClient(nodes)
duties = client.get_proposer_duties(10)
```

`MultiBeaconClient` wraps any number of beacon instances:

- `best_sync_status()` asks all nodes at once and returns the status of a
  synced node. It raises `BeaconNodeSyncingError` when no node is synced
  (unless syncing nodes are allowed), and `BeaconNodesUnavailableError` when
  none of them answered.
- `get_proposer_duties(epoch)`, `get_genesis()`, `get_spec()`,
  `get_fork_schedule()`, `get_randao(slot)` and `get_withdrawals(slot)` try
  the node that last answered first.
- `get_state_validators(state_id)` is a heavy request, so it tries the nodes
  in the reverse order.
- `publish_block(block)` sends the block to all nodes at once and returns the
  first success code; a 202 answer counts only when no node does better.
- `subscribe_to_head_events(sink)` and
  `subscribe_to_payload_attributes_events(sink)` start one background thread
  per node that passes every event to `sink`.

`get_withdrawals` raises `WithdrawalsBeforeCapellaError` when a node reports
that Capella has not been reached.

Blocks passed to `publish_block` are any objects that follow the
`SignedProposal` protocol (`version`, `slot()`, `execution_block_hash()`,
`to_json()`, `to_ssz()`); the package does not define beacon block types
of its own.

## Environment

| Variable | Effect |
| --- | --- |
| `SEC_PER_SLOT` | seconds per slot (default 12) |
| `SLOTS_PER_EPOCH` | slots per epoch (default 32) |
| `ALLOW_SYNCING_BEACON_NODE` | accept a syncing beacon node |
| `BROADCAST_MODE` | `gossip`, `consensus` or `consensus_and_equivocation` (default) |
| `USE_V1_PUBLISH_BLOCK_ENDPOINT` | publish blocks through the v1 endpoint |
| `USE_SSZ_ENCODING_PUBLISH_BLOCK` | publish blocks SSZ-encoded instead of as JSON |

## Command line

```sh
boostrelay            # prints the version and the help text
boostrelay version    # prints the version
```

## What this package does not do

It is a library of relay components, not a running relay. There is no
builder or proposer API server, no website, no background housekeeping
service, and no storage: nothing here talks to a database, Redis or
Memcached. The command line offers only the version.