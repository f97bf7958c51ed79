import json

import pytest
import responses

from boostrelay.beacon_instance import (
    GetStateValidatorsResponse,
    HeadEventData,
    PayloadAttributesEvent,
    ProdBeaconInstance,
)
from boostrelay.beacon_util import BeaconHTTPError, BroadcastMode
from boostrelay.common import RelayError

BASE = "http://localhost:3500"
TEST_PUBKEY = (
    "0x93247f2209abcacf57b75a51dafae777f9dd38bc7053d1af526f220a7489a6d3a2753e5f3e8b1cfe39b56f43611df74a"
)

VALIDATORS_BODY = """{
  "execution_optimistic": false,
  "data": [
    {
      "index": "1",
      "balance": "1",
      "status": "active_ongoing",
      "validator": {
        "pubkey": "0x93247f2209abcacf57b75a51dafae777f9dd38bc7053d1af526f220a7489a6d3a2753e5f3e8b1cfe39b56f43611df74a",
        "withdrawal_credentials": "0xcf8e0d4e9587369b2301d0790347320302cc0943d5a1884560367e8208d920f2",
        "effective_balance": "1",
        "slashed": false,
        "activation_eligibility_epoch": "1",
        "activation_epoch": "1",
        "exit_epoch": "1",
        "withdrawable_epoch": "1"
      }
    }
  ]
}"""

FORK_SCHEDULE_BODY = """{
  "data": [
    {"previous_version": "0x00000010", "current_version": "0x00000020", "epoch": "0"},
    {"previous_version": "0x00000020", "current_version": "0x00000030", "epoch": "10"},
    {"previous_version": "0x00000030", "current_version": "0x00000040", "epoch": "20"},
    {"previous_version": "0x00000040", "current_version": "0x00000050", "epoch": "30"}
  ]
}"""


class _FakeProposal:
    version = "Capella"

    def slot(self):
        return 5

    def execution_block_hash(self):
        return "0x" + "ab" * 32

    def to_json(self):
        return '{"message":{}}'

    def to_ssz(self):
        return b"\x01\x02\x03"


class _Stop(Exception):
    pass


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def instance(monkeypatch):
    monkeypatch.delenv("USE_V1_PUBLISH_BLOCK_ENDPOINT", raising=False)
    monkeypatch.delenv("USE_SSZ_ENCODING_PUBLISH_BLOCK", raising=False)
    return ProdBeaconInstance(BASE, BASE)


def test_get_state_validators(mocked, instance):
    mocked.add(responses.GET, f"{BASE}/eth/v1/beacon/states/1/validators", body=VALIDATORS_BODY)
    vals = instance.get_state_validators("1")
    assert len(vals.data) == 1
    assert {e.validator.pubkey for e in vals.data} == {TEST_PUBKEY}
    assert vals.data[0].status == "active_ongoing"
    assert vals.data[0].validator.withdrawable_epoch == 1


def test_get_fork_schedule(mocked, instance):
    mocked.add(responses.GET, f"{BASE}/eth/v1/config/fork_schedule", body=FORK_SCHEDULE_BODY)
    schedule = instance.get_fork_schedule()
    assert len(schedule.data) == 4
    assert schedule.data[3].epoch == 30
    assert schedule.data[0].current_version == "0x00000020"


def test_sync_status_and_current_slot(mocked, instance):
    body = '{"data":{"head_slot":"251114","sync_distance":"0","is_syncing":false,"is_optimistic":false}}'
    mocked.add(responses.GET, f"{BASE}/eth/v1/node/syncing", body=body)
    mocked.add(responses.GET, f"{BASE}/eth/v1/node/syncing", body=body)
    status = instance.sync_status()
    assert status.head_slot == 251114
    assert status.is_syncing is False
    assert instance.current_slot() == 251114


def test_get_proposer_duties(mocked, instance):
    body = json.dumps({"data": [{"slot": "2", "pubkey": TEST_PUBKEY, "validator_index": "7"}]})
    mocked.add(responses.GET, f"{BASE}/eth/v1/validator/duties/proposer/3", body=body)
    duties = instance.get_proposer_duties(3)
    assert [(d.slot, d.pubkey, d.validator_index) for d in duties.data] == [(2, TEST_PUBKEY, 7)]


def test_get_withdrawals(mocked, instance):
    body = json.dumps(
        {"data": {"withdrawals": [{"index": "5", "validator_index": "10", "address": "0x" + "00" * 20, "amount": "15640"}]}}
    )
    mocked.add(responses.GET, f"{BASE}/eth/v1/beacon/states/9/withdrawals", body=body)
    result = instance.get_withdrawals(9)
    assert len(result.withdrawals) == 1
    assert result.withdrawals[0].amount == 15640
    assert result.withdrawals[0].validator_index == 10


def test_undecodable_response_raises(mocked, instance):
    mocked.add(responses.GET, f"{BASE}/eth/v1/beacon/genesis", body="not json")
    with pytest.raises(RelayError) as info:
        instance.get_genesis()
    assert "could not unmarshal response" in str(info.value)


def test_error_status_propagates(mocked, instance):
    mocked.add(
        responses.GET,
        f"{BASE}/eth/v1/beacon/states/1/randao",
        body='{"code":404,"message":"state not found"}',
        status=404,
    )
    with pytest.raises(BeaconHTTPError) as info:
        instance.get_randao(1)
    assert info.value.status_code == 404


def test_publish_block_v2_json(mocked, instance):
    mocked.add(responses.POST, f"{BASE}/eth/v2/beacon/blocks", status=200)
    code = instance.publish_block(_FakeProposal(), BroadcastMode.CONSENSUS_AND_EQUIVOCATION)
    assert code == 200
    sent = mocked.calls[0].request
    assert sent.url == f"{BASE}/eth/v2/beacon/blocks?broadcast_validation=consensus_and_equivocation"
    assert sent.headers["Eth-Consensus-Version"] == "capella"
    assert sent.headers["Content-Type"] == "application/json"
    assert sent.body == b'{"message":{}}'


def test_publish_block_v1_ssz(mocked, monkeypatch):
    monkeypatch.setenv("USE_V1_PUBLISH_BLOCK_ENDPOINT", "1")
    monkeypatch.setenv("USE_SSZ_ENCODING_PUBLISH_BLOCK", "1")
    inst = ProdBeaconInstance(BASE, BASE)
    mocked.add(responses.POST, f"{BASE}/eth/v1/beacon/blocks", status=202)
    code = inst.publish_block(_FakeProposal(), "gossip")
    assert code == 202
    sent = mocked.calls[0].request
    assert sent.url == f"{BASE}/eth/v1/beacon/blocks"
    assert sent.headers["Content-Type"] == "application/octet-stream"
    assert sent.body == b"\x01\x02\x03"


def test_head_event_from_dict():
    data = {
        "slot": "827256",
        "block": "0x56b683afa68170c775f3c9debc18a6a72caea9055584d037333a6fe43c8ceb83",
        "state": "0x419e2965320d69c4213782dae73941de802a4f436408fddd6f68b671b3ff4e55",
        "epoch_transition": False,
    }
    event = HeadEventData.from_dict(data)
    assert event.slot == 827256
    assert event.block == data["block"]
    assert event.state == data["state"]


def test_head_event_rejects_numeric_slot():
    with pytest.raises(ValueError):
        HeadEventData.from_dict({"slot": 5})


def test_payload_attributes_event_from_dict():
    data = {
        "version": "capella",
        "data": {
            "proposer_index": "123",
            "proposal_slot": "10",
            "parent_block_number": "9",
            "parent_block_root": "0xcf8e0d4e9587369b2301d0790347320302cc0943d5a1884560367e8208d920f2",
            "parent_block_hash": "0x9a2fefd2fdb57f74993c7780ea5b9030d2897b615b89f808011ca5aebed54eaf",
            "payload_attributes": {
                "timestamp": "123456",
                "prev_randao": "0xcf8e0d4e9587369b2301d0790347320302cc0943d5a1884560367e8208d920f2",
                "suggested_fee_recipient": "0x0000000000000000000000000000000000000000",
                "withdrawals": [
                    {"index": "5", "validator_index": "10", "address": "0x0000000000000000000000000000000000000000", "amount": "15640"}
                ],
            },
        },
    }
    event = PayloadAttributesEvent.from_dict(data)
    assert event.version == "capella"
    assert event.data.proposal_slot == 10
    assert event.data.parent_block_number == 9
    assert event.data.payload_attributes.timestamp == 123456
    assert [w.index for w in event.data.payload_attributes.withdrawals] == [5]


def test_state_validators_empty_data():
    assert GetStateValidatorsResponse.from_dict({"execution_optimistic": True}).data == []


def test_subscribe_to_head_events_skips_bad_events(mocked, instance):
    body = (
        b"data: not-json\n\n"
        b'data: {"slot":"5","block":"0xab","state":"0xcd"}\n\n'
    )
    mocked.add(
        responses.GET, f"{BASE}/eth/v1/events", body=body, content_type="text/event-stream"
    )
    received = []

    def sink(event):
        received.append(event)
        raise _Stop

    with pytest.raises(_Stop):
        instance.subscribe_to_head_events(sink)
    assert received == [HeadEventData(slot=5, block="0xab", state="0xcd")]
    assert "topics=head" in mocked.calls[0].request.url