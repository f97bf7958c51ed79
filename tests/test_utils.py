import json
from datetime import timedelta

import pytest
import responses

from boostrelay.common import SLOTS_PER_EPOCH
from boostrelay.utils import (
    HTTPErrorResponseError,
    IncorrectLengthError,
    get_env,
    get_env_duration_sec,
    get_env_str_slice,
    get_ip_x_forwarded_for,
    get_mev_boost_version_from_user_agent,
    get_slice_env,
    make_request,
    slot_pos,
    str_to_hash,
    str_to_pubkey,
    u256_str_to_int,
)

TEST_PUBKEY = "0x93247f2209abcacf57b75a51dafae777f9dd38bc7053d1af526f220a7489a6d3a2753e5f3e8b1cfe39b56f43611df74a"
TEST_HASH = "0xcf8e0d4e9587369b2301d0790347320302cc0943d5a1884560367e8208d920f2"


def test_make_request_unencodable_payload():
    with pytest.raises(TypeError):
        make_request("GET", "", object())


def test_make_request_error_status():
    url = "http://localhost:9999/fail"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, url, body="boom", status=500)
        with pytest.raises(HTTPErrorResponseError) as excinfo:
            make_request("GET", url)
    assert "500 / boom" in str(excinfo.value)
    assert excinfo.value.response.status_code == 500


def test_make_request_posts_json():
    url = "http://localhost:9999/ok"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, url, json={"ok": True}, status=200)
        resp = make_request("POST", url, {"a": 1})
        sent = rsps.calls[0].request
    assert resp.json() == {"ok": True}
    assert json.loads(sent.body) == {"a": 1}
    assert sent.headers["Content-Type"] == "application/json"


@pytest.mark.parametrize(
    "ua,version",
    [
        ("", "-"),
        ("mev-boost", "-"),
        ("mev-boost/v1.0.0", "v1.0.0"),
        ("mev-boost/v1.0.0 ", "v1.0.0"),
        ("mev-boost/v1.0.0 test", "v1.0.0"),
    ],
)
def test_get_mev_boost_version_from_user_agent(ua, version):
    assert get_mev_boost_version_from_user_agent(ua) == version


@pytest.mark.parametrize(
    "hex_value,want",
    [
        ("0000000000000000000000000000000000000000000000000000000000000000", 0),
        ("0100000000000000000000000000000000000000000000000000000000000000", 1),
        ("69D8340F00000000000000000000000000000000000000000000000000000000", 255121513),
        (
            "ffffffffffffffffffffffffffffffffffffffffffffffffffffffffffffffff",
            115792089237316195423570985008687907853269984665640564039457584007913129639935,
        ),
    ],
)
def test_u256_str_to_int(hex_value, want):
    assert u256_str_to_int(bytes.fromhex(hex_value)) == want


def test_u256_str_to_int_wrong_length():
    with pytest.raises(IncorrectLengthError):
        u256_str_to_int(b"\x01")


def test_get_env_str_slice(monkeypatch):
    key = "TESTENV_TestGetEnvStrSlice"
    monkeypatch.delenv(key, raising=False)
    assert not get_env_str_slice(key, None)

    monkeypatch.setenv(key, "")
    assert get_env_str_slice(key, None) == [""]

    monkeypatch.setenv(key, "str1,str2")
    assert get_env_str_slice(key, None) == ["str1", "str2"]
    assert get_slice_env(key, None) == ["str1", "str2"]


def test_get_env(monkeypatch):
    monkeypatch.delenv("TESTENV_GetEnv", raising=False)
    assert get_env("TESTENV_GetEnv", "fallback") == "fallback"
    monkeypatch.setenv("TESTENV_GetEnv", "")
    assert get_env("TESTENV_GetEnv", "fallback") == ""


def test_get_env_duration_sec(monkeypatch):
    key = "TESTENV_Duration"
    monkeypatch.delenv(key, raising=False)
    assert get_env_duration_sec(key, 5) == timedelta(seconds=5)
    monkeypatch.setenv(key, "7")
    assert get_env_duration_sec(key, 5) == timedelta(seconds=7)
    monkeypatch.setenv(key, "abc")
    assert get_env_duration_sec(key, 5) == timedelta(seconds=5)


def test_get_ip_x_forwarded_for():
    assert get_ip_x_forwarded_for({"X-Forwarded-For": "10.0.0.1,10.0.0.2"}, "127.0.0.1:1") == "10.0.0.1"
    assert get_ip_x_forwarded_for({"x-forwarded-for": "10.0.0.3"}, "127.0.0.1:1") == "10.0.0.3"
    assert get_ip_x_forwarded_for({}, "127.0.0.1:1") == "127.0.0.1:1"


def test_slot_pos():
    assert slot_pos(0) == 1
    assert slot_pos(SLOTS_PER_EPOCH - 1) == SLOTS_PER_EPOCH
    assert slot_pos(SLOTS_PER_EPOCH) == 1


def test_str_to_pubkey_and_hash():
    assert str_to_pubkey(TEST_PUBKEY).hex() == TEST_PUBKEY[2:]
    assert str_to_hash(TEST_HASH).hex() == TEST_HASH[2:]
    assert str_to_hash(TEST_HASH[2:]) == str_to_hash(TEST_HASH)


def test_str_to_pubkey_errors():
    with pytest.raises(IncorrectLengthError):
        str_to_pubkey(TEST_HASH)
    with pytest.raises(IncorrectLengthError):
        str_to_hash(TEST_PUBKEY)
    with pytest.raises(ValueError):
        str_to_hash("0xzz")