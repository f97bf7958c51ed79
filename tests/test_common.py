import json
import logging

import pytest

from boostrelay.common import (
    SLOTS_PER_EPOCH,
    BuilderStatus,
    HTTPServerTimeouts,
    InvalidPubkeyError,
    Profile,
    RelayError,
    ServerAlreadyRunningError,
    log_setup,
    slot_to_epoch,
)


def test_slot_to_epoch_boundaries():
    assert slot_to_epoch(0) == 0
    assert slot_to_epoch(SLOTS_PER_EPOCH - 1) == 0
    assert slot_to_epoch(SLOTS_PER_EPOCH) == 1
    assert slot_to_epoch(SLOTS_PER_EPOCH * 7 + 3) == 7


def test_profile_str_lists_stage_timings():
    profile = Profile(payload_load=99, decode=1, prechecks=2, simulation=3, redis_update=4, total=5)
    assert str(profile) == "1,2,3,4,5"


def test_profile_defaults_zero():
    assert str(Profile()).split(",") == ["0"] * 5


def test_error_messages():
    assert str(ServerAlreadyRunningError()) == "server already running"
    assert str(InvalidPubkeyError()) == "invalid pubkey"
    assert isinstance(InvalidPubkeyError(), RelayError)


def test_dataclass_defaults():
    assert HTTPServerTimeouts().read.total_seconds() == 0
    status = BuilderStatus(is_optimistic=True)
    assert (status.is_high_prio, status.is_blacklisted, status.is_optimistic) == (False, False, True)


def test_log_setup_invalid_level():
    with pytest.raises(ValueError, match="Invalid loglevel: nonsense"):
        log_setup(False, "nonsense")


def test_log_setup_sets_level():
    assert log_setup(False, "debug").level == logging.DEBUG
    assert log_setup(False, "WARN").level == logging.WARNING
    assert log_setup(False, "").level == logging.INFO


def test_log_setup_json_output(capsys):
    logger = log_setup(True, "info")
    logger.info("hello", extra={"slot": 5})
    logger.debug("hidden")
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["msg"] == "hello"
    assert entry["level"] == "info"
    assert entry["slot"] == 5
    assert "time" in entry


def test_log_setup_text_output(capsys):
    logger = log_setup(False, "info")
    logger.warning("careful now")
    out = capsys.readouterr().out
    assert 'msg="careful now"' in out
    assert "level=warning" in out