import pytest

from boostrelay.cli import VERSION, main


def test_version_command(capsys):
    assert main(["version"]) == 0
    assert capsys.readouterr().out == f"boost-relay {VERSION}\n"


def test_root_prints_version_and_help(capsys):
    assert main([]) == 0
    out = capsys.readouterr().out
    assert out.startswith(f"mev-boost-relay {VERSION}\n")
    assert "usage: mev-boost-relay" in out
    assert "version" in out


def test_unknown_command_fails(capsys):
    assert main(["no-such-command"]) == 1
    assert "no-such-command" in capsys.readouterr().out


def test_help_exits_cleanly(capsys):
    with pytest.raises(SystemExit) as info:
        main(["--help"])
    assert info.value.code == 0
    assert "usage: mev-boost-relay" in capsys.readouterr().out


def test_version_command_reports_dev_build(capsys):
    main(["version"])
    assert capsys.readouterr().out == "boost-relay dev\n"