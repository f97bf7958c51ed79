"""Command-line entry point of the relay."""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field

from boostrelay.utils import get_env, get_slice_env

VERSION = "dev"


@dataclass(frozen=True)
class _EnvDefaults:
    """Settings shared by the service commands, taken from the environment."""

    network: str = ""
    beacon_uris: list[str] = field(default_factory=lambda: ["http://localhost:3500"])
    beacon_publish_uris: list[str] = field(default_factory=list)
    redis_uri: str = "localhost:6379"
    redis_readonly_uri: str = ""
    postgres_dsn: str = ""
    memcached_uris: list[str] | None = None
    log_json: bool = False
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> _EnvDefaults:
        return cls(
            network=get_env("NETWORK", ""),
            beacon_uris=get_slice_env("BEACON_URIS", ["http://localhost:3500"]),
            beacon_publish_uris=get_slice_env("BEACON_PUBLISH_URIS", []),
            redis_uri=get_env("REDIS_URI", "localhost:6379"),
            redis_readonly_uri=get_env("REDIS_READONLY_URI", ""),
            postgres_dsn=get_env("POSTGRES_DSN", ""),
            memcached_uris=get_slice_env("MEMCACHED_URIS", None),
            log_json=os.environ.get("LOG_JSON", "") != "",
            log_level=get_env("LOG_LEVEL", "info"),
        )


class _UsageError(Exception):
    pass


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise _UsageError(message)


def _build_parser() -> _Parser:
    parser = _Parser(prog="mev-boost-relay", description=f"mev-boost-relay {VERSION}")
    parser.set_defaults(settings=_EnvDefaults.from_env())
    commands = parser.add_subparsers(dest="command")
    commands.add_parser(
        "version",
        help="Print the version number the relay application",
        description="All software has versions. This is the boost relay's",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line and return the exit status."""
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except _UsageError as exc:
        print(exc)
        return 1

    if args.command == "version":
        print(f"boost-relay {VERSION}")
        return 0

    print(f"mev-boost-relay {VERSION}")
    parser.print_help(sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())