"""Ethereum network parameters and signing-domain computation."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass

from boostrelay.common import RelayError
from boostrelay.utils import InvalidForkVersionError

ETH_NETWORK_HOLESKY = "holesky"
ETH_NETWORK_SEPOLIA = "sepolia"
ETH_NETWORK_GOERLI = "goerli"
ETH_NETWORK_MAINNET = "mainnet"
ETH_NETWORK_CUSTOM = "custom"

GENESIS_FORK_VERSION_HOLESKY = "0x01017000"
GENESIS_FORK_VERSION_SEPOLIA = "0x90000069"
GENESIS_FORK_VERSION_GOERLI = "0x00001020"
GENESIS_FORK_VERSION_MAINNET = "0x00000000"

GENESIS_VALIDATORS_ROOT_HOLESKY = "0x9143aa7c615a7f7115e2b6aac319c03529df8242ae705fba9df39b79c59fa8b1"
GENESIS_VALIDATORS_ROOT_SEPOLIA = "0xd8ea171f3c94aea21ebc42a1ed61052acf3f9209c00e4efbaaddac09ed9b8078"
GENESIS_VALIDATORS_ROOT_GOERLI = "0x043db0d9a83813551ee2f33450d23797757d430911a9320530ad8a0eabc43efb"
GENESIS_VALIDATORS_ROOT_MAINNET = "0x4b363db94e286120d76eb905340fdd4e54bfe9f06bf33ff6cf5ad27f511bfe95"

BELLATRIX_FORK_VERSION_HOLESKY = "0x03017000"
BELLATRIX_FORK_VERSION_SEPOLIA = "0x90000071"
BELLATRIX_FORK_VERSION_GOERLI = "0x02001020"
BELLATRIX_FORK_VERSION_MAINNET = "0x02000000"

CAPELLA_FORK_VERSION_HOLESKY = "0x04017000"
CAPELLA_FORK_VERSION_SEPOLIA = "0x90000072"
CAPELLA_FORK_VERSION_GOERLI = "0x03001020"
CAPELLA_FORK_VERSION_MAINNET = "0x03000000"

DENEB_FORK_VERSION_HOLESKY = "0x05017000"
DENEB_FORK_VERSION_SEPOLIA = "0x90000073"
DENEB_FORK_VERSION_GOERLI = "0x04001020"
DENEB_FORK_VERSION_MAINNET = "0x04000000"

FORK_VERSION_STRING_BELLATRIX = "bellatrix"
FORK_VERSION_STRING_CAPELLA = "capella"
FORK_VERSION_STRING_DENEB = "deneb"

DOMAIN_TYPE_BEACON_PROPOSER = bytes.fromhex("00000000")
DOMAIN_TYPE_APP_BUILDER = bytes.fromhex("00000001")

ZERO_ROOT_HEX = "0x" + "00" * 32

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

# name -> (genesis fork, genesis validators root, bellatrix, capella, deneb)
_KNOWN_NETWORKS: dict[str, tuple[str, str, str, str, str]] = {
    ETH_NETWORK_HOLESKY: (
        GENESIS_FORK_VERSION_HOLESKY,
        GENESIS_VALIDATORS_ROOT_HOLESKY,
        BELLATRIX_FORK_VERSION_HOLESKY,
        CAPELLA_FORK_VERSION_HOLESKY,
        DENEB_FORK_VERSION_HOLESKY,
    ),
    ETH_NETWORK_SEPOLIA: (
        GENESIS_FORK_VERSION_SEPOLIA,
        GENESIS_VALIDATORS_ROOT_SEPOLIA,
        BELLATRIX_FORK_VERSION_SEPOLIA,
        CAPELLA_FORK_VERSION_SEPOLIA,
        DENEB_FORK_VERSION_SEPOLIA,
    ),
    ETH_NETWORK_GOERLI: (
        GENESIS_FORK_VERSION_GOERLI,
        GENESIS_VALIDATORS_ROOT_GOERLI,
        BELLATRIX_FORK_VERSION_GOERLI,
        CAPELLA_FORK_VERSION_GOERLI,
        DENEB_FORK_VERSION_GOERLI,
    ),
    ETH_NETWORK_MAINNET: (
        GENESIS_FORK_VERSION_MAINNET,
        GENESIS_VALIDATORS_ROOT_MAINNET,
        BELLATRIX_FORK_VERSION_MAINNET,
        CAPELLA_FORK_VERSION_MAINNET,
        DENEB_FORK_VERSION_MAINNET,
    ),
}


class UnknownNetworkError(RelayError):
    """Raised for a network name that is not supported."""

    def __init__(self, network_name: str = "") -> None:
        super().__init__(f"unknown network: {network_name}")
        self.network_name = network_name


def _lenient_hash(hex_str: str) -> bytes:
    """Decode a hex string into 32 bytes, tolerating bad input.

    A 0x prefix is optional, an odd length gets a leading zero, decoding stops
    at the first invalid digit, and the result keeps the last 32 bytes,
    left-padded with zeros.
    """
    digits = hex_str[2:] if hex_str[:2] in ("0x", "0X") else hex_str
    if len(digits) % 2:
        digits = "0" + digits
    decoded = bytearray()
    for pos in range(0, len(digits), 2):
        pair = digits[pos : pos + 2]
        if not set(pair) <= _HEX_DIGITS:
            break
        decoded.append(int(pair, 16))
    return bytes(decoded[-32:]).rjust(32, b"\x00")


def _strict_hex(hex_str: str) -> bytes:
    """Decode a 0x-prefixed hex string, raising ValueError on any fault."""
    if hex_str[:2] not in ("0x", "0X"):
        raise ValueError("hex string without 0x prefix")
    digits = hex_str[2:]
    if len(digits) % 2 or not set(digits) <= _HEX_DIGITS:
        raise ValueError("invalid hex string")
    return bytes.fromhex(digits)


def compute_domain(
    domain_type: bytes, fork_version_hex: str, genesis_validators_root_hex: str
) -> bytes:
    """Compute the 32-byte signing domain.

    Raises InvalidForkVersionError unless the fork version is four bytes of
    0x-prefixed hex.
    """
    if len(domain_type) != 4:
        raise ValueError("domain type must be 4 bytes")
    try:
        fork_version = _strict_hex(fork_version_hex)
    except ValueError:
        raise InvalidForkVersionError() from None
    if len(fork_version) != 4:
        raise InvalidForkVersionError()
    root = _lenient_hash(genesis_validators_root_hex)
    fork_data_root = hashlib.sha256(fork_version.ljust(32, b"\x00") + root).digest()
    return bytes(domain_type) + fork_data_root[:28]


@dataclass(frozen=True)
class EthNetworkDetails:
    """Fork versions and signing domains of one network."""

    name: str
    genesis_fork_version_hex: str
    genesis_validators_root_hex: str
    bellatrix_fork_version_hex: str
    capella_fork_version_hex: str
    deneb_fork_version_hex: str

    domain_builder: bytes
    domain_beacon_proposer_bellatrix: bytes
    domain_beacon_proposer_capella: bytes
    domain_beacon_proposer_deneb: bytes

    def __str__(self) -> str:
        return (
            "EthNetworkDetails{\n"
            f"\tName: {self.name}, \n"
            f"\tGenesisForkVersionHex: {self.genesis_fork_version_hex}, \n"
            f"\tGenesisValidatorsRootHex: {self.genesis_validators_root_hex},\n"
            f"\tBellatrixForkVersionHex: {self.bellatrix_fork_version_hex}, \n"
            f"\tCapellaForkVersionHex: {self.capella_fork_version_hex}, \n"
            f"\tDenebForkVersionHex: {self.deneb_fork_version_hex},\n"
            f"\tDomainBuilder: {self.domain_builder.hex()}, \n"
            f"\tDomainBeaconProposerBellatrix: {self.domain_beacon_proposer_bellatrix.hex()}, \n"
            f"\tDomainBeaconProposerCapella: {self.domain_beacon_proposer_capella.hex()}, \n"
            f"\tDomainBeaconProposerDeneb: {self.domain_beacon_proposer_deneb.hex()}\n"
            "}"
        )


def new_eth_network_details(network_name: str) -> EthNetworkDetails:
    """Return the details of a named network.

    The "custom" network reads its fork versions and genesis validators root
    from the environment. Raises UnknownNetworkError for any other unknown
    name and InvalidForkVersionError for a malformed fork version.
    """
    if network_name in _KNOWN_NETWORKS:
        genesis, root, bellatrix, capella, deneb = _KNOWN_NETWORKS[network_name]
    elif network_name == ETH_NETWORK_CUSTOM:
        genesis = os.environ.get("GENESIS_FORK_VERSION", "")
        root = os.environ.get("GENESIS_VALIDATORS_ROOT", "")
        bellatrix = os.environ.get("BELLATRIX_FORK_VERSION", "")
        capella = os.environ.get("CAPELLA_FORK_VERSION", "")
        deneb = os.environ.get("DENEB_FORK_VERSION", "")
    else:
        raise UnknownNetworkError(network_name)

    return EthNetworkDetails(
        name=network_name,
        genesis_fork_version_hex=genesis,
        genesis_validators_root_hex=root,
        bellatrix_fork_version_hex=bellatrix,
        capella_fork_version_hex=capella,
        deneb_fork_version_hex=deneb,
        domain_builder=compute_domain(DOMAIN_TYPE_APP_BUILDER, genesis, ZERO_ROOT_HEX),
        domain_beacon_proposer_bellatrix=compute_domain(
            DOMAIN_TYPE_BEACON_PROPOSER, bellatrix, root
        ),
        domain_beacon_proposer_capella=compute_domain(
            DOMAIN_TYPE_BEACON_PROPOSER, capella, root
        ),
        domain_beacon_proposer_deneb=compute_domain(
            DOMAIN_TYPE_BEACON_PROPOSER, deneb, root
        ),
    )