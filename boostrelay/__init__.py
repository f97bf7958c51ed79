"""Building blocks for an Ethereum MEV-Boost relay: beacon-node clients, network details, bid traces and SSZ encoding."""

__version__ = "0.1.0"