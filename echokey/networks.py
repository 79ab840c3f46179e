"""
EchoKey Network Registry

Per-network properties used for adaptive expiration windows, transaction
identifier formatting and recipient address checks.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern

DEFAULT_AVERAGE_LATENCY = 30.0
DEFAULT_NETWORK = "ETH"


@dataclass(frozen=True)
class NetworkProfile:
    """Static properties of a settlement network."""
    id: str
    name: str
    average_block_time: float  # seconds
    confirmation_min: int      # seconds
    confirmation_max: int      # seconds
    address_pattern: Pattern
    example_address: str
    evm: bool = False

    @property
    def tx_prefix(self) -> str:
        return "0x" if self.evm else ""

    def is_valid_address(self, address: str) -> bool:
        return bool(self.address_pattern.match(address or ""))


_EVM_ADDRESS = re.compile(r'^0x[a-fA-F0-9]{40}$')
_EVM_EXAMPLE = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0"

NETWORKS: Dict[str, NetworkProfile] = {
    p.id: p for p in [
        NetworkProfile("ETH", "Ethereum", 15, 10, 120, _EVM_ADDRESS, _EVM_EXAMPLE, evm=True),
        NetworkProfile("BTC", "Bitcoin", 600, 60, 600,
                       re.compile(r'^(bc1|[13])[a-zA-HJ-NP-Z0-9]{25,62}$'),
                       "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"),
        NetworkProfile("SOL", "Solana", 0.4, 5, 30,
                       re.compile(r'^[1-9A-HJ-NP-Za-km-z]{32,44}$'),
                       "7EcDhSYGxXyscszYEp35KHN8vvw3svAuLKTzXwCFLtV"),
        NetworkProfile("MATIC", "Polygon", 2, 5, 60, _EVM_ADDRESS, _EVM_EXAMPLE, evm=True),
        NetworkProfile("AVAX", "Avalanche", 2, 5, 30, _EVM_ADDRESS, _EVM_EXAMPLE, evm=True),
        NetworkProfile("BNB", "BNB Chain", 3, 5, 60, _EVM_ADDRESS, _EVM_EXAMPLE, evm=True),
        NetworkProfile("ADA", "Cardano", 20, 20, 120,
                       re.compile(r'^addr1[a-z0-9]{58,}$'),
                       "addr1qxy3w7j9q4kxv8zmqx8vq7x8xm9q8zm9xq8zm9xq8zm9xq8zm9xq8zm9xq8zm9x"),
        NetworkProfile("DOT", "Polkadot", 6, 10, 60,
                       re.compile(r'^1[a-zA-Z0-9]{47}$'),
                       "15oF4uVJwmo4TdGW7VfQxNLavjCXviqxT9S1MgbjMNHr6Sp5"),
    ]
}


def normalize_network_id(network_id: Optional[str]) -> str:
    return (network_id or DEFAULT_NETWORK).strip().upper()


def get_network(network_id: Optional[str]) -> Optional[NetworkProfile]:
    """Look up a network profile, case-insensitively. Unknown ids return None."""
    return NETWORKS.get(normalize_network_id(network_id))


def average_latency(network_id: Optional[str]) -> float:
    """Average confirmation latency in seconds, 30 for unknown networks."""
    profile = get_network(network_id)
    return profile.average_block_time if profile else DEFAULT_AVERAGE_LATENCY


def is_valid_address(address: str, network_id: str) -> bool:
    """Check an address against the network's format. Unknown networks never match."""
    profile = get_network(network_id)
    if profile is None:
        return False
    return profile.is_valid_address(address)


def supported_networks() -> List[str]:
    return list(NETWORKS.keys())
