"""
EchoKey Adaptive TTL Policy

    window_seconds = max(floor, multiplier * average_latency(network))

A signal must outlive several confirmation cycles of its network, but is
never shorter than a floor that keeps it usable by a human operator.
"""

import math

from .networks import average_latency

DEFAULT_FLOOR_SECONDS = 60
DEFAULT_LATENCY_MULTIPLIER = 4


class TTLPolicy:
    """Maps a network identifier to a validity window in whole seconds."""

    def __init__(
        self,
        floor_seconds: int = DEFAULT_FLOOR_SECONDS,
        multiplier: float = DEFAULT_LATENCY_MULTIPLIER
    ):
        if floor_seconds <= 0:
            raise ValueError("floor_seconds must be positive")
        if multiplier <= 0:
            raise ValueError("multiplier must be positive")
        self.floor_seconds = int(floor_seconds)
        self.multiplier = multiplier

    def window_seconds(self, network_id: str) -> int:
        scaled = math.ceil(self.multiplier * average_latency(network_id))
        return max(self.floor_seconds, scaled)

    def __repr__(self) -> str:
        return f"TTLPolicy(floor_seconds={self.floor_seconds}, multiplier={self.multiplier})"


_default_policy = TTLPolicy()


def window_seconds(network_id: str) -> int:
    """Validity window for a network under the default policy."""
    return _default_policy.window_seconds(network_id)
