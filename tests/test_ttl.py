"""
Adaptive window and network registry tests.
"""

import unittest

from echokey import NETWORKS, TTLPolicy, average_latency, get_network, is_valid_address, window_seconds
from echokey.networks import supported_networks


class TestWindowSeconds(unittest.TestCase):

    def test_known_networks(self):
        expected = {
            "ETH": 60,
            "MATIC": 60,
            "BTC": 2400,
            "SOL": 60,
            "BNB": 60,
            "AVAX": 60,
            "ADA": 80,
            "DOT": 60,
        }
        for network_id, window in expected.items():
            with self.subTest(network=network_id):
                self.assertEqual(window_seconds(network_id), window)

    def test_unknown_network_uses_default_latency(self):
        self.assertEqual(window_seconds("DOGE"), 120)
        self.assertEqual(average_latency("DOGE"), 30.0)

    def test_case_insensitive(self):
        self.assertEqual(window_seconds("btc"), 2400)

    def test_never_below_floor(self):
        for network_id in NETWORKS:
            with self.subTest(network=network_id):
                self.assertGreaterEqual(window_seconds(network_id), 60)

    def test_custom_policy(self):
        policy = TTLPolicy(floor_seconds=30, multiplier=2)
        self.assertEqual(policy.window_seconds("SOL"), 30)
        self.assertEqual(policy.window_seconds("ADA"), 40)
        self.assertEqual(policy.window_seconds("BTC"), 1200)

    def test_fractional_latency_rounds_up(self):
        policy = TTLPolicy(floor_seconds=1, multiplier=4)
        self.assertEqual(policy.window_seconds("SOL"), 2)

    def test_invalid_policy(self):
        with self.assertRaises(ValueError):
            TTLPolicy(floor_seconds=0)
        with self.assertRaises(ValueError):
            TTLPolicy(multiplier=-1)


class TestNetworks(unittest.TestCase):

    def test_supported(self):
        self.assertEqual(
            sorted(supported_networks()),
            sorted(["ETH", "MATIC", "BTC", "SOL", "BNB", "AVAX", "ADA", "DOT"]),
        )

    def test_lookup(self):
        self.assertEqual(get_network("eth").average_block_time, 15)
        self.assertIsNone(get_network("DOGE"))

    def test_example_addresses_are_valid(self):
        for network_id, profile in NETWORKS.items():
            with self.subTest(network=network_id):
                self.assertTrue(is_valid_address(profile.example_address, network_id))

    def test_invalid_addresses(self):
        self.assertFalse(is_valid_address("not-an-address", "ETH"))
        self.assertFalse(is_valid_address("0x1234", "ETH"))
        self.assertFalse(is_valid_address(NETWORKS["ETH"].example_address, "DOGE"))

    def test_evm_prefix(self):
        self.assertEqual(get_network("ETH").tx_prefix, "0x")
        self.assertEqual(get_network("BTC").tx_prefix, "")


if __name__ == "__main__":
    unittest.main()
