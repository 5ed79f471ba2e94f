# MIT License
# Copyright (c) 2025 Hashborn

import os
from decimal import Decimal
from typing import Dict

# Global Constants
DENOM = "stk"
DECIMALS = 18
UNIT = 10**DECIMALS

# Reward rates are fixed-point numbers scaled by RATE_PRECISION:
# reward = staked * rate * elapsed // RATE_PRECISION
RATE_PRECISION = 10**18

NETWORK_ENV_VAR = "STAKELEDGER_NETWORK"


def rate_from_decimal(rate) -> int:
    """Converts a human rate such as "0.1" into its fixed-point representation."""
    scaled = Decimal(str(rate)) * RATE_PRECISION
    if scaled < 0:
        raise ValueError(f"Reward rate must be non-negative, got {rate}")
    return int(scaled)


class NetworkConfig:
    def __init__(self,
                 network_id: str,
                 chain_id: str,
                 block_interval_sec: int = 1,
                 genesis_time: int = 1_700_000_000,
                 # Token params
                 token_name: str = "TestToken",
                 token_symbol: str = "TT",
                 token_initial_supply: int = 100_000_000_000 * UNIT,
                 # Staking params
                 reward_rate: str = "0.1",  # tokens per staked token per second
                 # Signer params
                 signer_count: int = 10,
                 signer_native_balance: int = 10_000 * UNIT,
                 bech32_prefix_acc: str = "stk",
                 bech32_prefix_contract: str = "stkcontract"):
        self.network_id = network_id
        self.chain_id = chain_id
        self.block_interval_sec = block_interval_sec
        self.genesis_time = genesis_time
        self.token_name = token_name
        self.token_symbol = token_symbol
        self.token_initial_supply = token_initial_supply
        self.reward_rate_per_second = rate_from_decimal(reward_rate)
        self.signer_count = signer_count
        self.signer_native_balance = signer_native_balance
        self.bech32_prefix_acc = bech32_prefix_acc
        self.bech32_prefix_contract = bech32_prefix_contract

NETWORKS: Dict[str, NetworkConfig] = {
    "devnet": NetworkConfig(
        network_id="devnet",
        chain_id="stakeledger-devnet-1",
        block_interval_sec=1,
    ),
    "testnet": NetworkConfig(
        network_id="testnet",
        chain_id="stakeledger-testnet-1",
        block_interval_sec=12,
        token_initial_supply=1_000_000_000 * UNIT,
        reward_rate="0.000001",
        signer_count=5,
    ),
}


def get_network(name: str = None) -> NetworkConfig:
    """Resolves a network by name, falling back to $STAKELEDGER_NETWORK, then devnet."""
    name = name or os.environ.get(NETWORK_ENV_VAR, "devnet")
    if name not in NETWORKS:
        raise ValueError(f"Unknown network '{name}' (known: {', '.join(sorted(NETWORKS))})")
    return NETWORKS[name]

# Default to devnet for now
CURRENT_NETWORK = get_network()
