# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics

Exports local chain and staking ledger metrics in Prometheus format.

Metrics:
- Block height, blocks produced
- Transactions by type, failures by error
- Total staked, reward reserve, pending rewards, staker count
- Rewards claimed / compounded
"""

from prometheus_client import Counter, Gauge, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# CHAIN METRICS
# ═══════════════════════════════════════════════════════════════════

block_height = Gauge(
    'stakeledger_block_height',
    'Current block height',
    registry=metrics_registry
)

block_timestamp = Gauge(
    'stakeledger_block_timestamp',
    'Timestamp of the latest block (simulated chain time)',
    registry=metrics_registry
)

blocks_total = Counter(
    'stakeledger_blocks_total',
    'Total number of blocks produced',
    registry=metrics_registry
)

transactions_total = Counter(
    'stakeledger_transactions_total',
    'Total number of transactions processed',
    ['tx_type'],
    registry=metrics_registry
)

transactions_failed_total = Counter(
    'stakeledger_transactions_failed_total',
    'Total number of rejected transactions',
    ['tx_type', 'error'],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# STAKING METRICS
# ═══════════════════════════════════════════════════════════════════

total_staked = Gauge(
    'stakeledger_total_staked',
    'Total principal held in custody',
    registry=metrics_registry
)

reward_reserve = Gauge(
    'stakeledger_reward_reserve',
    'Custody tokens available to pay rewards',
    registry=metrics_registry
)

pending_rewards = Gauge(
    'stakeledger_pending_rewards',
    'Sum of unclaimed rewards at the latest block',
    registry=metrics_registry
)

staker_count = Gauge(
    'stakeledger_staker_count',
    'Number of accounts with a non-zero stake',
    registry=metrics_registry
)

rewards_claimed_total = Counter(
    'stakeledger_rewards_claimed_total',
    'Total rewards paid out by claim',
    registry=metrics_registry
)

rewards_compounded_total = Counter(
    'stakeledger_rewards_compounded_total',
    'Total rewards folded into principal',
    registry=metrics_registry
)


def update_metrics(chain):
    """
    Update gauges from chain state.
    Called whenever a block is mined. Counters are updated where the events happen.

    Args:
        chain: LocalChain instance
    """
    staking = chain.state.staking

    block_height.set(chain.height)
    block_timestamp.set(chain.timestamp)

    total_staked.set(staking.total_staked)
    reward_reserve.set(staking.reward_reserve())
    pending_rewards.set(staking.total_rewards(chain.timestamp))
    staker_count.set(len(staking.stakers()))
