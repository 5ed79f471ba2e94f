# MIT License
# Copyright (c) 2025 Hashborn

from protocol.config.params import RATE_PRECISION


def calculate_reward(staked: int, rate_per_second: int, elapsed: int) -> int:
    """
    Calculate reward accrued by a stake over a period.

    Args:
        staked: Staked principal in minimal units
        rate_per_second: Fixed-point rate (scaled by RATE_PRECISION) per staked unit per second
        elapsed: Seconds since the last settlement

    Returns:
        Reward in minimal units, truncated toward zero
    """
    if staked <= 0 or elapsed <= 0:
        return 0
    return staked * rate_per_second * elapsed // RATE_PRECISION
