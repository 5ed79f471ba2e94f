# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides metrics for the local chain and the staking ledger.
"""

from .metrics import metrics_registry, update_metrics

__all__ = ['metrics_registry', 'update_metrics']
