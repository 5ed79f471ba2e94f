# MIT License
# Copyright (c) 2025 Hashborn

"""
End-to-end tests: token + staking ledger deployed on the local chain.

Setup mirrors a typical dev-chain fixture: the deployer holds the initial
supply, two users receive 1000 tokens each and the ledger's reward pool is
funded with 500 000 tokens.
"""

import json
import pytest
from unittest.mock import Mock

from ledger.core.chain import LocalChain
from ledger.core.events import EventBus
from ledger.core.tx_receipt import TxReceiptStore
from ledger.observability import metrics_registry
from protocol.config.params import UNIT, CURRENT_NETWORK
from protocol.crypto.addresses import signer_address
from protocol.types.common import (
    EventType,
    TxType,
    InsufficientAllowance,
    InsufficientBalance,
    InsufficientReward,
    InvalidTransaction,
    UnsupportedTokenReceived,
)
from protocol.types.tx import Transaction


# ═══════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def bus():
    b = EventBus()
    yield b
    b.clear()


@pytest.fixture
def chain(bus):
    c = LocalChain(bus=bus, receipts=TxReceiptStore())
    owner, user, user2 = c.accounts[:3]
    c.transfer_token(owner, user, 1000 * UNIT)
    c.transfer_token(owner, user2, 1000 * UNIT)
    c.fund_rewards(500_000 * UNIT)
    yield c
    c.close()


@pytest.fixture
def user(chain):
    return chain.accounts[1]


@pytest.fixture
def user2(chain):
    return chain.accounts[2]


def approve_and_stake(chain, account, amount):
    chain.approve(account, amount)
    return chain.stake(account, amount)


# ═══════════════════════════════════════════════════════════════════
# GENESIS
# ═══════════════════════════════════════════════════════════════════

def test_genesis_state(bus):
    c = LocalChain(bus=bus, receipts=TxReceiptStore())

    assert c.height == 0
    assert c.timestamp == CURRENT_NETWORK.genesis_time
    assert len(c.accounts) == CURRENT_NETWORK.signer_count
    assert len(set(c.accounts)) == len(c.accounts)
    assert c.token_balance(c.deployer) == CURRENT_NETWORK.token_initial_supply
    assert c.token.total_supply == CURRENT_NETWORK.token_initial_supply
    assert c.native_balance(c.accounts[1]) == CURRENT_NETWORK.signer_native_balance
    assert c.token.address != c.staking.address
    assert c.staking.reward_rate_per_second == CURRENT_NETWORK.reward_rate_per_second

    mint_logs = c.get_logs(EventType.TRANSFER, to_block=0)
    assert len(mint_logs) == 1
    assert mint_logs[0].args == {"from": "", "to": c.deployer, "value": CURRENT_NETWORK.token_initial_supply}
    c.close()


def test_genesis_file_allocations(tmp_path, bus):
    alice = signer_address(99, "genesis-test")
    genesis = {
        "genesis_time": 1_800_000_000,
        "alloc": {alice: 5 * UNIT},
        "token_alloc": {alice: 250 * UNIT},
    }
    with open(tmp_path / "genesis.json", "w") as f:
        json.dump(genesis, f)

    c = LocalChain(db_path=str(tmp_path / "chain.db"), bus=bus, receipts=TxReceiptStore())

    assert c.timestamp == 1_800_000_000
    assert c.native_balance(alice) == 5 * UNIT
    assert c.token_balance(alice) == 250 * UNIT
    assert c.token_balance(c.deployer) == CURRENT_NETWORK.token_initial_supply - 250 * UNIT
    c.close()


def test_genesis_rejects_malformed_address(tmp_path, bus):
    with open(tmp_path / "genesis.json", "w") as f:
        json.dump({"token_alloc": {"alice": UNIT}}, f)

    with pytest.raises(ValueError):
        LocalChain(db_path=str(tmp_path / "chain.db"), bus=bus, receipts=TxReceiptStore())


# ═══════════════════════════════════════════════════════════════════
# STAKING
# ═══════════════════════════════════════════════════════════════════

def test_stake(chain, user):
    amount = 100 * UNIT
    chain.approve(user, amount)

    receipt = chain.stake(user, amount)

    assert receipt.succeeded
    assert receipt.return_value == amount
    stake_logs = [log for log in receipt.logs if log.event == EventType.STAKE]
    assert len(stake_logs) == 1
    assert stake_logs[0].args == {"account": user, "amount": amount}
    assert stake_logs[0].address == chain.staking.address
    assert stake_logs[0].block_height == receipt.block_height
    assert chain.get_balance(user) == amount
    assert chain.get_last_updated_at(user) == receipt.timestamp
    assert chain.token_balance(user) == 900 * UNIT
    assert chain.allowance(user) == 0


def test_stake_more_than_balance(chain, user):
    amount = 2000 * UNIT
    chain.approve(user, amount)
    height = chain.height

    with pytest.raises(InsufficientBalance) as exc_info:
        chain.stake(user, amount)

    assert exc_info.value.account == user
    assert exc_info.value.balance == 1000 * UNIT
    assert exc_info.value.needed == 2000 * UNIT
    assert chain.height == height
    assert chain.get_balance(user) == 0
    assert chain.allowance(user) == amount


def test_stake_without_approval(chain, user):
    with pytest.raises(InsufficientAllowance):
        chain.stake(user, 100 * UNIT)


# ═══════════════════════════════════════════════════════════════════
# CLAIMING REWARDS
# ═══════════════════════════════════════════════════════════════════

def test_claim_rewards_after_one_hour(chain, user):
    amount = 100 * UNIT
    approve_and_stake(chain, user, amount)

    chain.increase_time(3600)
    chain.mine()

    # Evaluated at the mined block: 100 * 0.1 * 3600
    assert chain.rewards(user) == 36000 * UNIT

    # The claim lands one block (one second) later
    receipt = chain.claim(user)
    claim_logs = [log for log in receipt.logs if log.event == EventType.CLAIM]

    assert claim_logs[0].args == {"account": user, "amount": 36010 * UNIT}
    assert chain.get_claimed(user) == 36010 * UNIT
    assert chain.get_claimed(user) > 0
    assert chain.token_balance(user) == (900 + 36010) * UNIT
    assert chain.rewards(user) == 0
    assert chain.get_last_updated_at(user) == receipt.timestamp


def test_claim_without_rewards_reverts(chain, user):
    with pytest.raises(InsufficientReward):
        chain.claim(user)


def test_claim_logs_are_queryable(chain, user, user2):
    approve_and_stake(chain, user, 100 * UNIT)
    approve_and_stake(chain, user2, 100 * UNIT)
    chain.increase_time(60)
    chain.claim(user)
    chain.claim(user2)

    claims = chain.get_logs(EventType.CLAIM)
    assert [log.args["account"] for log in claims] == [user, user2]
    assert chain.get_logs(EventType.CLAIM, account=user2) == claims[1:]
    assert chain.get_logs(EventType.CLAIM, from_block=claims[1].block_height) == claims[1:]
    assert all(log.address == chain.staking.address for log in claims)


# ═══════════════════════════════════════════════════════════════════
# COMPOUNDING
# ═══════════════════════════════════════════════════════════════════

def test_compound_rewards(chain, user):
    amount = 100 * UNIT
    approve_and_stake(chain, user, amount)

    chain.increase_time(3600)
    chain.mine()

    # One extra second passes for the compound block
    reward = 36010 * UNIT
    receipt = chain.compound(user)

    assert receipt.logs[0].event == EventType.COMPOUND
    assert receipt.logs[0].args == {"account": user, "new_balance": amount + reward}
    assert chain.get_balance(user) == amount + reward
    assert chain.total_staked() == amount + reward


# ═══════════════════════════════════════════════════════════════════
# WITHDRAWING
# ═══════════════════════════════════════════════════════════════════

def test_withdraw(chain, user):
    amount = 100 * UNIT
    approve_and_stake(chain, user, amount)

    receipt = chain.withdraw(user, amount)

    withdraw_logs = [log for log in receipt.logs if log.event == EventType.WITHDRAW]
    assert withdraw_logs[0].args == {"account": user, "amount": amount}
    assert chain.get_balance(user) == 0
    assert chain.token_balance(user) == 1000 * UNIT


def test_withdraw_more_than_staked(chain, user):
    approve_and_stake(chain, user, 100 * UNIT)

    with pytest.raises(InsufficientBalance):
        chain.withdraw(user, 200 * UNIT)
    assert chain.get_balance(user) == 100 * UNIT


# ═══════════════════════════════════════════════════════════════════
# TOTAL REWARDS
# ═══════════════════════════════════════════════════════════════════

def test_total_rewards(chain, user, user2):
    approve_and_stake(chain, user, 100 * UNIT)
    # Views read the latest block, which is the stake block itself
    assert chain.total_rewards() == 0

    chain.mine()
    assert chain.total_rewards() > 0
    assert chain.total_rewards() == 10 * UNIT

    approve_and_stake(chain, user2, 100 * UNIT)
    chain.increase_time(10)
    chain.mine()
    assert chain.total_rewards() == chain.rewards(user) + chain.rewards(user2)


# ═══════════════════════════════════════════════════════════════════
# NATIVE VALUE (FALLBACK)
# ═══════════════════════════════════════════════════════════════════

def test_native_value_to_ledger_reverts(chain, user):
    before = chain.native_balance(user)

    with pytest.raises(UnsupportedTokenReceived):
        chain.send_value(user, chain.staking.address, UNIT)

    assert chain.native_balance(user) == before
    assert chain.native_balance(chain.staking.address) == 0


def test_native_value_on_staking_call_reverts(chain, user):
    tx = Transaction(
        tx_type=TxType.CLAIM,
        from_address=user,
        to_address=chain.staking.address,
        value=UNIT,
        nonce=chain.get_nonce(user),
    )
    with pytest.raises(UnsupportedTokenReceived):
        chain.send_transaction(tx)


def test_native_value_between_accounts(chain, user, user2):
    chain.send_value(user, user2, UNIT)
    assert chain.native_balance(user2) == CURRENT_NETWORK.signer_native_balance + UNIT
    assert chain.native_balance(user) == CURRENT_NETWORK.signer_native_balance - UNIT


# ═══════════════════════════════════════════════════════════════════
# CHAIN MECHANICS
# ═══════════════════════════════════════════════════════════════════

def test_each_transaction_is_one_block(chain, user):
    height, ts = chain.height, chain.timestamp
    chain.approve(user, UNIT)
    assert chain.height == height + 1
    assert chain.timestamp == ts + CURRENT_NETWORK.block_interval_sec


def test_failed_transaction_keeps_pending_time(chain, user):
    chain.increase_time(100)
    ts = chain.timestamp

    with pytest.raises(InsufficientReward):
        chain.claim(user)

    block = chain.mine()
    assert block.header.timestamp == ts + 100


def test_set_next_block_timestamp(chain):
    target = chain.timestamp + 1000
    chain.set_next_block_timestamp(target)
    assert chain.mine().header.timestamp == target

    with pytest.raises(ValueError):
        chain.set_next_block_timestamp(target)


def test_increase_time_rejects_negative(chain):
    with pytest.raises(ValueError):
        chain.increase_time(-1)


def test_blocks_link_to_parent(chain):
    chain.mine(3)
    top = chain.get_block(chain.height)
    parent = chain.get_block(chain.height - 1)
    assert top.header.prev_hash == parent.hash()
    assert top.header.timestamp > parent.header.timestamp


def test_wrong_nonce_rejected(chain, user):
    tx = Transaction(
        tx_type=TxType.TOKEN_APPROVE,
        from_address=user,
        to_address=chain.token.address,
        amount=UNIT,
        nonce=chain.get_nonce(user) + 5,
        payload={"spender": chain.staking.address},
    )
    with pytest.raises(InvalidTransaction):
        chain.send_transaction(tx)


def test_receipts_record_success_and_failure(chain, user):
    ok = chain.approve(user, UNIT)
    assert chain.get_receipt(ok.tx_hash).status == 'confirmed'
    assert chain.get_confirmations(ok.tx_hash) == 1
    chain.mine(2)
    assert chain.get_confirmations(ok.tx_hash) == 3
    assert chain.get_block_by_hash(chain.last_hash).header.height == chain.height

    tx = Transaction(
        tx_type=TxType.WITHDRAW,
        from_address=user,
        to_address=chain.staking.address,
        amount=UNIT,
        nonce=chain.get_nonce(user),
    )
    with pytest.raises(InsufficientBalance):
        chain.send_transaction(tx)

    failed = chain.get_receipt(tx.hash())
    assert failed.status == 'failed'
    assert failed.error_type == "InsufficientBalance"
    assert failed.block_height is None
    assert chain.get_confirmations(tx.hash()) is None


def test_replayed_transaction_keeps_receipt(chain, user):
    tx = Transaction(
        tx_type=TxType.TOKEN_APPROVE,
        from_address=user,
        to_address=chain.token.address,
        amount=UNIT,
        nonce=chain.get_nonce(user),
        payload={"spender": chain.staking.address},
    )
    mined = chain.send_transaction(tx)

    with pytest.raises(InvalidTransaction):
        chain.send_transaction(tx)

    receipt = chain.get_receipt(tx.hash())
    assert receipt.status == 'confirmed'
    assert receipt.block_height == mined.block_height


@pytest.mark.parametrize("tx_type", [TxType.TOKEN_TRANSFER, TxType.TOKEN_APPROVE, TxType.STAKE])
def test_contracts_cannot_send_transactions(chain, user, tx_type):
    approve_and_stake(chain, user, 100 * UNIT)
    custody = chain.token_balance(chain.staking.address)

    for sender in (chain.staking.address, chain.token.address):
        tx = Transaction(
            tx_type=tx_type,
            from_address=sender,
            to_address=user if tx_type == TxType.TOKEN_TRANSFER else chain.staking.address,
            amount=custody,
            nonce=0,
            payload={"spender": user},
        )
        with pytest.raises(InvalidTransaction):
            chain.send_transaction(tx)

    assert chain.allowance(chain.staking.address, user) == 0
    assert chain.token_balance(chain.staking.address) == custody
    assert custody >= chain.total_staked()


def test_transfer_to_malformed_address_rejected(chain, user):
    with pytest.raises(InvalidTransaction):
        chain.transfer_token(user, "not-an-address", UNIT)
    with pytest.raises(InvalidTransaction):
        chain.approve(user, UNIT, spender="stk1nobody")


def test_bus_notifications(chain, bus, user, user2):
    on_stake = Mock()
    on_failed = Mock()
    on_confirmed = Mock()
    bus.watch(on_stake, event=EventType.STAKE)
    bus.subscribe('tx_failed', on_failed)
    bus.subscribe('tx_confirmed', on_confirmed)

    approve_and_stake(chain, user, 10 * UNIT)
    # user2 never staked
    with pytest.raises(InsufficientReward):
        chain.claim(user2)

    assert on_stake.call_count == 1
    assert on_stake.call_args.args[0].args["amount"] == 10 * UNIT
    assert on_stake.call_args.args[0].block_height == chain.height
    assert on_confirmed.call_count == 2
    assert on_failed.call_count == 1
    assert isinstance(on_failed.call_args.kwargs["error"], InsufficientReward)


def test_metrics_follow_ledger(chain, user):
    approve_and_stake(chain, user, 100 * UNIT)
    chain.mine()

    assert metrics_registry.get_sample_value('stakeledger_total_staked') == float(chain.total_staked())
    assert metrics_registry.get_sample_value('stakeledger_block_height') == float(chain.height)
    assert metrics_registry.get_sample_value('stakeledger_staker_count') == 1.0
    assert metrics_registry.get_sample_value('stakeledger_reward_reserve') == float(chain.reward_reserve())
    assert metrics_registry.get_sample_value('stakeledger_pending_rewards') == float(chain.total_rewards())


# ═══════════════════════════════════════════════════════════════════
# PERSISTENCE
# ═══════════════════════════════════════════════════════════════════

def test_state_survives_restart(tmp_path, bus):
    db_path = str(tmp_path / "chain.db")
    c = LocalChain(db_path=db_path, bus=bus, receipts=TxReceiptStore())
    user = c.accounts[1]
    c.transfer_token(c.deployer, user, 1000 * UNIT)
    c.fund_rewards(1000 * UNIT)
    approve_and_stake(c, user, 100 * UNIT)
    c.increase_time(50)
    c.mine()
    height, ts, rewards = c.height, c.timestamp, c.rewards(user)
    root = c.get_block(height).header.state_root
    c.close()

    reopened = LocalChain(db_path=db_path, bus=bus, receipts=TxReceiptStore())

    assert reopened.height == height
    assert reopened.timestamp == ts
    assert reopened.get_balance(user) == 100 * UNIT
    assert reopened.rewards(user) == rewards
    assert reopened.token_balance(user) == 900 * UNIT
    assert reopened.get_nonce(user) == 2
    assert len(reopened.get_logs(EventType.STAKE)) == 1
    assert reopened.state.compute_state_root() == root

    reopened.claim(user)
    assert reopened.get_claimed(user) == 100 * UNIT // 10 * 51
    reopened.close()
