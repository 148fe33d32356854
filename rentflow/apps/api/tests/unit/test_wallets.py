"""Wallet management and selection tests (including Scenario E)."""

import pytest

from rentflow_api.db.models import WALLET_CUSTODIAL, WALLET_EXTERNAL
from rentflow_api.db.repo_wallets import WalletRepository
from rentflow_api.settlement.errors import (
    InvalidWallet,
    NotFound,
    NoWalletConfigured,
    WalletRemovalRejected,
)
from rentflow_api.settlement.wallets import (
    add_wallet,
    list_wallets,
    remove_wallet,
    resolve_source_wallet,
    set_primary_wallet,
)

OWNER = "tenant_wallets"


def _add(db_session, address, kind=WALLET_CUSTODIAL):
    ref = f"circle-{address}" if kind == WALLET_CUSTODIAL else None
    return add_wallet(db_session, OWNER, address=address, kind=kind, custodial_wallet_ref=ref)


def _primary_ids(db_session):
    return [w.wallet_id for w in list_wallets(db_session, OWNER) if w.is_primary]


def test_first_wallet_becomes_primary(db_session):
    a = _add(db_session, "AddrA")
    b = _add(db_session, "AddrB")

    assert a.is_primary is True
    assert b.is_primary is False
    assert _primary_ids(db_session) == [a.wallet_id]


def test_set_primary_keeps_exactly_one(db_session):
    a = _add(db_session, "AddrA")
    b = _add(db_session, "AddrB")

    set_primary_wallet(db_session, OWNER, b.wallet_id)

    assert _primary_ids(db_session) == [b.wallet_id]
    assert WalletRepository(db_session).get_by_id(a.wallet_id).is_primary is False


def test_set_primary_on_foreign_wallet(db_session):
    _add(db_session, "AddrA")
    other = add_wallet(db_session, "someone_else", address="AddrX", kind=WALLET_EXTERNAL)

    with pytest.raises(NotFound):
        set_primary_wallet(db_session, OWNER, other.wallet_id)


def test_scenario_e_primary_removal_requires_reassignment(db_session):
    a = _add(db_session, "AddrA")
    b = _add(db_session, "AddrB")

    with pytest.raises(WalletRemovalRejected):
        remove_wallet(db_session, OWNER, a.wallet_id)
    assert len(list_wallets(db_session, OWNER)) == 2

    set_primary_wallet(db_session, OWNER, b.wallet_id)
    remove_wallet(db_session, OWNER, a.wallet_id)

    assert [w.wallet_id for w in list_wallets(db_session, OWNER)] == [b.wallet_id]
    assert _primary_ids(db_session) == [b.wallet_id]


def test_last_wallet_can_be_removed(db_session):
    a = _add(db_session, "AddrA")

    remove_wallet(db_session, OWNER, a.wallet_id)

    assert list_wallets(db_session, OWNER) == []


def test_non_primary_wallet_can_be_removed(db_session):
    _add(db_session, "AddrA")
    b = _add(db_session, "AddrB")

    remove_wallet(db_session, OWNER, b.wallet_id)

    assert len(list_wallets(db_session, OWNER)) == 1


def test_duplicate_address_rejected(db_session):
    _add(db_session, "AddrA")

    with pytest.raises(InvalidWallet):
        _add(db_session, "AddrA")
    assert len(list_wallets(db_session, OWNER)) == 1


def test_concurrent_first_wallet_joins_as_secondary(db_session, monkeypatch):
    first = _add(db_session, "AddrA")
    # Both adds saw an empty wallet list; the other one committed first
    monkeypatch.setattr(WalletRepository, "count_for_owner", lambda self, owner_id: 0)

    second = _add(db_session, "AddrB")

    assert second.is_primary is False
    assert _primary_ids(db_session) == [first.wallet_id]
    assert len(list_wallets(db_session, OWNER)) == 2


def test_concurrent_first_wallet_with_duplicate_address_is_rejected(db_session, monkeypatch):
    _add(db_session, "AddrA")
    monkeypatch.setattr(WalletRepository, "count_for_owner", lambda self, owner_id: 0)

    with pytest.raises(InvalidWallet, match="already registered"):
        _add(db_session, "AddrA")
    assert len(list_wallets(db_session, OWNER)) == 1


def test_custodial_reference_rules(db_session):
    with pytest.raises(InvalidWallet):
        add_wallet(db_session, OWNER, address="AddrA", kind=WALLET_CUSTODIAL)
    with pytest.raises(InvalidWallet):
        add_wallet(
            db_session, OWNER, address="AddrB", kind=WALLET_EXTERNAL, custodial_wallet_ref="circle-1"
        )
    with pytest.raises(InvalidWallet):
        add_wallet(db_session, OWNER, address="AddrC", kind="hardware")


def test_selection_prefers_primary_and_never_guesses(db_session):
    with pytest.raises(NoWalletConfigured):
        resolve_source_wallet(db_session, OWNER)

    a = _add(db_session, "AddrA")
    _add(db_session, "AddrB")

    assert resolve_source_wallet(db_session, OWNER).wallet_id == a.wallet_id


def test_selection_with_explicit_wallet(db_session):
    _add(db_session, "AddrA")
    b = _add(db_session, "AddrB")
    external = _add(db_session, "AddrC", kind=WALLET_EXTERNAL)

    assert resolve_source_wallet(db_session, OWNER, b.wallet_id).wallet_id == b.wallet_id
    with pytest.raises(InvalidWallet):
        resolve_source_wallet(db_session, OWNER, external.wallet_id)
    with pytest.raises(InvalidWallet):
        resolve_source_wallet(db_session, OWNER, "wal_missing")
