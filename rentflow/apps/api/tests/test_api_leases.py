"""HTTP tests for the lease endpoints, including the full move-in flow."""

from rentflow_api.db.models import (
    LEASE_ACTIVE,
    LEASE_AWAITING_PAYMENT,
    LEASE_AWAITING_SIGNATURES,
    LEASE_TERMINATED,
    PAYMENT_COMPLETED,
)
from rentflow_api.settlement.gateway import SettlementRejected


def test_move_in_flow_signatures_to_active_lease(test_client, fake_gateway, promoter, make_lease):
    lease = make_lease(
        status=LEASE_AWAITING_SIGNATURES,
        tenant_signed=False,
        landlord_signed=False,
        payout_address=None,
    )

    wallet = test_client.post(
        f"/v1/users/{lease.tenant_id}/wallets",
        json={"address": "TenantAddr1", "kind": "custodial", "custodial_wallet_ref": "circle-t1"},
    )
    assert wallet.status_code == 201

    signed = test_client.post(f"/v1/leases/{lease.lease_id}/signatures", json={"party": "tenant"})
    assert signed.json()["status"] == LEASE_AWAITING_SIGNATURES

    signed = test_client.post(
        f"/v1/leases/{lease.lease_id}/signatures",
        json={"party": "landlord", "payout_address": "LandlordPayout9"},
    )
    assert signed.json()["status"] == LEASE_AWAITING_PAYMENT

    required = test_client.get(f"/v1/leases/{lease.lease_id}/required-payments").json()
    assert required["all_required_complete"] is False
    assert [p["kind"] for p in required["payments"]] == ["security_deposit", "rent"]
    assert [p["amount"] for p in required["payments"]] == ["2000.00", "1500.00"]

    for payment in required["payments"]:
        response = test_client.post(f"/v1/payments/{payment['payment_id']}/initiate")
        assert response.status_code == 200

    dashboard = test_client.get(f"/v1/leases/{lease.lease_id}/dashboard").json()
    assert dashboard["lease_status"] == LEASE_ACTIVE
    assert dashboard["all_required_complete"] is True
    assert dashboard["total_paid"] == "3500.00"
    assert dashboard["total_due"] == "0.00"
    assert {p["display_status"] for p in dashboard["required_payments"]} == {PAYMENT_COMPLETED}

    assert [c["destination_address"] for c in fake_gateway.calls] == ["LandlordPayout9"] * 2
    assert [c["source_wallet_ref"] for c in fake_gateway.calls] == ["circle-t1"] * 2
    assert promoter.calls == [(lease.tenant_id, lease.lease_id)]


def test_dashboard_offers_retry_after_rejection(test_client, fake_gateway, move_in):
    fake_gateway.outcomes = [SettlementRejected("insufficient_funds", "Insufficient funds")]
    test_client.post(f"/v1/payments/{move_in.rent_id}/initiate")

    dashboard = test_client.get(f"/v1/leases/{move_in.lease_id}/dashboard").json()

    rent = dashboard["required_payments"][1]
    assert rent["display_status"] == "failed"
    assert rent["can_retry"] is True
    assert rent["failure_notes"] == "Insufficient funds"
    assert dashboard["lease_status"] == LEASE_AWAITING_PAYMENT


def test_required_payments_unknown_lease(test_client):
    response = test_client.get("/v1/leases/lease_missing/required-payments")

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_invalid_signature_party_is_422(test_client, make_lease):
    lease = make_lease(status=LEASE_AWAITING_SIGNATURES, tenant_signed=False)

    response = test_client.post(
        f"/v1/leases/{lease.lease_id}/signatures", json={"party": "guarantor"}
    )

    assert response.status_code == 422
    assert response.json()["title"] == "Request Validation Failed"


def test_terminate_blocks_payments(test_client, move_in):
    response = test_client.post(f"/v1/leases/{move_in.lease_id}/terminate")
    assert response.status_code == 200
    assert response.json()["status"] == LEASE_TERMINATED

    again = test_client.post(f"/v1/leases/{move_in.lease_id}/terminate")
    assert again.status_code == 409
    assert again.json()["error_code"] == "INVALID_LEASE_STATE"

    initiate = test_client.post(f"/v1/payments/{move_in.rent_id}/initiate")
    assert initiate.status_code == 409
    assert initiate.json()["error_code"] == "INVALID_LEASE_STATE"


def test_health_and_root(test_client):
    health = test_client.get("/health")
    assert health.status_code == 200
    assert health.json()["services"]["api"] == "up"

    root = test_client.get("/")
    assert root.json()["service"] == "rentflow-settlement-api"
