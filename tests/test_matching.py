"""
Tests del motor de matching y de la conciliación de transferencias
"""
from decimal import Decimal

import pytest

from settlement.common.mixins import utc_now
from settlement.modules.matching.engine import classify, score_candidate
from settlement.modules.matching.models import IncomingTransfer, PaymentMatch
from settlement.modules.payments.models import (
    ConfirmationType, MatchResult, Payment, PaymentConfirmation, PaymentMethodType, PaymentProvider, PaymentStatus
)

REFERENCE = "SALE-ABCD1234"


def _transfer(amount, reference=None, description=None):
    return IncomingTransfer(amount=Decimal(amount), reference=reference, raw_description=description)


def _payment(amount, reference=None, qr_reference=None):
    return Payment(
        amount=Decimal(amount),
        reference=reference,
        gateway_metadata={"reference": qr_reference} if qr_reference else None,
    )


def _transfer_body(amount, reference=None, description=None):
    return {
        "amount": amount,
        "reference": reference,
        "raw_description": description,
        "origin_label": "Juan Perez",
        "received_at": utc_now().isoformat(),
    }


class TestScoring:

    def test_exact_amount_and_reference_is_auto(self):
        confidence, reasons = score_candidate(_transfer("1500", REFERENCE), _payment("1500", REFERENCE))
        assert confidence >= Decimal("0.9")
        assert classify(confidence) == MatchResult.MATCHED_AUTO
        assert reasons == ["Monto exacto", "Reference exacto"]

    def test_amount_mismatch_without_reference_is_no_match(self):
        confidence, reasons = score_candidate(_transfer("1500"), _payment("1000"))
        assert confidence < Decimal("0.6")
        assert confidence == Decimal("0")
        assert classify(confidence) == MatchResult.NO_MATCH
        assert reasons[-1].startswith("Penalización por diferencia de monto")

    def test_empty_references_do_not_score(self):
        confidence, reasons = score_candidate(_transfer("200", "", ""), _payment("200", ""))
        assert confidence == Decimal("0.5")
        assert reasons == ["Monto exacto"]

    def test_reference_in_description_with_amount_difference(self):
        confidence, _ = score_candidate(
            _transfer("999.50", description=f"TRANSF {REFERENCE} JUAN"), _payment("1000", REFERENCE)
        )
        assert classify(confidence) == MatchResult.NO_MATCH
        assert confidence == Decimal("0.2995")

    def test_qr_reference_in_description(self):
        confidence, reasons = score_candidate(
            _transfer("1000", description=f"Pago {REFERENCE}"), _payment("1000", qr_reference=REFERENCE)
        )
        assert confidence == Decimal("0.8")
        assert classify(confidence) == MatchResult.MATCHED_SUGGESTED
        assert "QR reference encontrado" in reasons

    def test_confidence_is_clamped(self):
        confidence, _ = score_candidate(
            _transfer("1000", REFERENCE, f"Pago {REFERENCE}"), _payment("1000", REFERENCE, REFERENCE)
        )
        assert confidence == Decimal("1")

    @pytest.mark.parametrize("value,expected", [
        ("0.9", MatchResult.MATCHED_AUTO),
        ("0.8999", MatchResult.MATCHED_SUGGESTED),
        ("0.6", MatchResult.MATCHED_SUGGESTED),
        ("0.5999", MatchResult.NO_MATCH),
    ])
    def test_thresholds(self, value, expected):
        assert classify(Decimal(value)) == expected


@pytest.fixture
def qr_payment(make_sale, make_payment):
    sale = make_sale(total="1500.00")
    return make_payment(
        sale, amount="1500", provider=PaymentProvider.QR, method=PaymentMethodType.QR,
        reference=REFERENCE, external_reference=REFERENCE, gateway_metadata={"reference": REFERENCE},
    )


class TestTransferImport:

    def test_import_auto_confirms_best_match(self, client, auth_headers, qr_payment, open_box, db_session):
        response = client.post(
            "/api/v1/transfers/import",
            json={"transfers": [_transfer_body("1500", REFERENCE, f"Transferencia {REFERENCE}")]},
            headers=auth_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["imported"] == 1
        result = body["results"][0]
        assert result["auto_confirmed_payment_id"] == str(qr_payment.id)
        assert result["transfer"]["matched_payment_id"] == str(qr_payment.id)
        assert result["matches"][0]["result"] == "matched_auto"

        db_session.refresh(qr_payment)
        assert qr_payment.status == PaymentStatus.CONFIRMED
        assert qr_payment.confirmed_by is None
        confirmation = db_session.query(PaymentConfirmation).filter(
            PaymentConfirmation.payment_id == qr_payment.id
        ).one()
        assert confirmation.confirmation_type == ConfirmationType.AUTO
        assert confirmation.reason.startswith("Auto-confirmado por matching")
        assert qr_payment.sale.status.value == "paid"

    def test_import_without_candidates(self, client, auth_headers, qr_payment):
        response = client.post(
            "/api/v1/transfers/import",
            json={"transfers": [_transfer_body("20", description="Otro pago")]},
            headers=auth_headers,
        )
        result = response.json()["results"][0]
        assert result["auto_confirmed_payment_id"] is None
        assert result["matches"][0]["result"] == "no_match"

    def test_import_requires_transfers(self, client, auth_headers):
        response = client.post("/api/v1/transfers/import", json={"transfers": []}, headers=auth_headers)
        assert response.status_code == 422

    def test_confirmed_payments_are_not_candidates(self, client, auth_headers, qr_payment, db_session):
        qr_payment.status = PaymentStatus.CONFIRMED
        db_session.commit()
        response = client.post(
            "/api/v1/transfers/manual", json=_transfer_body("1500", REFERENCE), headers=auth_headers
        )
        assert response.json()["matches"] == []


class TestAssistedConfirmation:

    def test_manual_transfer_only_suggests(self, client, auth_headers, qr_payment, db_session):
        response = client.post(
            "/api/v1/transfers/manual",
            json=_transfer_body("1500", description=f"Pago {REFERENCE}"),
            headers=auth_headers,
        )
        assert response.status_code == 201
        assert response.json()["auto_confirmed_payment_id"] is None

        db_session.refresh(qr_payment)
        assert qr_payment.status == PaymentStatus.PENDING
        assert qr_payment.match_result == MatchResult.MATCHED_AUTO

        status = client.get(f"/api/v1/payments/{qr_payment.id}/matching-status", headers=auth_headers).json()
        assert status["action"] == "suggest"
        assert status["suggested_transfer"]["origin"] == "Juan Perez"

    def test_assisted_confirm(self, client, auth_headers, qr_payment, open_box, user_id, db_session):
        transfer = client.post(
            "/api/v1/transfers/manual",
            json=_transfer_body("1500", description=f"Pago {REFERENCE}"),
            headers=auth_headers,
        ).json()["transfer"]

        response = client.post(
            f"/api/v1/payments/{qr_payment.id}/assisted-confirm",
            json={"transfer_id": transfer["id"]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["payment"]["status"] == "confirmed"
        assert body["payment"]["confirmed_by"] == str(user_id)
        assert body["payment"]["matched_transfer_id"] == transfer["id"]
        assert body["balance"]["is_paid"] is True

        confirmation = db_session.query(PaymentConfirmation).one()
        assert confirmation.confirmation_type == ConfirmationType.ASSISTED

        status = client.get(f"/api/v1/payments/{qr_payment.id}/matching-status", headers=auth_headers).json()
        assert status["action"] == "confirmed"

    def test_no_match_cannot_be_confirmed(self, client, auth_headers, qr_payment):
        transfer = client.post(
            "/api/v1/transfers/manual", json=_transfer_body("900"), headers=auth_headers
        ).json()["transfer"]
        response = client.post(
            f"/api/v1/payments/{qr_payment.id}/assisted-confirm",
            json={"transfer_id": transfer["id"]},
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "MATCH_NOT_SUGGESTED"

    def test_unknown_transfer(self, client, auth_headers, qr_payment):
        response = client.post(
            f"/api/v1/payments/{qr_payment.id}/assisted-confirm",
            json={"transfer_id": "00000000-0000-0000-0000-000000000000"},
            headers=auth_headers,
        )
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "MATCH_NOT_FOUND"

    def test_waiting_status_without_matches(self, client, auth_headers, qr_payment):
        status = client.get(f"/api/v1/payments/{qr_payment.id}/matching-status", headers=auth_headers).json()
        assert status["action"] == "waiting"
        assert status["match_result"] == "no_match"
        assert status["matches"] == []

    def test_matches_are_removed_with_payment(self, client, auth_headers, qr_payment, db_session):
        client.post("/api/v1/transfers/manual", json=_transfer_body("900"), headers=auth_headers)
        assert db_session.query(PaymentMatch).count() == 1

        response = client.delete(f"/api/v1/payments/{qr_payment.id}", headers=auth_headers)
        assert response.status_code == 204
        assert db_session.query(PaymentMatch).count() == 0
