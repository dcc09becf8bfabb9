"""Tests for the Newebpay adapter."""

from datetime import datetime
from decimal import Decimal
from urllib.parse import parse_qs

import pytest

from donation_gateway.gateways.base import GATEWAY_TIMEZONE
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import Channel, GatewayName


def _donation(**overrides) -> Donation:
    fields = {
        "id": 42,
        "donation_type": "light_peace",
        "amount": Decimal("600"),
        "donor_name": "陳大文",
        "email": "donor@example.com",
        "payment_method": "virtual_account",
        "status": "pending",
        "merchant_trade_no": "N42T0315143000AB",
    }
    fields.update(overrides)
    return Donation(**fields)


def _trade_info(newebpay, form) -> dict[str, str]:
    decrypted = newebpay.cipher.decrypt(form.fields["TradeInfo"])
    return {k: v[0] for k, v in parse_qs(decrypted).items()}


class TestCheckoutForm:
    def test_encrypted_and_signed(self, newebpay):
        form = newebpay.build_checkout_form(
            _donation(),
            return_url="https://api.example/payments/result",
            notify_url="https://api.example/payments/notify",
            client_back_url="https://temple.example/",
            payment_info_url="https://api.example/payments/payment_info",
        )

        assert form.form_id == "newebpay-form"
        assert set(form.fields) == {"MerchantID", "TradeInfo", "TradeSha", "Version"}
        assert newebpay.verify_callback(form.fields) is True

        info = _trade_info(newebpay, form)
        assert info["MerchantOrderNo"] == "N42T0315143000AB"
        assert info["Amt"] == "600"
        assert info["VACC"] == "1"
        assert info["CustomerURL"] == "https://api.example/payments/payment_info"
        assert info["NotifyURL"] == "https://api.example/payments/notify"
        assert info["ReturnURL"] == "https://api.example/payments/result"
        assert info["ItemDesc"] == "平安燈 - 陳大文"
        assert info["OrderComment"] == "Donation#42"

    def test_credit_card_has_no_customer_url(self, newebpay):
        params = newebpay.build_trade_info(
            _donation(payment_method="credit_card"), "r", "n", customer_url="https://api.example/info"
        )
        assert params["CREDIT"] == 1
        assert "CustomerURL" not in params
        assert "VACC" not in params

    def test_no_method_enables_everything(self, newebpay):
        params = newebpay.build_trade_info(_donation(payment_method=None), "r", "n", customer_url="c")
        for flag in ("CREDIT", "VACC", "CVS", "BARCODE"):
            assert params[flag] == 1
        assert params["CustomerURL"] == "c"

    def test_trade_number_fits(self, newebpay):
        trade_no = newebpay.generate_trade_no(_donation(merchant_trade_no=None))
        assert trade_no.startswith("N42T")
        assert len(trade_no) <= 30


class TestParsing:
    def test_credit_card_paid(self, newebpay, newebpay_callback):
        params = newebpay_callback(
            MerchantOrderNo="N42T0315143000AB",
            TradeNo="24031514300012345",
            Amt=600,
            PaymentType="CREDIT",
            PayTime="2024-03-15 14:30:00",
        )
        result = newebpay.parse_callback(params)

        assert result.success is True
        assert result.gateway is GatewayName.NEWEBPAY
        assert result.merchant_trade_no == "N42T0315143000AB"
        assert result.gateway_trade_no == "24031514300012345"
        assert result.trade_amt == 600
        assert result.payment_date == datetime(2024, 3, 15, 14, 30, 0, tzinfo=GATEWAY_TIMEZONE)

    def test_virtual_account_issued(self, newebpay, newebpay_callback):
        params = newebpay_callback(
            message="取號成功",
            MerchantOrderNo="N42T0315143000AB",
            PaymentType="VACC",
            BankCode="007",
            CodeNo="1234567890123456",
            ExpireDate="2024-03-18",
            ExpireTime="23:59:59",
        )
        result = newebpay.parse_payment_info_callback(params)

        assert result.bank_code == "007"
        assert result.v_account == "1234567890123456"
        assert result.payment_no is None
        assert result.expire_date == datetime(2024, 3, 18, 23, 59, 59, tzinfo=GATEWAY_TIMEZONE)

    def test_virtual_account_paid_reports_payer(self, newebpay, newebpay_callback):
        params = newebpay_callback(
            MerchantOrderNo="N42T0315143000AB",
            PaymentType="VACC",
            PayBankCode="812",
            PayerAccount5Code="54321",
        )
        result = newebpay.parse_callback(params)
        assert result.bank_code == "812"
        assert result.v_account == "54321"

    def test_cvs_code_issued(self, newebpay, newebpay_callback):
        params = newebpay_callback(MerchantOrderNo="N42T0315143000AB", PaymentType="CVS", CodeNo="LLL24031500123")
        result = newebpay.parse_payment_info_callback(params)
        assert result.payment_no == "LLL24031500123"
        assert result.v_account is None

    def test_barcodes(self, newebpay, newebpay_callback):
        params = newebpay_callback(PaymentType="BARCODE", Barcode_1="130318H61", Barcode_2="55", Barcode_3="03")
        result = newebpay.parse_payment_info_callback(params)
        assert (result.barcode_1, result.barcode_2, result.barcode_3) == ("130318H61", "55", "03")

    def test_failed_status(self, newebpay, newebpay_callback):
        result = newebpay.parse_callback(newebpay_callback(status="MPG03009", message="交易失敗"))
        assert result.success is False
        assert result.rtn_code == "MPG03009"

    def test_empty_result_list(self, newebpay):
        trade_info = newebpay.cipher.encrypt('{"Status":"MPG03009","Message":"fail","Result":[]}')
        result = newebpay.parse_callback({"TradeInfo": trade_info})
        assert result.success is False
        assert result.merchant_trade_no is None

    def test_undecryptable_payload(self, newebpay):
        result = newebpay.parse_callback({"TradeInfo": "abcd", "TradeSha": "X"})
        assert result.success is False
        assert result.rtn_code == "ERROR"

    def test_missing_payload(self, newebpay):
        result = newebpay.parse_callback({})
        assert result.success is False
        assert result.rtn_code == "ERROR"

    def test_non_json_payload(self, newebpay):
        result = newebpay.parse_callback({"TradeInfo": newebpay.cipher.encrypt("Status=SUCCESS")})
        assert result.rtn_code == "ERROR"


class TestClassification:
    def test_notify_is_never_provisioning(self, newebpay, newebpay_callback):
        result = newebpay.parse_callback(newebpay_callback(PaymentType="VACC"))
        assert newebpay.is_provisioning_notice(result, Channel.NOTIFY) is False

    def test_payment_info_success_is_provisioning(self, newebpay, newebpay_callback):
        result = newebpay.parse_callback(newebpay_callback(PaymentType="CVS"))
        assert newebpay.is_provisioning_notice(result, Channel.PAYMENT_INFO) is True

    def test_result_redirect_depends_on_payment_type(self, newebpay, newebpay_callback):
        delayed = newebpay.parse_callback(newebpay_callback(PaymentType="VACC"))
        card = newebpay.parse_callback(newebpay_callback(PaymentType="CREDIT"))
        assert newebpay.is_provisioning_notice(delayed, Channel.RESULT) is True
        assert newebpay.is_provisioning_notice(card, Channel.RESULT) is False


class TestCorrelation:
    def test_plaintext_fields_carry_nothing(self, newebpay, newebpay_callback):
        correlation = newebpay.correlation(newebpay_callback(MerchantOrderNo="N42T0315143000AB"))
        assert correlation.merchant_trade_no is None

    def test_decrypted_trade_no(self, newebpay, newebpay_callback):
        correlation = newebpay.decrypted_correlation(newebpay_callback(MerchantOrderNo="N42T0315143000AB"))
        assert correlation.merchant_trade_no == "N42T0315143000AB"

    def test_decrypt_failure_raises(self, newebpay):
        with pytest.raises(ValueError):
            newebpay.decrypted_correlation({"TradeInfo": "zz"})


def test_acknowledgment_bodies(newebpay):
    assert newebpay.ack_body == "SUCCESS"
    assert newebpay.nack_body("Error") == "FAIL|Error"
