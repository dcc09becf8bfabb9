"""Tests for the ECPay adapter."""

from datetime import datetime
from decimal import Decimal

import pytest

from donation_gateway.engine.errors import GatewayError
from donation_gateway.gateways.base import GATEWAY_TIMEZONE
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import Channel, GatewayName


def _donation(**overrides) -> Donation:
    fields = {
        "id": 42,
        "donation_type": "incense",
        "amount": Decimal("1000"),
        "donor_name": "王小明",
        "email": "donor@example.com",
        "payment_method": "virtual_account",
        "status": "pending",
    }
    fields.update(overrides)
    return Donation(**fields)


class TestCheckoutForm:
    def test_signed_fields(self, ecpay):
        donation = _donation(merchant_trade_no="D42T0315143000AB")
        form = ecpay.build_checkout_form(
            donation,
            return_url="https://api.example/payments/result",
            notify_url="https://api.example/payments/notify",
            client_back_url="https://temple.example/",
            payment_info_url="https://api.example/payments/payment_info",
        )
        fields = form.fields

        assert form.action == ecpay.api_url
        assert form.form_id == "ecpay-form"
        assert fields["MerchantTradeNo"] == "D42T0315143000AB"
        assert fields["TotalAmount"] == "1000"
        assert fields["ChoosePayment"] == "ATM"
        assert fields["CustomField1"] == "42"
        assert fields["ReturnURL"] == "https://api.example/payments/notify"
        assert fields["OrderResultURL"] == "https://api.example/payments/result"
        assert fields["PaymentInfoURL"] == "https://api.example/payments/payment_info"
        assert fields["ItemName"] == "香油錢 - 王小明"
        assert ecpay.codec.verify(fields) is True

    def test_no_method_offers_all(self, ecpay):
        params = ecpay.build_payment_params(_donation(payment_method=None), "r", "n")
        assert params["ChoosePayment"] == "ALL"

    def test_credit_card(self, ecpay):
        params = ecpay.build_payment_params(_donation(payment_method="credit_card"), "r", "n")
        assert params["ChoosePayment"] == "Credit"
        assert "PaymentInfoURL" not in params

    def test_rendered_form_escapes_values(self, ecpay):
        form = ecpay.build_checkout_form(_donation(donor_name='<b>"x"</b>'), "r", "n")
        html = form.render_html()
        assert "<b>" not in html
        assert "&lt;b&gt;" in html


class TestTradeNumbers:
    def test_format_and_length(self, ecpay):
        now = datetime(2024, 3, 15, 14, 30, 0, tzinfo=GATEWAY_TIMEZONE)
        trade_no = ecpay.generate_trade_no(_donation(), now)
        assert trade_no.startswith("D42T0315143000")
        assert len(trade_no) == len("D42T0315143000") + 4
        assert len(trade_no) <= 20

    def test_same_second_numbers_differ(self, ecpay):
        now = datetime(2024, 3, 15, 14, 30, 0, tzinfo=GATEWAY_TIMEZONE)
        numbers = {ecpay.generate_trade_no(_donation(), now) for _ in range(20)}
        assert len(numbers) > 1

    def test_suffix_shrinks_for_long_ids(self, ecpay):
        trade_no = ecpay.generate_trade_no(_donation(id=1234567))
        assert len(trade_no) == 20

    def test_id_too_long(self, ecpay):
        with pytest.raises(GatewayError):
            ecpay.generate_trade_no(_donation(id=10**12))


class TestParsing:
    def test_paid_notification(self, ecpay, ecpay_callback):
        params = ecpay_callback(
            MerchantTradeNo="D42T0315143000AB",
            TradeNo="2403151430001234",
            TradeAmt="1000",
            CustomField1="42",
        )
        result = ecpay.parse_callback(params)

        assert result.success is True
        assert result.gateway is GatewayName.ECPAY
        assert result.merchant_trade_no == "D42T0315143000AB"
        assert result.gateway_trade_no == "2403151430001234"
        assert result.trade_amt == 1000
        assert result.simulate_paid is False
        assert result.payment_date == datetime(2024, 3, 15, 14, 30, 0, tzinfo=GATEWAY_TIMEZONE)

    def test_simulated_payment(self, ecpay, ecpay_callback):
        result = ecpay.parse_callback(ecpay_callback(SimulatePaid="1"))
        assert result.simulate_paid is True

    def test_failed_payment(self, ecpay, ecpay_callback):
        result = ecpay.parse_callback(ecpay_callback(RtnCode="10100058", RtnMsg="付款失敗"))
        assert result.success is False
        assert result.rtn_code == "10100058"

    def test_missing_fields_become_none(self, ecpay):
        result = ecpay.parse_callback({"RtnCode": "1"})
        assert result.success is True
        assert result.merchant_trade_no is None
        assert result.trade_amt is None

    def test_atm_code_issued(self, ecpay, ecpay_callback):
        params = ecpay_callback(
            RtnCode="2",
            RtnMsg="Get VirtualAccount Succeeded",
            PaymentType="ATM_TAISHIN",
            BankCode="007",
            vAccount="1234567890123456",
            ExpireDate="2024/03/18",
        )
        result = ecpay.parse_payment_info_callback(params)

        assert result.success is True
        assert result.bank_code == "007"
        assert result.v_account == "1234567890123456"
        assert result.expire_date == datetime(2024, 3, 18, tzinfo=GATEWAY_TIMEZONE)

    def test_cvs_barcodes_issued(self, ecpay, ecpay_callback):
        params = ecpay_callback(
            RtnCode="10100073",
            PaymentType="BARCODE_BARCODE",
            Barcode1="130318H61",
            Barcode2="5555555555555555",
            Barcode3="031846000001000",
        )
        result = ecpay.parse_payment_info_callback(params)
        assert result.has_barcodes
        assert result.barcode_2 == "5555555555555555"


class TestClassification:
    def test_issuance_codes_on_notify_are_provisioning(self, ecpay, ecpay_callback):
        for code in ("2", "10100073"):
            result = ecpay.parse_callback(ecpay_callback(RtnCode=code))
            assert ecpay.is_provisioning_notice(result, Channel.NOTIFY) is True

    def test_paid_notify_is_not_provisioning(self, ecpay, ecpay_callback):
        result = ecpay.parse_callback(ecpay_callback())
        assert ecpay.is_provisioning_notice(result, Channel.NOTIFY) is False

    def test_payment_info_channel_is_always_provisioning(self, ecpay, ecpay_callback):
        result = ecpay.parse_payment_info_callback(ecpay_callback(RtnCode="2"))
        assert ecpay.is_provisioning_notice(result, Channel.PAYMENT_INFO) is True


class TestCorrelation:
    def test_custom_field_and_trade_no(self, ecpay):
        correlation = ecpay.correlation({"CustomField1": "42", "MerchantTradeNo": "D42T0315143000AB"})
        assert correlation.donation_id == 42
        assert correlation.merchant_trade_no == "D42T0315143000AB"

    def test_non_numeric_custom_field_ignored(self, ecpay):
        correlation = ecpay.correlation({"CustomField1": "abc"})
        assert correlation.donation_id is None
        assert correlation.merchant_trade_no is None

    @pytest.mark.parametrize("raw_id", ["²", "٤٢", "9" * 25, "-5"])
    def test_malformed_custom_field_falls_back_to_trade_no(self, ecpay, raw_id):
        correlation = ecpay.correlation({"CustomField1": raw_id, "MerchantTradeNo": "D42T0315143000AB"})
        assert correlation.donation_id is None
        assert correlation.merchant_trade_no == "D42T0315143000AB"


def test_acknowledgment_bodies(ecpay):
    assert ecpay.ack_body == "1|OK"
    assert ecpay.nack_body("Error") == "0|Error"
