"""
Tests for SSLCommerzPaymentProvider against an httpx.MockTransport gateway.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from food_ordering.core.config import Settings
from food_ordering.core.exceptions import ProviderRejected, ProviderUnavailable, ValidationError
from food_ordering.models import Order, PaymentStatus
from food_ordering.services.payment.base import CallbackChannel
from food_ordering.services.payment.sslcommerz import (
    SANDBOX_HOST,
    SESSION_PATH,
    VALIDATION_PATH,
    SSLCommerzConfig,
    SSLCommerzPaymentProvider,
)


def make_order(**overrides) -> Order:
    fields = dict(
        id="order-1",
        owner_id="user-owner",
        items=[
            {"menu_item": "m1", "name": "Chicken Biryani", "quantity": 2, "price": 7.99, "image": None},
            {"menu_item": "m2", "name": "Mango Lassi", "quantity": 1, "price": 7.99, "image": None},
        ],
        delivery_fee=0.0,
        total=23.97,
        delivery_address={"street": "12 Lake Road", "city": "Dhaka", "state": "Dhaka", "zip_code": "1207"},
        payment_method="sslcommerz",
    )
    fields.update(overrides)
    return Order(**fields)


CONFIG = SSLCommerzConfig(
    store_id="teststore",
    store_passwd="teststore@ssl",
    callback_base_url="http://api.test",
)


class Gateway:
    """Records requests and answers with a canned JSON body."""

    def __init__(self, body=None, status_code=200, raise_exc=None):
        self.body = body if body is not None else {}
        self.status_code = status_code
        self.raise_exc = raise_exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc
        return httpx.Response(self.status_code, json=self.body)

    def provider(self) -> SSLCommerzPaymentProvider:
        return SSLCommerzPaymentProvider(CONFIG, transport=httpx.MockTransport(self))


class TestConfig:

    def test_missing_credentials(self):
        with pytest.raises(ValueError, match="SSLCOMMERZ_STORE_ID"):
            SSLCommerzConfig.from_settings(Settings(sslcommerz_store_id=None))

    def test_host_follows_live_flag(self):
        settings = Settings(
            sslcommerz_store_id="s",
            sslcommerz_store_passwd="p",
            sslcommerz_is_live=True,
            app_base_url="https://api.example.com/",
        )
        config = SSLCommerzConfig.from_settings(settings)

        assert config.host == "https://securepay.sslcommerz.com"
        assert config.callback_base_url == "https://api.example.com"
        assert CONFIG.host == SANDBOX_HOST


class TestCreateSession:

    @pytest.mark.asyncio
    async def test_posts_session_form(self):
        gateway = Gateway({
            "status": "SUCCESS",
            "GatewayPageURL": "https://sandbox.sslcommerz.com/EasyCheckOut/abc",
            "sessionkey": "abc",
        })

        result = await gateway.provider().create_session(
            make_order(), "tx-1", {"name": "Rahim", "phone": "01811111111"}
        )

        assert result.session_handle == "abc"
        assert result.redirect_url == "https://sandbox.sslcommerz.com/EasyCheckOut/abc"
        assert result.transaction_id == "tx-1"

        request = gateway.requests[0]
        assert request.method == "POST"
        assert request.url.path == SESSION_PATH

        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form["total_amount"] == "23.97"
        assert form["tran_id"] == "tx-1"
        assert form["value_a"] == "order-1"
        assert form["currency"] == "BDT"
        assert form["success_url"] == "http://api.test/api/payment/success"
        assert form["ipn_url"] == "http://api.test/api/payment/ipn"
        assert form["cus_name"] == "Rahim"
        assert form["cus_phone"] == "01811111111"
        assert form["cus_city"] == "Dhaka"
        assert form["cus_postcode"] == "1207"

    @pytest.mark.asyncio
    async def test_gateway_refusal(self):
        gateway = Gateway({"status": "FAILED", "failedreason": "Store Credential Error"})

        with pytest.raises(ProviderRejected, match="Store Credential Error"):
            await gateway.provider().create_session(make_order(), "tx-1")

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        gateway = Gateway({"error": "boom"}, status_code=503)

        with pytest.raises(ProviderRejected):
            await gateway.provider().create_session(make_order(), "tx-1")

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        gateway = Gateway(raise_exc=httpx.ConnectError("refused"))

        with pytest.raises(ProviderUnavailable):
            await gateway.provider().create_session(make_order(), "tx-1")

    @pytest.mark.asyncio
    async def test_timeout(self):
        gateway = Gateway(raise_exc=httpx.ReadTimeout("slow"))

        with pytest.raises(ProviderUnavailable):
            await gateway.provider().create_session(make_order(), "tx-1")


class TestVerifySession:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["VALID", "VALIDATED"])
    async def test_valid_payment(self, status):
        gateway = Gateway({"status": status, "val_id": "val-1", "tran_id": "tx-1", "value_a": "order-1"})

        outcome = await gateway.provider().verify_session("val-1")

        assert outcome.status == PaymentStatus.COMPLETED
        assert outcome.transaction_id == "tx-1"
        assert outcome.order_id == "order-1"

        request = gateway.requests[0]
        assert request.method == "GET"
        assert request.url.path == VALIDATION_PATH
        assert request.url.params["val_id"] == "val-1"
        assert request.url.params["store_id"] == "teststore"
        assert request.url.params["format"] == "json"

    @pytest.mark.asyncio
    async def test_invalid_payment(self):
        gateway = Gateway({"status": "INVALID_TRANSACTION"})

        outcome = await gateway.provider().verify_session("val-x")

        assert outcome.status is None
        assert outcome.raw_status == "INVALID_TRANSACTION"


class TestCallbacks:

    @pytest.mark.asyncio
    async def test_success_redirect(self):
        provider = Gateway().provider()
        event = await provider.handle_callback(
            {"tran_id": "tx-1", "value_a": "order-1", "val_id": "val-1", "status": "VALID"},
            channel=CallbackChannel.SUCCESS,
        )

        assert event.outcome == PaymentStatus.COMPLETED
        assert event.order_id == "order-1"
        assert event.transaction_id == "tx-1"
        assert event.provider_ref == "val-1"
        assert event.trusted is False

    @pytest.mark.asyncio
    async def test_fail_redirect(self):
        provider = Gateway().provider()
        event = await provider.handle_callback(
            {"tran_id": "tx-1", "value_a": "order-1"}, channel=CallbackChannel.FAIL
        )
        assert event.outcome == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_carries_nothing(self):
        provider = Gateway().provider()
        assert await provider.handle_callback({"value_a": "order-1"}, channel=CallbackChannel.CANCEL) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, expected",
        [
            ("VALID", PaymentStatus.COMPLETED),
            ("VALIDATED", PaymentStatus.COMPLETED),
            ("FAILED", PaymentStatus.FAILED),
            ("UNATTEMPTED", None),
        ],
    )
    async def test_ipn_statuses(self, status, expected):
        provider = Gateway().provider()
        event = await provider.handle_callback(
            {"tran_id": "tx-1", "value_a": "order-1", "status": status}, channel=CallbackChannel.IPN
        )
        assert (event.outcome if event else None) == expected

    @pytest.mark.asyncio
    async def test_callback_without_reference(self):
        provider = Gateway().provider()
        with pytest.raises(ValidationError):
            await provider.handle_callback({"status": "VALID"}, channel=CallbackChannel.SUCCESS)

    @pytest.mark.asyncio
    async def test_webhook_channel_unsupported(self):
        provider = Gateway().provider()
        with pytest.raises(ValidationError):
            await provider.handle_callback(b"{}", "sig", CallbackChannel.WEBHOOK)
