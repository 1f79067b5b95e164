"""
SSLCommerz Payment Provider (provider B)

Redirect-based gateway: the customer is sent to ``GatewayPageURL``; the
gateway then POSTs form-encoded success/fail/cancel redirects and an IPN
back to this backend. None of these carry a signature, so events from
them are marked untrusted and can be confirmed through the validation
API (``verify_session``) before they are applied.

API Documentation:
    https://developer.sslcommerz.com/doc/v4/
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from food_ordering.core.config import Settings
from food_ordering.core.exceptions import (
    ProviderRejected,
    ProviderUnavailable,
    ValidationError,
)
from food_ordering.models import Order, PaymentMethod, PaymentStatus
from food_ordering.services.payment.base import (
    BasePaymentProvider,
    CallbackChannel,
    CallbackPayload,
    PaymentEvent,
    PaymentOutcome,
    SessionResult,
    VALID_FORM_STATUSES,
    from_minor_units,
    order_total_minor,
    parse_form_callback,
)

logger = logging.getLogger(__name__)

LIVE_HOST = "https://securepay.sslcommerz.com"
SANDBOX_HOST = "https://sandbox.sslcommerz.com"

SESSION_PATH = "/gwprocess/v4/api.php"
VALIDATION_PATH = "/validator/api/validationserverAPI.php"


@dataclass(frozen=True)
class SSLCommerzConfig:
    """Explicit SSLCommerz configuration, built once at process start."""
    store_id: str
    store_passwd: str
    callback_base_url: str
    is_live: bool = False
    currency: str = "BDT"
    country: str = "Bangladesh"
    timeout_seconds: float = 10.0

    @property
    def host(self) -> str:
        return LIVE_HOST if self.is_live else SANDBOX_HOST

    @classmethod
    def from_settings(cls, settings: Settings) -> "SSLCommerzConfig":
        if not settings.sslcommerz_store_id or not settings.sslcommerz_store_passwd:
            raise ValueError(
                "SSLCOMMERZ_STORE_ID and SSLCOMMERZ_STORE_PASSWD are required "
                "outside development mode."
            )
        return cls(
            store_id=settings.sslcommerz_store_id,
            store_passwd=settings.sslcommerz_store_passwd,
            callback_base_url=settings.app_base_url.rstrip("/"),
            is_live=settings.sslcommerz_is_live,
            currency=settings.sslcommerz_currency,
            timeout_seconds=settings.provider_timeout_seconds,
        )


class SSLCommerzPaymentProvider(BasePaymentProvider):
    """
    SSLCommerz adapter over ``httpx``.

    Args:
        config: Store credentials and URLs
        transport: Optional httpx transport (tests inject a MockTransport)
    """

    def __init__(
        self,
        config: SSLCommerzConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config
        self._transport = transport
        self.timeout_seconds = config.timeout_seconds

        logger.info(
            f"SSLCommerzPaymentProvider initialized "
            f"({'live' if config.is_live else 'sandbox'})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return PaymentMethod.SSLCOMMERZ.value

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.host,
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    async def _request(self, action: str, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await self._bounded(
                    client.request(method, path, **kwargs), action
                )
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            logger.error(f"SSLCommerz: {action} timed out - {e}")
            raise ProviderUnavailable("sslcommerz did not respond in time")
        except httpx.HTTPStatusError as e:
            logger.error(f"SSLCommerz: {action} returned HTTP {e.response.status_code}")
            raise ProviderRejected(
                f"Payment gateway error (HTTP {e.response.status_code})"
            )
        except httpx.HTTPError as e:
            logger.error(f"SSLCommerz: {action} connection error - {e}")
            raise ProviderUnavailable("Payment service temporarily unavailable")
        except ValueError:
            logger.error(f"SSLCommerz: {action} returned a non-JSON body")
            raise ProviderRejected("Payment gateway returned an unreadable response")

    def _session_form(
        self,
        order: Order,
        transaction_id: str,
        customer_info: Mapping[str, Any],
    ) -> dict[str, str]:
        address = order.delivery_address or {}
        callback = f"{self._config.callback_base_url}/api/payment"

        return {
            "store_id": self._config.store_id,
            "store_passwd": self._config.store_passwd,
            "total_amount": from_minor_units(order_total_minor(order)),
            "currency": self._config.currency,
            "tran_id": transaction_id,
            "success_url": f"{callback}/success",
            "fail_url": f"{callback}/fail",
            "cancel_url": f"{callback}/cancel",
            "ipn_url": f"{callback}/ipn",
            "shipping_method": "NO",
            "product_name": "Food Order",
            "product_category": "Food",
            "product_profile": "general",
            "cus_name": customer_info.get("name") or address.get("name") or "Customer",
            "cus_email": customer_info.get("email") or "customer@example.com",
            "cus_add1": customer_info.get("address") or address.get("street", ""),
            "cus_city": customer_info.get("city") or address.get("city", ""),
            "cus_state": customer_info.get("state") or address.get("state", ""),
            "cus_postcode": customer_info.get("zip_code") or address.get("zip_code", ""),
            "cus_country": self._config.country,
            "cus_phone": customer_info.get("phone") or "01700000000",
            "value_a": order.id,
        }

    async def create_session(
        self,
        order: Order,
        transaction_id: str,
        customer_info: Optional[Mapping[str, Any]] = None,
    ) -> SessionResult:
        """Initialise a gateway session and return the hosted page URL."""
        form = self._session_form(order, transaction_id, customer_info or {})

        logger.info(
            f"SSLCommerz: Initiating session for order {order.id} "
            f"({form['total_amount']} {form['currency']})"
        )

        data = await self._request("create_session", "POST", SESSION_PATH, data=form)

        if data.get("status") != "SUCCESS" or not data.get("GatewayPageURL"):
            reason = data.get("failedreason") or "Failed to initialize payment"
            logger.warning(f"SSLCommerz: Session rejected for order {order.id} - {reason}")
            raise ProviderRejected(reason)

        logger.info(f"SSLCommerz: Session created - {data.get('sessionkey')}")

        return SessionResult(
            session_handle=data.get("sessionkey") or transaction_id,
            redirect_url=data["GatewayPageURL"],
            transaction_id=transaction_id,
        )

    async def verify_session(self, session_handle: str) -> PaymentOutcome:
        """
        Validate a transaction by its ``val_id`` with the validation API.
        """
        data = await self._request(
            "verify_session",
            "GET",
            VALIDATION_PATH,
            params={
                "val_id": session_handle,
                "store_id": self._config.store_id,
                "store_passwd": self._config.store_passwd,
                "format": "json",
            },
        )

        raw_status = data.get("status")
        logger.debug(f"SSLCommerz: Validation of {session_handle} returned {raw_status}")

        return PaymentOutcome(
            status=PaymentStatus.COMPLETED if raw_status in VALID_FORM_STATUSES else None,
            provider_ref=data.get("val_id") or session_handle,
            transaction_id=data.get("tran_id"),
            order_id=data.get("value_a"),
            raw_status=raw_status,
        )

    async def handle_callback(
        self,
        payload: CallbackPayload,
        signature: Optional[str] = None,
        channel: CallbackChannel = CallbackChannel.IPN,
    ) -> Optional[PaymentEvent]:
        """
        Translate a redirect or IPN form post.

        These channels are unsigned; returned events have ``trusted=False``.
        """
        if channel == CallbackChannel.WEBHOOK:
            raise ValidationError("SSLCommerz does not send signed webhooks")

        if not isinstance(payload, Mapping):
            raise ValidationError("Expected a form-encoded callback")

        return parse_form_callback(self.provider_name, payload, channel)
