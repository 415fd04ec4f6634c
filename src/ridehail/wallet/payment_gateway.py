"""Card payment gateway client (Stripe payment-intent API)."""

import logging
from decimal import Decimal
from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ridehail.core.exceptions import PaymentGatewayError
from ridehail.db.utils import CENT, to_money
from ridehail.settings import GatewaySettings

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"

T = TypeVar("T", bound=BaseModel)


class GatewayIntent(BaseModel):
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    metadata: dict[str, str] = {}

    @property
    def amount_decimal(self) -> Decimal:
        return to_money(Decimal(self.amount) * CENT)


class GatewayRefund(BaseModel):
    id: str
    status: str
    amount: int


class PaymentGateway(Protocol):
    def create_intent(
        self, amount: Decimal, currency: str, metadata: dict[str, str]
    ) -> GatewayIntent: ...

    def retrieve_intent(self, intent_id: str) -> GatewayIntent: ...

    def refund(self, intent_id: str, amount: Decimal) -> GatewayRefund: ...


def to_minor_units(amount: Decimal) -> int:
    return int((to_money(amount) / CENT).to_integral_value())


class StripePaymentGateway:
    def __init__(self, settings: GatewaySettings, client: httpx.Client | None = None):
        self._settings = settings
        self._client = client or httpx.Client(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            headers={"Authorization": f"Bearer {settings.secret_key}"},
        )

    def create_intent(
        self, amount: Decimal, currency: str, metadata: dict[str, str]
    ) -> GatewayIntent:
        form = {
            "amount": str(to_minor_units(amount)),
            "currency": currency,
            "payment_method_types[]": "card",
        }
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = value
        data = self._request("POST", "/payment_intents", data=form)
        return self._parse(GatewayIntent, data)

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        data = self._request("GET", f"/payment_intents/{intent_id}")
        return self._parse(GatewayIntent, data)

    def refund(self, intent_id: str, amount: Decimal) -> GatewayRefund:
        data = self._request(
            "POST",
            "/refunds",
            data={"payment_intent": intent_id, "amount": str(to_minor_units(amount))},
        )
        return self._parse(GatewayRefund, data)

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.TimeoutException as e:
            raise PaymentGatewayError(
                f"Gateway request timed out after {self._settings.timeout_seconds}s",
                {"path": path},
            ) from e
        except httpx.HTTPStatusError as e:
            raise PaymentGatewayError(
                f"Gateway rejected request: {e.response.status_code}",
                {"path": path, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"Network error: {e}", {"path": path}) from e
        except ValueError as e:
            raise PaymentGatewayError("Gateway response is not valid JSON", {"path": path}) from e
        return data

    @staticmethod
    def _parse(model: type[T], data: dict[str, Any]) -> T:
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise PaymentGatewayError("Unexpected gateway payload") from e

    def close(self) -> None:
        self._client.close()
