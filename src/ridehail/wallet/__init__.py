"""Wallet ledger and payment gateway client."""

from .ledger import WalletLedger
from .payment_gateway import GatewayIntent, GatewayRefund, PaymentGateway, StripePaymentGateway

__all__ = [
    "GatewayIntent",
    "GatewayRefund",
    "PaymentGateway",
    "StripePaymentGateway",
    "WalletLedger",
]
