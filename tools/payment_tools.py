# tools/payment_tools.py

import logging
from typing import NamedTuple, Optional
from urllib.parse import urlencode, quote

import stripe

from app.config import settings
from app.errors import DependencyFailure

QR_SERVICE_URL = "https://api.qrserver.com/v1/create-qr-code/"
QR_SIZE = "250x250"


class PaymentInstructions(NamedTuple):
    appointment_id: str
    amount: int
    currency: str
    payable_uri: str
    qr_code_url: str
    provider: str

    def to_dict(self) -> dict:
        return {
            "appointmentId": self.appointment_id,
            "amount": self.amount,
            "currency": self.currency,
            "payableUri": self.payable_uri,
            "qrCodeUrl": self.qr_code_url,
            "provider": self.provider,
        }


def build_qr_code_url(data: str) -> str:
    """URL of a QR image encoding `data`. Rendering is left to the QR service."""
    return f"{QR_SERVICE_URL}?{urlencode({'size': QR_SIZE, 'data': data})}"


class UpiPaymentLinkProvider:
    name = "upi"

    def __init__(self, upi_id: Optional[str] = None, payee_name: Optional[str] = None, currency: Optional[str] = None):
        self.upi_id = upi_id or settings.UPI_ID
        self.payee_name = payee_name or settings.UPI_PAYEE_NAME
        self.currency = currency or settings.CURRENCY

    def create_payment(self, appointment_id: str, amount: int, description: Optional[str] = None) -> PaymentInstructions:
        if not self.upi_id:
            logging.error("UPI_ID is not configured. Cannot build a UPI payment link.")
            raise DependencyFailure("Payments are not configured. Please contact the clinic.")

        params = {
            "pa": self.upi_id,
            "pn": self.payee_name,
            "am": amount,
            "cu": self.currency,
            "tn": description or f"Appointment {appointment_id}",
        }
        upi_uri = f"upi://pay?{urlencode(params, quote_via=quote, safe='@')}"
        return PaymentInstructions(
            appointment_id=appointment_id,
            amount=amount,
            currency=self.currency,
            payable_uri=upi_uri,
            qr_code_url=build_qr_code_url(upi_uri),
            provider=self.name,
        )


class StripeCheckoutProvider:
    """
    Card payments through a Stripe Checkout session. The session carries the
    appointment id in its metadata so the webhook can mark it as paid.
    """

    name = "stripe"

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None,
                 success_url: Optional[str] = None, cancel_url: Optional[str] = None):
        stripe.api_key = api_key or settings.STRIPE_API_KEY
        self.currency = currency or settings.CURRENCY
        self.success_url = success_url or settings.STRIPE_SUCCESS_URL
        self.cancel_url = cancel_url or settings.STRIPE_CANCEL_URL

    def create_payment(self, appointment_id: str, amount: int, description: Optional[str] = None) -> PaymentInstructions:
        try:
            checkout_session = stripe.checkout.Session.create(
                line_items=[
                    {
                        'price_data': {
                            'currency': self.currency.lower(),
                            'product_data': {
                                'name': description or "Medical consultation",
                            },
                            # Stripe amounts are in the smallest currency unit
                            'unit_amount': int(amount) * 100,
                        },
                        'quantity': 1,
                    },
                ],
                mode='payment',
                success_url=self.success_url + f"?session_id={{CHECKOUT_SESSION_ID}}&appointment_id={appointment_id}",
                cancel_url=self.cancel_url,
                client_reference_id=appointment_id,
                metadata={'appointment_id': appointment_id},
            )
        except stripe.StripeError as e:
            logging.error(f"Stripe error while creating checkout for appointment {appointment_id}: {e}", exc_info=True)
            raise DependencyFailure("Could not create the payment link. Please try again later.") from e

        return PaymentInstructions(
            appointment_id=appointment_id,
            amount=amount,
            currency=self.currency,
            payable_uri=checkout_session.url,
            qr_code_url=build_qr_code_url(checkout_session.url),
            provider=self.name,
        )


def build_payment_provider(name: Optional[str] = None):
    name = (name or settings.PAYMENT_PROVIDER).lower()
    if name == "stripe":
        return StripeCheckoutProvider()
    return UpiPaymentLinkProvider()
