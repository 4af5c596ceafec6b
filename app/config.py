# config.py

import os
import logging
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Public URL of this backend, used to build the links sent by email
    BACKEND_URL: str = os.getenv("BACKEND_URL", "http://localhost:5000").rstrip("/")

    # The doctor/operator receives every new request and every confirmation
    DOCTOR_NOTIFICATION_EMAIL: str = os.getenv("DOCTOR_NOTIFICATION_EMAIL", "doctor@example.com")

    # Fixed consultation fee. Never taken from the client.
    CONSULTATION_FEE: int = int(os.getenv("CONSULTATION_FEE", 500))
    CURRENCY: str = os.getenv("CURRENCY", "INR")

    # Payment
    PAYMENT_PROVIDER: str = os.getenv("PAYMENT_PROVIDER", "upi").lower()  # upi | stripe
    UPI_ID: str = os.getenv("UPI_ID")
    UPI_PAYEE_NAME: str = os.getenv("UPI_PAYEE_NAME", "SidhaHealth")

    STRIPE_API_KEY: str = os.getenv("STRIPE_API_KEY")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_SUCCESS_URL: str = os.getenv("STRIPE_SUCCESS_URL", "http://localhost:3000/success")
    STRIPE_CANCEL_URL: str = os.getenv("STRIPE_CANCEL_URL", "http://localhost:3000/cancel")

    # Video consultations (Jitsi)
    VIDEO_ROOM_PREFIX: str = os.getenv("VIDEO_ROOM_PREFIX", "sidhahealth")
    VIDEO_BASE_URL: str = os.getenv("VIDEO_BASE_URL", "https://meet.jit.si").rstrip("/")

    # Email credentials
    EMAIL_HOST: str = os.getenv("EMAIL_HOST")
    EMAIL_PORT: int = int(os.getenv("EMAIL_PORT", 587))
    EMAIL_HOST_USER: str = os.getenv("EMAIL_HOST_USER")
    EMAIL_HOST_PASSWORD: str = os.getenv("EMAIL_HOST_PASSWORD")
    EMAIL_SENDER: str = os.getenv("EMAIL_SENDER")
    NOTIFICATION_WORKERS: int = int(os.getenv("NOTIFICATION_WORKERS", 4))

    # Database
    DB_HOST: str = os.getenv("DB_HOST")
    DB_USER: str = os.getenv("DB_USER")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD")
    DB_NAME: str = os.getenv("DB_NAME")
    DB_PORT: str = os.getenv("DB_PORT", "5432")
    DATABASE_URL: str = os.getenv("DATABASE_URL")


settings = Settings()

if settings.PAYMENT_PROVIDER not in ("upi", "stripe"):
    logging.warning(f"PAYMENT_PROVIDER '{settings.PAYMENT_PROVIDER}' is not supported. Falling back to 'upi'.")
    settings.PAYMENT_PROVIDER = "upi"
if settings.PAYMENT_PROVIDER == "upi" and not settings.UPI_ID:
    logging.warning("UPI_ID is not set. Payment pages will not carry a valid UPI address.")
if settings.PAYMENT_PROVIDER == "stripe" and not settings.STRIPE_API_KEY:
    logging.warning("STRIPE_API_KEY is not set. Stripe checkout links cannot be created.")
if settings.PAYMENT_PROVIDER == "stripe" and not settings.STRIPE_WEBHOOK_SECRET:
    logging.warning("STRIPE_WEBHOOK_SECRET is not set. The Stripe webhook will reject every event.")
if not settings.EMAIL_HOST_USER or not settings.EMAIL_HOST_PASSWORD or not settings.EMAIL_SENDER:
    logging.warning("Email credentials are not fully configured. Notifications may fail.")
