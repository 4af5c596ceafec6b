# utils/email_sender.py

import smtplib
import logging
from concurrent.futures import ThreadPoolExecutor
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr

from app.config import settings
from app.errors import NotificationFailure

CLINIC_NAME = "SidhaHealth Clinic"

EMAIL_SUBJECTS = {
    'operator_new_request': 'New Appointment Request',
    'operator_confirmed': 'Appointment Confirmed',
    'patient_confirmed': 'Appointment Confirmed',
    'patient_declined': 'Appointment Declined',
}

EMAIL_TEMPLATES = {
    'operator_new_request': """
New appointment request!

Name: {name}
Email: {email}
Phone: {phone}
Date: {date}
Time: {time}
Type: {consult_type}

Confirm: {confirm_link}
Decline: {decline_link}
""",
    'operator_confirmed': """
Appointment with {name} confirmed.

Date: {date}
Time: {final_time}
Type: {consult_type}
{join_line}""",
    'patient_confirmed': """
Hello {name},

Your appointment has been confirmed.

Date: {date}
Time: {final_time}
Fee: {currency} {amount}
{payment_line}
{CLINIC_NAME}
""",
    'patient_declined': """
Hello {name},

We are sorry, your appointment request for {date} at {time} was declined.

Reason: {decline_reason}

{CLINIC_NAME}
""",
}


def render_email(email_type: str, details: dict):
    """Returns (subject, body) for an email type. Raises KeyError on unknown types or missing fields."""
    subject = EMAIL_SUBJECTS[email_type]
    template = EMAIL_TEMPLATES[email_type]
    body = template.format(CLINIC_NAME=CLINIC_NAME, **details)
    return subject, body


def send_email(to_email: str, email_type: str, details: dict) -> bool:
    """
    Sends a plain-text email of the given type.

    Args:
        to_email (str): Recipient's email address.
        email_type (str): Key of EMAIL_TEMPLATES (e.g. 'operator_new_request', 'patient_confirmed').
        details (dict): Values used to fill the template (name, date, final_time, links...).

    Returns:
        bool: True when the SMTP server accepted the message.
    """
    if not settings.EMAIL_HOST or not settings.EMAIL_HOST_USER or not settings.EMAIL_HOST_PASSWORD:
        logging.error(
            "Email settings are incomplete. Check EMAIL_HOST, EMAIL_HOST_USER and EMAIL_HOST_PASSWORD.")
        return False

    try:
        subject, body = render_email(email_type, details)
    except KeyError as e:
        logging.error(
            f"Could not render email '{email_type}': missing key {e}. Available details: {list(details.keys())}")
        return False

    sender = settings.EMAIL_SENDER or settings.EMAIL_HOST_USER
    msg = MIMEMultipart()
    msg['From'] = formataddr((CLINIC_NAME, sender))
    msg['To'] = to_email
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        with smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(settings.EMAIL_HOST_USER, settings.EMAIL_HOST_PASSWORD)
            server.sendmail(sender, to_email, msg.as_string())
        logging.info(f"Email '{email_type}' sent to {to_email}.")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logging.error(f"Failed to send email '{email_type}' to {to_email}: {e}")
        return False


class EmailNotifier:
    def send(self, to_email: str, email_type: str, details: dict):
        if not send_email(to_email, email_type, details):
            raise NotificationFailure(f"Email '{email_type}' to {to_email} was not delivered.")


class BackgroundNotifier:
    """
    Runs another notifier on a thread pool so that callers never wait on
    SMTP. Failures are only logged.
    """

    def __init__(self, notifier=None, max_workers: int = None):
        self.notifier = notifier or EmailNotifier()
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.NOTIFICATION_WORKERS,
            thread_name_prefix="notifier",
        )

    def send(self, to_email: str, email_type: str, details: dict):
        future = self.executor.submit(self.notifier.send, to_email, email_type, details)
        future.add_done_callback(lambda f: self._log_failure(f, to_email, email_type))
        return future

    @staticmethod
    def _log_failure(future, to_email, email_type):
        error = future.exception()
        if error is not None:
            logging.error(f"Notification '{email_type}' to {to_email} failed: {error}")

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)
