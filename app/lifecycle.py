# app/lifecycle.py

import uuid
import logging
from typing import NamedTuple, Optional

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.errors import (
    AppointmentNotFound,
    IllegalStateError,
    ValidationError,
)
from app.schemas import BookingRequest
from database.models import Appointment, ConsultType

DEFAULT_DECLINE_REASON = "No reason given"
DECISION_ACTIONS = ("confirm", "decline")


class ConsultationAccess(NamedTuple):
    granted: bool
    reason: Optional[str] = None
    video_link: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    mode: Optional[str] = None

    def to_dict(self) -> dict:
        if not self.granted:
            return {"granted": False, "reason": self.reason}
        if self.mode == ConsultType.online.value:
            return {"granted": True, "mode": self.mode, "videoLink": self.video_link}
        return {"granted": True, "mode": self.mode, "date": self.date, "time": self.time}


def _format_validation_error(error: PydanticValidationError) -> str:
    messages = []
    for item in error.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "request"
        msg = item.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        messages.append(f"{field}: {msg}")
    return "; ".join(messages)


class AppointmentLifecycle:
    """
    The appointment state machine.

        requested -> confirmed | declined
        confirmed (online) -> awaiting payment -> payment complete
        confirmed (offline) is final, the fee is paid at the clinic

    State lives only in the store. Every transition re-reads the record,
    checks it, and writes through a guarded update so a concurrent
    transition on the same appointment cannot be applied twice.
    """

    def __init__(self, store, notifier, payment_provider, room_provisioner,
                 operator_email: Optional[str] = None, consultation_fee: Optional[int] = None,
                 base_url: Optional[str] = None, currency: Optional[str] = None):
        self.store = store
        self.notifier = notifier
        self.payment_provider = payment_provider
        self.room_provisioner = room_provisioner
        self.operator_email = operator_email or settings.DOCTOR_NOTIFICATION_EMAIL
        self.consultation_fee = consultation_fee if consultation_fee is not None else settings.CONSULTATION_FEE
        self.base_url = (base_url or settings.BACKEND_URL).rstrip("/")
        self.currency = currency or settings.CURRENCY

    # --- links ---

    def decision_link(self, appointment_id: str, action: str) -> str:
        return f"{self.base_url}/appointments/{appointment_id}/decision?action={action}"

    def payment_link(self, appointment_id: str) -> str:
        return f"{self.base_url}/appointments/{appointment_id}/payment"

    # --- queries ---

    def get(self, appointment_id: str) -> Appointment:
        appointment = self.store.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def get_decision(self, appointment_id: str, action: str) -> Appointment:
        """Record shown on the doctor's confirm/decline page, only while undecided."""
        if action not in DECISION_ACTIONS:
            raise ValidationError(f"action must be one of {list(DECISION_ACTIONS)}")
        appointment = self.get(appointment_id)
        self._ensure_undecided(appointment)
        return appointment

    def get_payment_instructions(self, appointment_id: str):
        appointment = self.get(appointment_id)
        self._ensure_payable(appointment)
        instructions = self.payment_provider.create_payment(
            appointment.id,
            appointment.amount,
            description=f"Consultation {appointment.id}",
        )
        return instructions, appointment

    def get_consultation_access(self, appointment_id: str) -> ConsultationAccess:
        appointment = self.get(appointment_id)
        if not appointment.payment_done:
            return ConsultationAccess(granted=False, reason="payment pending")
        if appointment.is_online:
            return ConsultationAccess(granted=True, mode=ConsultType.online.value,
                                      video_link=appointment.video_link)
        return ConsultationAccess(granted=True, mode=ConsultType.offline.value,
                                  date=appointment.date,
                                  time=appointment.final_time or appointment.time)

    # --- transitions ---

    def book(self, name=None, email=None, phone=None, date=None, time=None, consult_type=None, **extra) -> Appointment:
        """
        Creates a new appointment request and tells the operator about it.
        Extra keyword arguments (such as a client-supplied amount) are ignored.
        """
        try:
            request = BookingRequest.model_validate({
                "name": name,
                "email": email,
                "phone": phone,
                "date": date,
                "time": time,
                "consultType": consult_type,
            })
        except PydanticValidationError as e:
            raise ValidationError(_format_validation_error(e)) from e

        appointment = self.store.create(
            id=str(uuid.uuid4()),
            name=request.name,
            email=request.email,
            phone=request.phone,
            date=request.date,
            time=request.time,
            consult_type=request.consult_type,
            confirmed=False,
            declined=False,
            payment_done=False,
        )
        logging.info(f"Appointment {appointment.id} requested by {appointment.email} ({appointment.consult_type}).")

        self._notify(self.operator_email, "operator_new_request", {
            "name": appointment.name or "-",
            "email": appointment.email,
            "phone": appointment.phone or "-",
            "date": appointment.date or "-",
            "time": appointment.time or "-",
            "consult_type": appointment.consult_type,
            "confirm_link": self.decision_link(appointment.id, "confirm"),
            "decline_link": self.decision_link(appointment.id, "decline"),
        })
        return appointment

    def confirm(self, appointment_id: str, final_time: str) -> Appointment:
        if final_time is not None and not isinstance(final_time, str):
            raise ValidationError("finalTime must be text.")
        final_time = (final_time or "").strip()
        if not final_time:
            raise ValidationError("finalTime is required to confirm an appointment.")

        appointment = self.get(appointment_id)
        self._ensure_undecided(appointment)

        updates = {
            "confirmed": True,
            "final_time": final_time,
            "amount": self.consultation_fee,
        }
        if appointment.is_online:
            room = self.room_provisioner.provision(appointment.id)
            updates.update({
                "video_room": room.room_name,
                "video_link": room.join_url,
                "payment_link": self.payment_link(appointment.id),
                "payment_done": False,
            })
        else:
            updates["payment_done"] = True

        updated = self.store.update_if(appointment.id, updates, confirmed=False, declined=False)
        if updated is None:
            self._raise_lost_race(appointment.id, self._ensure_undecided)
        logging.info(f"Appointment {updated.id} confirmed for {final_time} ({updated.consult_type}).")

        self._notify_confirmation(updated)
        return updated

    def decline(self, appointment_id: str, reason: Optional[str] = None) -> Appointment:
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be text.")
        appointment = self.get(appointment_id)
        self._ensure_undecided(appointment)

        reason = (reason or "").strip() or DEFAULT_DECLINE_REASON
        updated = self.store.update_if(
            appointment.id,
            {"declined": True, "decline_reason": reason},
            confirmed=False,
            declined=False,
        )
        if updated is None:
            self._raise_lost_race(appointment.id, self._ensure_undecided)
        logging.info(f"Appointment {updated.id} declined: {reason}")

        self._notify(updated.email, "patient_declined", {
            "name": updated.name or "there",
            "date": updated.date or "-",
            "time": updated.time or "-",
            "decline_reason": reason,
        })
        return updated

    def complete_payment(self, appointment_id: str) -> Appointment:
        """
        Marks an online consultation as paid. The caller's word is trusted;
        calling it again on a paid appointment changes nothing.
        """
        appointment = self.get(appointment_id)
        self._ensure_payable(appointment)
        if appointment.payment_done:
            logging.info(f"Appointment {appointment.id} was already paid.")
            return appointment

        updated = self.store.update_if(
            appointment.id,
            {"payment_done": True},
            confirmed=True,
            declined=False,
            consult_type=ConsultType.online.value,
        )
        if updated is None:
            self._raise_lost_race(appointment.id, self._ensure_payable)
        logging.info(f"Payment recorded for appointment {updated.id}.")
        return updated

    # --- guards ---

    @staticmethod
    def _ensure_undecided(appointment: Appointment):
        if appointment.declined:
            raise IllegalStateError("This appointment was already declined.",
                                    code=IllegalStateError.ALREADY_DECLINED)
        if appointment.confirmed:
            raise IllegalStateError("This appointment is already confirmed.",
                                    code=IllegalStateError.ALREADY_CONFIRMED)

    @staticmethod
    def _ensure_payable(appointment: Appointment):
        if appointment.declined:
            raise IllegalStateError("This appointment was declined.",
                                    code=IllegalStateError.ALREADY_DECLINED)
        if not appointment.confirmed:
            raise IllegalStateError("This appointment has not been confirmed yet.",
                                    code=IllegalStateError.NOT_CONFIRMED)
        if not appointment.is_online:
            raise IllegalStateError("Offline consultations are paid at the clinic.",
                                    code=IllegalStateError.PAYMENT_NOT_REQUIRED)

    def _raise_lost_race(self, appointment_id: str, guard):
        """The guarded write matched nothing: find out what changed and report it."""
        current = self.get(appointment_id)
        logging.warning(f"Appointment {appointment_id} changed while it was being updated.")
        guard(current)
        raise IllegalStateError("The appointment changed while it was being updated. Please reload.")

    # --- notifications ---

    def _notify_confirmation(self, appointment: Appointment):
        if appointment.is_online:
            payment_line = f"Pay now: {appointment.payment_link}\n"
            join_line = f"Join: {appointment.video_link}\n"
        else:
            payment_line = "Please pay at the clinic on the day of your visit.\n"
            join_line = ""

        self._notify(appointment.email, "patient_confirmed", {
            "name": appointment.name or "there",
            "date": appointment.date or "-",
            "final_time": appointment.final_time,
            "amount": appointment.amount,
            "currency": self.currency,
            "payment_line": payment_line,
        })
        self._notify(self.operator_email, "operator_confirmed", {
            "name": appointment.name or appointment.email,
            "date": appointment.date or "-",
            "final_time": appointment.final_time,
            "consult_type": appointment.consult_type,
            "join_line": join_line,
        })

    def _notify(self, to_email: str, email_type: str, details: dict):
        try:
            self.notifier.send(to_email, email_type, details)
        except Exception as e:
            logging.error(f"Notification '{email_type}' to {to_email} failed: {e}", exc_info=True)
