# tests/test_lifecycle.py

import re

import pytest

from app.errors import AppointmentNotFound, IllegalStateError, ValidationError
from app.lifecycle import DEFAULT_DECLINE_REASON
from database.db_utils import AppointmentStore
from database.models import AppointmentStatus

OPERATOR_EMAIL = "doctor@clinic.test"
BASE_URL = "https://api.clinic.test"
VIDEO_LINK_PATTERN = re.compile(r"^https://meet\.jit\.si/sidhahealth-[a-z0-9]{10}$")


# --- book ---

def test_book_creates_undecided_record(book, store):
    appointment = book()

    saved = store.get(appointment.id)
    assert saved.confirmed is False
    assert saved.declined is False
    assert saved.payment_done is False
    assert saved.final_time is None
    assert saved.amount is None
    assert saved.video_link is None
    assert saved.payment_link is None
    assert saved.status == AppointmentStatus.requested


def test_book_issues_unique_ids(book):
    ids = {book().id for _ in range(25)}
    assert len(ids) == 25


def test_book_normalizes_consult_type(book):
    assert book(consult_type="  ONLINE ").consult_type == "online"
    assert book(consult_type="Offline").consult_type == "offline"


def test_book_notifies_operator_with_decision_links(book, notifier):
    appointment = book()

    [(to_email, email_type, details)] = notifier.sent
    assert to_email == OPERATOR_EMAIL
    assert email_type == "operator_new_request"
    assert details["email"] == "a@x.com"
    assert details["confirm_link"] == f"{BASE_URL}/appointments/{appointment.id}/decision?action=confirm"
    assert details["decline_link"] == f"{BASE_URL}/appointments/{appointment.id}/decision?action=decline"


def test_book_survives_notification_failure(book, notifier, store):
    notifier.fail = True
    appointment = book()
    assert store.get(appointment.id) is not None


@pytest.mark.parametrize("overrides, field", [
    ({"email": ""}, "email"),
    ({"email": None}, "email"),
    ({"email": "not-an-email"}, "email"),
    ({"email": 123}, "email"),
    ({"consult_type": ""}, "consultType"),
    ({"consult_type": None}, "consultType"),
    ({"consult_type": "home-visit"}, "consultType"),
])
def test_book_rejects_invalid_input(book, notifier, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        book(**overrides)
    assert field in excinfo.value.message
    assert notifier.sent == []


def test_book_ignores_client_amount(book, lifecycle):
    appointment = book(amount=1)
    assert appointment.amount is None
    confirmed = lifecycle.confirm(appointment.id, "10:30 AM")
    assert confirmed.amount == 500


def test_book_only_requires_email_and_consult_type(lifecycle):
    appointment = lifecycle.book(email="a@x.com", consult_type="online", date="2024-06-01", time="10:00")
    assert appointment.name is None
    assert appointment.phone is None


# --- confirm ---

def test_confirm_online_provisions_room_and_payment_link(book, lifecycle):
    appointment = book("online")

    confirmed = lifecycle.confirm(appointment.id, "10:30 AM")

    assert confirmed.confirmed is True
    assert confirmed.final_time == "10:30 AM"
    assert confirmed.amount == 500
    assert VIDEO_LINK_PATTERN.match(confirmed.video_link)
    assert confirmed.video_link.endswith(confirmed.video_room)
    assert appointment.id in confirmed.payment_link
    assert confirmed.payment_done is False
    assert confirmed.status == AppointmentStatus.awaiting_payment


def test_confirm_offline_is_paid_at_clinic(book, lifecycle):
    appointment = book("offline")

    confirmed = lifecycle.confirm(appointment.id, "3 PM")

    assert confirmed.payment_done is True
    assert confirmed.video_room is None
    assert confirmed.video_link is None
    assert confirmed.payment_link is None
    assert confirmed.status == AppointmentStatus.confirmed


def test_confirm_notifies_patient_and_operator(book, lifecycle, notifier):
    appointment = book("online")
    notifier.sent.clear()

    confirmed = lifecycle.confirm(appointment.id, "10:30 AM")

    [(patient_to, _, patient_details)] = notifier.of_type("patient_confirmed")
    [(operator_to, _, operator_details)] = notifier.of_type("operator_confirmed")
    assert patient_to == "a@x.com"
    assert confirmed.payment_link in patient_details["payment_line"]
    assert operator_to == OPERATOR_EMAIL
    assert confirmed.video_link in operator_details["join_line"]


def test_confirm_offline_notifications_have_no_links(book, lifecycle, notifier):
    appointment = book("offline")
    notifier.sent.clear()

    lifecycle.confirm(appointment.id, "3 PM")

    [(_, _, patient_details)] = notifier.of_type("patient_confirmed")
    [(_, _, operator_details)] = notifier.of_type("operator_confirmed")
    assert "http" not in patient_details["payment_line"]
    assert operator_details["join_line"] == ""


def test_confirm_requires_final_time(book, lifecycle, store):
    appointment = book()
    with pytest.raises(ValidationError):
        lifecycle.confirm(appointment.id, "  ")
    assert store.get(appointment.id).confirmed is False


def test_confirm_rejects_non_text_final_time(book, lifecycle, store):
    appointment = book()
    with pytest.raises(ValidationError):
        lifecycle.confirm(appointment.id, 1030)
    assert store.get(appointment.id).confirmed is False


def test_confirm_unknown_id(lifecycle):
    with pytest.raises(AppointmentNotFound):
        lifecycle.confirm("does-not-exist", "10:00")


def test_confirm_twice_is_rejected(book, lifecycle, notifier):
    appointment = book("online")
    first = lifecycle.confirm(appointment.id, "10:30 AM")
    sent_before = len(notifier.sent)

    with pytest.raises(IllegalStateError) as excinfo:
        lifecycle.confirm(appointment.id, "11:00 AM")

    assert excinfo.value.code == IllegalStateError.ALREADY_CONFIRMED
    current = lifecycle.get(appointment.id)
    assert current.final_time == "10:30 AM"
    assert current.video_room == first.video_room
    assert len(notifier.sent) == sent_before


def test_confirm_survives_notification_failure(book, lifecycle, notifier):
    appointment = book("online")
    notifier.fail = True
    assert lifecycle.confirm(appointment.id, "10:30 AM").confirmed is True


# --- decline ---

def test_decline_sets_reason_and_notifies_patient_only(book, lifecycle, notifier):
    appointment = book()
    notifier.sent.clear()

    declined = lifecycle.decline(appointment.id, "fully booked")

    assert declined.declined is True
    assert declined.decline_reason == "fully booked"
    assert declined.status == AppointmentStatus.declined
    [(to_email, email_type, details)] = notifier.sent
    assert to_email == "a@x.com"
    assert email_type == "patient_declined"
    assert details["decline_reason"] == "fully booked"


def test_decline_without_reason_uses_placeholder(book, lifecycle):
    appointment = book()
    assert lifecycle.decline(appointment.id).decline_reason == DEFAULT_DECLINE_REASON
    assert DEFAULT_DECLINE_REASON == "No reason given"


def test_decline_rejects_non_text_reason(book, lifecycle, store):
    appointment = book()
    with pytest.raises(ValidationError):
        lifecycle.decline(appointment.id, 42)
    assert store.get(appointment.id).declined is False


def test_decline_then_confirm_is_rejected(book, lifecycle):
    appointment = book()
    lifecycle.decline(appointment.id, "fully booked")

    with pytest.raises(IllegalStateError) as excinfo:
        lifecycle.confirm(appointment.id, "10:00")

    assert excinfo.value.code == IllegalStateError.ALREADY_DECLINED
    current = lifecycle.get(appointment.id)
    assert current.confirmed is False
    assert current.decline_reason == "fully booked"
    assert current.video_link is None
    assert current.amount is None


def test_confirm_then_decline_is_rejected(book, lifecycle):
    appointment = book("online")
    confirmed = lifecycle.confirm(appointment.id, "10:30 AM")

    with pytest.raises(IllegalStateError) as excinfo:
        lifecycle.decline(appointment.id, "changed my mind")

    assert excinfo.value.code == IllegalStateError.ALREADY_CONFIRMED
    current = lifecycle.get(appointment.id)
    assert current.declined is False
    assert current.decline_reason is None
    assert current.video_link == confirmed.video_link


def test_decline_twice_is_rejected(book, lifecycle):
    appointment = book()
    lifecycle.decline(appointment.id, "fully booked")
    with pytest.raises(IllegalStateError) as excinfo:
        lifecycle.decline(appointment.id, "again")
    assert excinfo.value.code == IllegalStateError.ALREADY_DECLINED
    assert lifecycle.get(appointment.id).decline_reason == "fully booked"


def test_decline_unknown_id(lifecycle):
    with pytest.raises(AppointmentNotFound):
        lifecycle.decline("does-not-exist")


# --- concurrent transitions ---

class RacingStore(AppointmentStore):
    """Runs a competing write just before the next guarded update."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.race = None

    def update_if(self, appointment_id, updates, **expected):
        if self.race:
            race, self.race = self.race, None
            race(appointment_id)
        return super().update_if(appointment_id, updates, **expected)


def test_confirm_loses_race_against_decline(session_factory, lifecycle, notifier):
    racing_store = RacingStore(session_factory)
    lifecycle.store = racing_store
    appointment = lifecycle.book(email="a@x.com", consult_type="online")
    notifier.sent.clear()

    racing_store.race = lambda appointment_id: AppointmentStore(session_factory).update_if(
        appointment_id, {"declined": True, "decline_reason": "fully booked"}, confirmed=False, declined=False)

    with pytest.raises(IllegalStateError) as excinfo:
        lifecycle.confirm(appointment.id, "10:30 AM")

    assert excinfo.value.code == IllegalStateError.ALREADY_DECLINED
    current = lifecycle.get(appointment.id)
    assert current.confirmed is False
    assert current.video_link is None
    assert current.amount is None
    assert notifier.sent == []


def test_decline_loses_race_against_confirm(session_factory, lifecycle):
    racing_store = RacingStore(session_factory)
    lifecycle.store = racing_store
    appointment = lifecycle.book(email="a@x.com", consult_type="offline")

    racing_store.race = lambda appointment_id: AppointmentStore(session_factory).update_if(
        appointment_id, {"confirmed": True, "final_time": "3 PM", "amount": 500, "payment_done": True},
        confirmed=False, declined=False)

    with pytest.raises(IllegalStateError) as excinfo:
        lifecycle.decline(appointment.id, "fully booked")

    assert excinfo.value.code == IllegalStateError.ALREADY_CONFIRMED
    assert lifecycle.get(appointment.id).declined is False


# --- payment ---

def test_complete_payment_on_online_appointment(book, lifecycle, notifier):
    appointment = book("online")
    lifecycle.confirm(appointment.id, "10:30 AM")
    notifier.sent.clear()

    paid = lifecycle.complete_payment(appointment.id)

    assert paid.payment_done is True
    assert paid.status == AppointmentStatus.payment_complete
    assert notifier.sent == []


def test_complete_payment_is_idempotent(book, lifecycle):
    appointment = book("online")
    lifecycle.confirm(appointment.id, "10:30 AM")
    lifecycle.complete_payment(appointment.id)

    again = lifecycle.complete_payment(appointment.id)

    assert again.payment_done is True


def test_complete_payment_requires_confirmation(book, lifecycle):
    appointment = book("online")
    with pytest.raises(IllegalStateError) as excinfo:
        lifecycle.complete_payment(appointment.id)
    assert excinfo.value.code == IllegalStateError.NOT_CONFIRMED
    assert lifecycle.get(appointment.id).payment_done is False


def test_complete_payment_rejects_offline(book, lifecycle):
    appointment = book("offline")
    lifecycle.confirm(appointment.id, "3 PM")
    with pytest.raises(IllegalStateError) as excinfo:
        lifecycle.complete_payment(appointment.id)
    assert excinfo.value.code == IllegalStateError.PAYMENT_NOT_REQUIRED


def test_complete_payment_rejects_declined(book, lifecycle):
    appointment = book("online")
    lifecycle.decline(appointment.id)
    with pytest.raises(IllegalStateError):
        lifecycle.complete_payment(appointment.id)
    assert lifecycle.get(appointment.id).payment_done is False


def test_payment_instructions_use_stored_fee(book, lifecycle):
    appointment = book("online")
    lifecycle.confirm(appointment.id, "10:30 AM")

    instructions, record = lifecycle.get_payment_instructions(appointment.id)

    assert instructions.amount == 500
    assert instructions.payable_uri.startswith("upi://pay?pa=clinic@upi&pn=SidhaHealth&am=500&cu=INR")
    assert record.id == appointment.id


def test_payment_instructions_rejected_for_offline(book, lifecycle):
    appointment = book("offline")
    lifecycle.confirm(appointment.id, "3 PM")
    with pytest.raises(IllegalStateError):
        lifecycle.get_payment_instructions(appointment.id)


# --- consultation access ---

@pytest.mark.parametrize("consult_type", ["online", "offline"])
def test_access_denied_while_unpaid(book, lifecycle, consult_type):
    appointment = book(consult_type)
    access = lifecycle.get_consultation_access(appointment.id)
    assert access.granted is False
    assert access.reason == "payment pending"


def test_access_denied_for_declined(book, lifecycle):
    appointment = book("offline")
    lifecycle.decline(appointment.id)
    assert lifecycle.get_consultation_access(appointment.id).granted is False


def test_access_denied_for_confirmed_unpaid_online(book, lifecycle):
    appointment = book("online")
    lifecycle.confirm(appointment.id, "10:30 AM")
    assert lifecycle.get_consultation_access(appointment.id).granted is False


def test_access_unknown_id(lifecycle):
    with pytest.raises(AppointmentNotFound):
        lifecycle.get_consultation_access("does-not-exist")


# --- scenarios ---

def test_online_scenario(lifecycle):
    appointment = lifecycle.book(email="a@x.com", consult_type="online", date="2024-06-01", time="10:00")

    confirmed = lifecycle.confirm(appointment.id, "10:30 AM")
    assert confirmed.confirmed is True
    assert VIDEO_LINK_PATTERN.match(confirmed.video_link)
    assert appointment.id in confirmed.payment_link

    paid = lifecycle.complete_payment(appointment.id)
    assert paid.payment_done is True

    access = lifecycle.get_consultation_access(appointment.id)
    assert access.granted is True
    assert access.video_link == confirmed.video_link
    assert access.to_dict() == {"granted": True, "mode": "online", "videoLink": confirmed.video_link}


def test_offline_scenario(book, lifecycle):
    appointment = book("offline")

    confirmed = lifecycle.confirm(appointment.id, "3 PM")
    assert confirmed.payment_done is True
    assert confirmed.video_link is None

    access = lifecycle.get_consultation_access(appointment.id)
    assert access.granted is True
    assert access.video_link is None
    assert access.to_dict() == {"granted": True, "mode": "offline", "date": "2024-06-01", "time": "3 PM"}


def test_decline_scenario(book, lifecycle):
    appointment = book()
    declined = lifecycle.decline(appointment.id, "fully booked")
    assert declined.declined is True
    assert declined.decline_reason == "fully booked"
    with pytest.raises(IllegalStateError):
        lifecycle.confirm(appointment.id, "10:00")


# --- decision page ---

def test_get_decision_for_undecided_appointment(book, lifecycle):
    appointment = book()
    assert lifecycle.get_decision(appointment.id, "confirm").id == appointment.id


def test_get_decision_rejects_unknown_action(book, lifecycle):
    appointment = book()
    with pytest.raises(ValidationError):
        lifecycle.get_decision(appointment.id, "approve")


def test_get_decision_after_decision(book, lifecycle):
    appointment = book()
    lifecycle.decline(appointment.id)
    with pytest.raises(IllegalStateError):
        lifecycle.get_decision(appointment.id, "confirm")
