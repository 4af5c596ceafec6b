# import_appointments.py
#
# Imports appointments exported by the old JSON-file backend into the
# database. Usage:
#
#     python import_appointments.py [path/to/appointments.json]

import os
import sys
import json
import logging

from app.errors import DependencyFailure
from database.db_utils import AppointmentStore, create_db_and_tables
from database.models import ConsultType

logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')

DEFAULT_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "appointments.json")


def _first(raw: dict, *keys):
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def normalize_legacy_record(raw: dict) -> dict:
    """Maps a legacy record (camelCase or snake_case) onto the appointments table columns."""
    raw_consult_type = _first(raw, "consultType", "consult_type")
    consult_type = ConsultType.parse(raw_consult_type)
    if consult_type is None:
        logging.warning(f"Legacy record {raw.get('id')} has consultType {raw_consult_type!r}, importing it as offline.")
        consult_type = ConsultType.offline
    amount = _first(raw, "amount")
    return {
        "id": raw.get("id"),
        "name": raw.get("name"),
        "email": raw.get("email"),
        "phone": _first(raw, "phone", "number"),
        "date": raw.get("date") or None,
        "time": raw.get("time") or None,
        "consult_type": consult_type.value,
        "confirmed": bool(raw.get("confirmed")),
        "declined": bool(raw.get("declined")),
        "final_time": _first(raw, "finalTime", "final_time"),
        "decline_reason": _first(raw, "declineReason", "decline_reason"),
        "amount": int(amount) if amount is not None else None,
        "payment_done": bool(_first(raw, "paymentDone", "payment_done")),
        "video_room": _first(raw, "jitsiRoom", "jitsi_room", "videoRoom", "video_room"),
        "video_link": _first(raw, "videoLink", "video_link"),
        "payment_link": _first(raw, "paymentLink", "payment_link"),
    }


def load_legacy_records(parsed) -> list:
    """The export holds either a list or an id-keyed mapping under 'appointments'."""
    appointments = parsed.get("appointments") if isinstance(parsed, dict) else parsed
    if isinstance(appointments, dict):
        return list(appointments.values())
    return list(appointments or [])


def import_appointments(records: list, store: AppointmentStore) -> int:
    imported = 0
    for raw in records:
        row = normalize_legacy_record(raw)
        if not row["id"] or not row["email"]:
            logging.warning(f"Skipping legacy record without id or email: {raw}")
            continue
        try:
            store.upsert(row)
        except DependencyFailure as e:
            logging.error(f"Import error for {row['id']}: {e.message}")
            continue
        imported += 1
        logging.info(f"Migrated {row['id']}")
    return imported


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    path = argv[0] if argv else DEFAULT_PATH
    if not os.path.exists(path):
        logging.error(f"appointments.json not found at {path}")
        return 1

    with open(path, encoding="utf-8") as f:
        try:
            parsed = json.load(f)
        except json.JSONDecodeError as e:
            logging.error(f"Invalid JSON in {path}: {e}")
            return 1

    create_db_and_tables()
    imported = import_appointments(load_legacy_records(parsed), AppointmentStore())
    logging.info(f"Done migration. {imported} appointment(s) imported.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
