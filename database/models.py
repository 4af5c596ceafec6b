# database/models.py

import enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Boolean, Integer, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class ConsultType(enum.Enum):
    online = "online"
    offline = "offline"

    @classmethod
    def parse(cls, value):
        """Case-insensitive lookup. Returns None for unknown values."""
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class AppointmentStatus(enum.Enum):
    requested = "requested"
    declined = "declined"
    confirmed = "confirmed"  # offline, paid at the clinic
    awaiting_payment = "awaiting_payment"
    payment_complete = "payment_complete"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    date = Column(String, nullable=True)
    time = Column(String, nullable=True)
    consult_type = Column(String(16), nullable=False)

    confirmed = Column(Boolean, default=False, nullable=False)
    declined = Column(Boolean, default=False, nullable=False)
    final_time = Column(String, nullable=True)
    decline_reason = Column(String, nullable=True)
    amount = Column(Integer, nullable=True)

    payment_done = Column(Boolean, default=False, nullable=False)
    video_room = Column(String, nullable=True)
    video_link = Column(String, nullable=True)
    payment_link = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_online(self) -> bool:
        return ConsultType.parse(self.consult_type) == ConsultType.online

    @property
    def status(self) -> AppointmentStatus:
        if self.declined:
            return AppointmentStatus.declined
        if not self.confirmed:
            return AppointmentStatus.requested
        if not self.is_online:
            return AppointmentStatus.confirmed
        if self.payment_done:
            return AppointmentStatus.payment_complete
        return AppointmentStatus.awaiting_payment

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "date": self.date,
            "time": self.time,
            "consultType": self.consult_type,
            "status": self.status.value,
            "confirmed": bool(self.confirmed),
            "declined": bool(self.declined),
            "finalTime": self.final_time,
            "declineReason": self.decline_reason,
            "amount": self.amount,
            "paymentDone": bool(self.payment_done),
            "videoRoom": self.video_room,
            "videoLink": self.video_link,
            "paymentLink": self.payment_link,
        }

    def __repr__(self):
        return (f"<Appointment(id={self.id}, name='{self.name}', "
                f"consult_type='{self.consult_type}', date={self.date}, "
                f"time={self.time}, status='{self.status.value}')>")
