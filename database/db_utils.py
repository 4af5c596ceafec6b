# database/db_utils.py

import os
import logging
from typing import Optional

from sqlalchemy import create_engine, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.errors import DependencyFailure
from database.models import Base, Appointment, utcnow

# Use DATABASE_URL (Railway/Heroku/Supabase), then the separate DB_* variables
# for PostgreSQL, and finally a local SQLite file
if settings.DATABASE_URL:
    SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL
elif settings.DB_HOST:
    SQLALCHEMY_DATABASE_URL = (
        f"postgresql://{settings.DB_USER}:{settings.DB_PASSWORD}@"
        f"{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
    )
else:
    db_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), "app.db")
    SQLALCHEMY_DATABASE_URL = f"sqlite:///{db_path}"


def build_engine(url: str):
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_db_and_tables(bind=None):
    """Creates the tables for every model if they do not exist yet."""
    Base.metadata.create_all(bind or engine)


class AppointmentStore:
    """
    Keyed persistence for appointments.

    Every write commits its own session. Transitions go through update_if,
    which only touches the row while the given column values still hold, so
    two racing transitions on the same appointment cannot both be applied.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def create(self, **fields) -> Appointment:
        db = self.session_factory()
        try:
            appointment = Appointment(**fields)
            db.add(appointment)
            db.commit()
            db.refresh(appointment)
            return appointment
        except SQLAlchemyError as e:
            db.rollback()
            logging.error(f"Failed to create appointment: {e}", exc_info=True)
            raise DependencyFailure("Could not save the appointment. Please try again later.") from e
        finally:
            db.close()

    def get(self, appointment_id: str) -> Optional[Appointment]:
        db = self.session_factory()
        try:
            return db.query(Appointment).filter(Appointment.id == appointment_id).first()
        except SQLAlchemyError as e:
            logging.error(f"Failed to fetch appointment {appointment_id}: {e}", exc_info=True)
            raise DependencyFailure("Could not read the appointment. Please try again later.") from e
        finally:
            db.close()

    def update_if(self, appointment_id: str, updates: dict, **expected) -> Optional[Appointment]:
        """
        Applies `updates` to the appointment only if every column named in
        `expected` still has the given value. Returns the updated record, or
        None when no row matched (unknown id or state changed in between).
        """
        conditions = [Appointment.id == appointment_id]
        for column, value in expected.items():
            conditions.append(getattr(Appointment, column) == value)

        values = dict(updates)
        values["updated_at"] = utcnow()

        db = self.session_factory()
        try:
            result = db.execute(
                update(Appointment)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount == 0:
                return None
            return db.query(Appointment).filter(Appointment.id == appointment_id).first()
        except SQLAlchemyError as e:
            db.rollback()
            logging.error(f"Failed to update appointment {appointment_id}: {e}", exc_info=True)
            raise DependencyFailure("Could not update the appointment. Please try again later.") from e
        finally:
            db.close()

    def upsert(self, fields: dict) -> Appointment:
        """Inserts or replaces a full record by id. Used by the legacy importer."""
        db = self.session_factory()
        try:
            appointment = db.merge(Appointment(**fields))
            db.commit()
            db.refresh(appointment)
            return appointment
        except SQLAlchemyError as e:
            db.rollback()
            logging.error(f"Failed to upsert appointment {fields.get('id')}: {e}", exc_info=True)
            raise DependencyFailure(f"Could not import appointment {fields.get('id')}.") from e
        finally:
            db.close()
