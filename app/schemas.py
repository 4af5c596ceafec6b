# app/schemas.py

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator

from database.models import ConsultType

EMAIL_REGEX = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"


def is_valid_email(email: str) -> bool:
    return re.match(EMAIL_REGEX, email or "") is not None


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class BookingRequest(BaseModel):
    # Unknown fields (e.g. a client-supplied "amount") are dropped
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, description="Patient's full name")
    email: str = Field(..., description="Patient's email address")
    phone: Optional[str] = Field(None, validation_alias=AliasChoices("phone", "number"),
                                 description="Patient's phone number")
    date: Optional[str] = Field(None, description="Requested date, free text")
    time: Optional[str] = Field(None, description="Requested time, free text")
    consult_type: str = Field(..., validation_alias=AliasChoices("consultType", "consult_type"),
                              description="'online' or 'offline'")

    @field_validator("name", "phone", "date", "time", mode="before")
    @classmethod
    def strip_optional(cls, value):
        return _blank_to_none(value)

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, value):
        value = _blank_to_none(value)
        if value is None:
            raise ValueError("email is required")
        if not isinstance(value, str):
            raise ValueError("email must be a string")
        if not is_valid_email(value):
            raise ValueError("email is not a valid address")
        return value

    @field_validator("consult_type", mode="before")
    @classmethod
    def check_consult_type(cls, value):
        value = _blank_to_none(value)
        if value is None:
            raise ValueError("consultType is required")
        consult_type = ConsultType.parse(value)
        if consult_type is None:
            raise ValueError(f"consultType must be one of {[c.value for c in ConsultType]}")
        return consult_type.value
