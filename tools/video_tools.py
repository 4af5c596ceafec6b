# tools/video_tools.py

import secrets
import string
import logging
from typing import NamedTuple, Optional

from app.config import settings

ROOM_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
ROOM_SUFFIX_LENGTH = 10


class VideoRoom(NamedTuple):
    room_name: str
    join_url: str


class JitsiRoomProvisioner:
    """
    Jitsi rooms need no API call: any unused name is a room. Uniqueness comes
    from a random suffix appended to a fixed namespace prefix.
    """

    def __init__(self, prefix: Optional[str] = None, base_url: Optional[str] = None, suffix_length: int = ROOM_SUFFIX_LENGTH):
        if suffix_length < 8:
            raise ValueError("Room suffix must be at least 8 characters long.")
        self.prefix = prefix or settings.VIDEO_ROOM_PREFIX
        self.base_url = (base_url or settings.VIDEO_BASE_URL).rstrip("/")
        self.suffix_length = suffix_length

    def provision(self, appointment_id: str) -> VideoRoom:
        suffix = "".join(secrets.choice(ROOM_SUFFIX_ALPHABET) for _ in range(self.suffix_length))
        room_name = f"{self.prefix}-{suffix}"
        logging.info(f"Video room {room_name} allocated for appointment {appointment_id}.")
        return VideoRoom(room_name=room_name, join_url=f"{self.base_url}/{room_name}")
