"""In-process registry of live booking sessions with idle-time expiry."""

import logging
import time
import uuid
from dataclasses import dataclass, field

from flightdesk.config import settings
from flightdesk.services.booking_controller import BookingController

logger = logging.getLogger(__name__)


@dataclass
class BookingSession:
    id: str
    controller: BookingController
    created_at: float = field(default_factory=time.monotonic)
    last_seen_at: float = field(default_factory=time.monotonic)
    record_id: uuid.UUID | None = None  # set once the booking is saved
    record_error: str | None = None


class BookingSessionService:
    """Holds controllers keyed by session id. Sessions idle past the TTL are evicted."""

    def __init__(self, ttl_seconds: float | None = None, clock=time.monotonic):
        self._sessions: dict[str, BookingSession] = {}
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.booking_session_ttl_minutes * 60
        self._clock = clock

    def create(self, controller: BookingController) -> BookingSession:
        self.evict_expired()
        now = self._clock()
        session = BookingSession(id=str(uuid.uuid4()), controller=controller, created_at=now, last_seen_at=now)
        self._sessions[session.id] = session
        logger.info(f"Booking session {session.id} opened for itinerary {controller.itinerary.itinerary_code}")
        return session

    def get(self, session_id: str) -> BookingSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = self._clock()
        if now - session.last_seen_at > self._ttl:
            logger.info(f"Booking session {session_id} expired")
            del self._sessions[session_id]
            return None
        session.last_seen_at = now
        return session

    def discard(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.last_seen_at > self._ttl]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"Evicted {len(expired)} expired booking session(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


booking_session_service = BookingSessionService()
