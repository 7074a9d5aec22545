"""Clock-in / clock-out records for valets"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..models.account import ClockEvent, ClockLocation, utcnow_iso
from ..models.auth import DenialReason, ResolvedRole, RoleKind
from ..stores.document_store import CLOCK_INS_COLLECTION, DocumentStore
from ..utils.exceptions import AuthorizationError
from ..utils.logger import get_logger

logger = get_logger(__name__)


def to_naive_utc(dt: datetime) -> datetime:
    """Stored timestamps are naive UTC; convert aware datetimes to match"""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_timestamp(ts: str) -> datetime:
    return to_naive_utc(datetime.fromisoformat(ts.replace("Z", "+00:00")))


@dataclass
class WorkSession:
    """One clock-in and the clock-out that closed it (None while still clocked in)"""
    clock_in: str
    clock_out: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    hours: float = 0.0

    @property
    def open(self) -> bool:
        return self.clock_out is None


def pair_sessions(events: Iterable[Dict[str, Any]], now: datetime) -> List[WorkSession]:
    """
    Pair each clock-in with the next clock-out of the same valet.

    `events` must be in ascending timestamp order. A clock-in while already
    clocked in is ignored; an open session counts up to `now`.
    """
    now = to_naive_utc(now)
    sessions: List[WorkSession] = []
    current: Optional[WorkSession] = None
    for doc in events:
        action = doc.get("action")
        if action == "clock_in" and current is None:
            current = WorkSession(clock_in=doc["timestamp"], location=doc.get("location"))
            sessions.append(current)
        elif action == "clock_out" and current is not None:
            current.clock_out = doc["timestamp"]
            current.hours = (parse_timestamp(current.clock_out) - parse_timestamp(current.clock_in)).total_seconds() / 3600
            current = None
    if current is not None:
        current.hours = max(0.0, (now - parse_timestamp(current.clock_in)).total_seconds() / 3600)
    return sessions


def day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    start = to_naive_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


class ClockService:
    """Records geotagged clock events; writes require an active valet or an administrator"""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def _clocking_account(role: ResolvedRole) -> Tuple[str, str]:
        """(user id, email) to record against; administrators clock in like active valets"""
        profile = role.profile if role is not None else None
        if profile is None or role.kind == RoleKind.UNKNOWN:
            raise AuthorizationError("No account found for this user", reason=DenialReason.NOT_PROVISIONED)
        if not role.is_active:
            raise AuthorizationError("Your account has been deactivated", reason=DenialReason.DEACTIVATED)
        return profile.id, profile.email

    async def last_event(self, valet_id: str) -> Optional[ClockEvent]:
        docs = await self.store.query_collection(
            CLOCK_INS_COLLECTION,
            filters=[("valetId", "==", valet_id)],
            ordering=[("timestamp", "desc")],
            limit=1,
        )
        if not docs:
            return None
        doc = docs[0]
        return ClockEvent.from_document(doc.pop("id"), doc)

    async def toggle_clock(
        self,
        role: ResolvedRole,
        location: ClockLocation,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> ClockEvent:
        """Clock in when the last event is missing or a clock-out, otherwise clock out"""
        user_id, email = self._clocking_account(role)
        last = await self.last_event(user_id)
        action = "clock_in" if last is None or last.action == "clock_out" else "clock_out"

        fields = {
            "valetId": user_id,
            "valetEmail": email,
            "action": action,
            "timestamp": utcnow_iso(),
            "location": location.to_document(),
            "deviceInfo": device_info or {},
        }
        event_id = await self.store.add_document(CLOCK_INS_COLLECTION, fields)
        logger.info("Clock event recorded", valet_id=user_id, action=action)
        return ClockEvent.from_document(event_id, fields)

    async def history(self, valet_id: str, limit: int = 50) -> List[ClockEvent]:
        docs = await self.store.query_collection(
            CLOCK_INS_COLLECTION,
            filters=[("valetId", "==", valet_id)],
            ordering=[("timestamp", "desc")],
            limit=limit,
        )
        return [ClockEvent.from_document(d.pop("id"), d) for d in docs]

    async def today_summary(self, valet_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Hours worked today by pairing each clock-in with the next clock-out.
        An open clock-in counts up to `now`.
        """
        now = to_naive_utc(now or datetime.utcnow())
        start, end = day_bounds(now)
        docs = await self.store.query_collection(
            CLOCK_INS_COLLECTION,
            filters=[
                ("valetId", "==", valet_id),
                ("timestamp", ">=", start.isoformat()),
                ("timestamp", "<", end.isoformat()),
            ],
            ordering=[("timestamp", "asc")],
        )

        sessions = pair_sessions(docs, now)
        clocked_in = bool(sessions) and sessions[-1].open
        return {
            "hours_worked": round(sum(s.hours for s in sessions), 2),
            "clock_ins": sum(1 for d in docs if d.get("action") == "clock_in"),
            "current_status": "clocked_in" if clocked_in else "clocked_out",
        }
