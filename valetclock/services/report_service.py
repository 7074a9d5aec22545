"""
Administrator reporting over clock events.

- time_report: per-valet hours, clock-ins and work sessions over a date range
- dashboard_stats: headcount plus today's clock-ins and hours
- live_activity: latest clock events and who is clocked in right now

Hours come from pairing clock-ins with the following clock-out (see
clock_service.pair_sessions); open sessions count up to `now`.
"""

from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..models.account import ClockEvent, ValetAccount
from ..models.auth import DenialReason, ResolvedRole, RoleKind
from ..stores.document_store import CLOCK_INS_COLLECTION, VALETS_COLLECTION, DocumentStore
from ..utils.exceptions import AuthorizationError
from ..utils.logger import get_logger
from .clock_service import day_bounds, pair_sessions, to_naive_utc

logger = get_logger(__name__)

DEFAULT_REPORT_DAYS = 7


class WorkSessionRow(BaseModel):
    clock_in: str
    clock_out: Optional[str] = None
    still_active: bool = False
    hours: float
    location: Optional[Dict[str, Any]] = None


class ValetReport(BaseModel):
    valet_id: str
    valet_email: Optional[str] = None
    total_hours: float
    total_clock_ins: int
    sessions: List[WorkSessionRow]


class TimeReport(BaseModel):
    start_date: date
    end_date: date
    valet_id: Optional[str] = None
    valets: List[ValetReport]


class DashboardStats(BaseModel):
    total_valets: int
    active_valets: int
    today_clock_ins: int
    total_hours_today: float


class ClockedInValet(BaseModel):
    valet_id: str
    email: str
    full_name: str
    last_clock_in: str
    location: Optional[Dict[str, Any]] = None


class LiveActivity(BaseModel):
    recent: List[ClockEvent]
    clocked_in: List[ClockedInValet]


def _require_report_access(actor: ResolvedRole) -> str:
    if actor is None or not actor.is_admin_equivalent:
        raise AuthorizationError("Administrator access required", reason=DenialReason.NOT_ADMIN)
    if actor.kind == RoleKind.ADMIN and not actor.profile.permissions.view_reports:
        raise AuthorizationError("Reports are not enabled for this administrator", reason=DenialReason.NOT_ADMIN)
    return actor.user_id


def summarize_by_valet(events: List[Dict[str, Any]], now: datetime) -> List[ValetReport]:
    """Group ascending clock events by valet and total each group's hours"""
    groups: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    for doc in events:
        groups.setdefault(doc.get("valetId"), []).append(doc)

    reports = []
    for valet_id, docs in groups.items():
        sessions = pair_sessions(docs, now)
        reports.append(ValetReport(
            valet_id=valet_id,
            valet_email=next((d.get("valetEmail") for d in docs if d.get("valetEmail")), None),
            total_hours=round(sum(s.hours for s in sessions), 2),
            total_clock_ins=sum(1 for d in docs if d.get("action") == "clock_in"),
            sessions=[
                WorkSessionRow(
                    clock_in=s.clock_in,
                    clock_out=s.clock_out,
                    still_active=s.open,
                    hours=round(s.hours, 2),
                    location=s.location,
                )
                for s in sessions
            ],
        ))
    return reports


class ReportService:
    """Read-only views over valets and clock events for administrators"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def _events_between(
        self, start: datetime, end: datetime, valet_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        filters = [("timestamp", ">=", start.isoformat()), ("timestamp", "<", end.isoformat())]
        if valet_id:
            filters.insert(0, ("valetId", "==", valet_id))
        return await self.store.query_collection(
            CLOCK_INS_COLLECTION, filters=filters, ordering=[("timestamp", "asc")]
        )

    async def time_report(
        self,
        actor: ResolvedRole,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        valet_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TimeReport:
        """
        Hours per valet between two dates, both inclusive.

        Defaults to the last seven days ending today.
        """
        actor_id = _require_report_access(actor)
        now = to_naive_utc(now or datetime.utcnow())
        end_date = end_date or now.date()
        start_date = start_date or end_date - timedelta(days=DEFAULT_REPORT_DAYS)
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date")

        start = datetime.combine(start_date, time.min)
        end = datetime.combine(end_date, time.min) + timedelta(days=1)
        events = await self._events_between(start, end, valet_id)
        report = TimeReport(
            start_date=start_date,
            end_date=end_date,
            valet_id=valet_id,
            valets=summarize_by_valet(events, now),
        )
        logger.info(
            "Time report generated",
            by=actor_id,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            valets=len(report.valets),
        )
        return report

    async def dashboard_stats(self, actor: ResolvedRole, now: Optional[datetime] = None) -> DashboardStats:
        _require_report_access(actor)
        now = to_naive_utc(now or datetime.utcnow())
        valets = await self.store.query_collection(VALETS_COLLECTION)
        start, end = day_bounds(now)
        today = summarize_by_valet(await self._events_between(start, end), now)
        return DashboardStats(
            total_valets=len(valets),
            # A missing isActive counts as active
            active_valets=sum(1 for v in valets if v.get("isActive") is not False),
            today_clock_ins=sum(r.total_clock_ins for r in today),
            total_hours_today=round(sum(r.total_hours for r in today), 2),
        )

    async def live_activity(self, actor: ResolvedRole, limit: int = 10) -> LiveActivity:
        """The latest `limit` clock events and every valet whose last action is a clock-in"""
        _require_report_access(actor)
        recent_docs = await self.store.query_collection(
            CLOCK_INS_COLLECTION, ordering=[("timestamp", "desc")], limit=limit
        )
        recent = [ClockEvent.from_document(d.pop("id"), d) for d in recent_docs]

        clocked_in = []
        for doc in await self.store.query_collection(VALETS_COLLECTION):
            valet = ValetAccount.from_document(doc.pop("id"), doc)
            last = await self.store.query_collection(
                CLOCK_INS_COLLECTION,
                filters=[("valetId", "==", valet.id)],
                ordering=[("timestamp", "desc")],
                limit=1,
            )
            if last and last[0].get("action") == "clock_in":
                clocked_in.append(ClockedInValet(
                    valet_id=valet.id,
                    email=valet.email,
                    full_name=valet.full_name,
                    last_clock_in=last[0]["timestamp"],
                    location=last[0].get("location"),
                ))
        return LiveActivity(recent=recent, clocked_in=clocked_in)
