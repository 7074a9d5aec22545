from datetime import datetime, timedelta, timezone

import pytest

from conftest import add_admin, add_valet, run

from valetclock.auth.role_resolver import RoleResolver
from valetclock.models.account import ClockLocation
from valetclock.models.auth import DenialReason
from valetclock.services.clock_service import ClockService, pair_sessions
from valetclock.stores.document_store import CLOCK_INS_COLLECTION
from valetclock.utils.exceptions import AuthorizationError

LOCATION = ClockLocation(latitude=40.7128, longitude=-74.006, accuracy=12.0)


def _role(store, user_id):
    return run(RoleResolver(store).resolve_role(user_id))


def test_toggle_alternates_between_in_and_out(store, credentials):
    valet = _role(store, run(add_valet(store, credentials, "val@valet.co")))
    service = ClockService(store)

    first = run(service.toggle_clock(valet, LOCATION, {"platform": "test"}))
    second = run(service.toggle_clock(valet, LOCATION))

    assert first.action == "clock_in"
    assert first.valet_email == "val@valet.co"
    assert first.location["formatted"] == "40.712800, -74.006000"
    assert first.device_info == {"platform": "test"}
    assert second.action == "clock_out"
    assert [e.action for e in run(service.history(valet.user_id))] == ["clock_out", "clock_in"]


def test_deactivated_valet_cannot_clock(store, credentials):
    valet = _role(store, run(add_valet(store, credentials, "val@valet.co", is_active=False)))

    with pytest.raises(AuthorizationError) as exc_info:
        run(ClockService(store).toggle_clock(valet, LOCATION))

    assert exc_info.value.reason == DenialReason.DEACTIVATED


def test_dedicated_admin_can_clock_in(store, credentials):
    admin = _role(store, run(add_admin(store, credentials, "boss@valet.co")))
    service = ClockService(store)

    event = run(service.toggle_clock(admin, LOCATION))

    assert event.action == "clock_in"
    assert event.valet_id == admin.user_id
    assert event.valet_email == "boss@valet.co"
    assert run(service.last_event(admin.user_id)).id == event.id


def test_unknown_identity_cannot_clock(store):
    unknown = _role(store, "ghost")

    with pytest.raises(AuthorizationError) as exc_info:
        run(ClockService(store).toggle_clock(unknown, LOCATION))

    assert exc_info.value.reason == DenialReason.NOT_PROVISIONED


def test_history_limit_and_isolation(store, credentials):
    valet_id = run(add_valet(store, credentials, "val@valet.co"))
    for hour in range(8, 12):
        run(store.add_document(CLOCK_INS_COLLECTION, {
            "valetId": valet_id,
            "action": "clock_in" if hour % 2 == 0 else "clock_out",
            "timestamp": f"2026-05-04T{hour:02d}:00:00",
        }))
    run(store.add_document(CLOCK_INS_COLLECTION, {
        "valetId": "someone-else", "action": "clock_in", "timestamp": "2026-05-04T12:00:00",
    }))

    events = run(ClockService(store).history(valet_id, limit=2))

    assert [e.timestamp for e in events] == ["2026-05-04T11:00:00", "2026-05-04T10:00:00"]


def test_today_summary_pairs_events(store, credentials):
    valet_id = run(add_valet(store, credentials, "val@valet.co"))
    events = [
        ("clock_in", "2026-05-04T08:00:00"),
        ("clock_out", "2026-05-04T12:00:00"),
        ("clock_in", "2026-05-04T13:00:00"),
        # Yesterday's events are ignored
        ("clock_in", "2026-05-03T09:00:00"),
    ]
    for action, ts in events:
        run(store.add_document(CLOCK_INS_COLLECTION, {"valetId": valet_id, "action": action, "timestamp": ts}))

    summary = run(ClockService(store).today_summary(valet_id, now=datetime(2026, 5, 4, 14, 30)))

    assert summary == {"hours_worked": 5.5, "clock_ins": 2, "current_status": "clocked_in"}


def test_today_summary_empty(store):
    summary = run(ClockService(store).today_summary("nobody", now=datetime(2026, 5, 4, 14, 30)))

    assert summary == {"hours_worked": 0.0, "clock_ins": 0, "current_status": "clocked_out"}


def test_today_summary_accepts_aware_now(store, credentials):
    valet_id = run(add_valet(store, credentials, "val@valet.co"))
    for action, ts in [("clock_in", "2026-05-04T08:00:00"), ("clock_out", "2026-05-04T09:30:00Z")]:
        run(store.add_document(CLOCK_INS_COLLECTION, {"valetId": valet_id, "action": action, "timestamp": ts}))
    run(store.add_document(CLOCK_INS_COLLECTION, {
        "valetId": valet_id, "action": "clock_in", "timestamp": "2026-05-04T12:00:00",
    }))

    # 14:30 in UTC+2 is 12:30 UTC
    now = datetime(2026, 5, 4, 14, 30, tzinfo=timezone(timedelta(hours=2)))
    summary = run(ClockService(store).today_summary(valet_id, now=now))

    assert summary == {"hours_worked": 2.0, "clock_ins": 2, "current_status": "clocked_in"}


def test_pair_sessions_ignores_repeated_clock_in():
    events = [
        {"action": "clock_out", "timestamp": "2026-05-04T07:00:00"},
        {"action": "clock_in", "timestamp": "2026-05-04T08:00:00"},
        {"action": "clock_in", "timestamp": "2026-05-04T09:00:00"},
        {"action": "clock_out", "timestamp": "2026-05-04T10:00:00"},
        {"action": "clock_in", "timestamp": "2026-05-04T11:00:00"},
    ]

    sessions = pair_sessions(events, now=datetime(2026, 5, 4, 11, 30))

    assert [(s.clock_in, s.clock_out) for s in sessions] == [
        ("2026-05-04T08:00:00", "2026-05-04T10:00:00"),
        ("2026-05-04T11:00:00", None),
    ]
    assert [s.hours for s in sessions] == [2.0, 0.5]
    assert sessions[-1].open
