import asyncio
from datetime import datetime, timedelta

from conftest import PASSWORD, add_admin, add_valet, run

from valetclock.auth.session_controller import SessionController
from valetclock.models.auth import DenialReason, Destination, LoginErrorCode, RoleKind
from valetclock.stores.credential_store import LocalCredentialStore
from valetclock.stores.document_store import VALETS_COLLECTION, InMemoryDocumentStore
from valetclock.utils.exceptions import CredentialServiceError


async def _login(controller, email, password=PASSWORD):
    outcome = await controller.login(email, password)
    await controller.shutdown()
    return outcome


def test_missing_email(controller):
    outcome = run(_login(controller, "   "))

    assert not outcome.success
    assert outcome.error_code == LoginErrorCode.MISSING_EMAIL
    assert outcome.message == "Please enter your email address."
    assert outcome.destination == Destination.SIGN_IN


def test_wrong_password_offers_reset(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))

    outcome = run(_login(controller, "val@valet.co", "nope-nope"))

    assert not outcome.success
    assert outcome.error_code == LoginErrorCode.WRONG_PASSWORD
    assert outcome.offer_password_reset
    assert outcome.session is None


def test_unknown_email(controller):
    outcome = run(_login(controller, "nobody@valet.co"))

    assert outcome.error_code == LoginErrorCode.UNKNOWN_EMAIL
    assert not outcome.offer_password_reset


def test_disabled_credential(controller, store, credentials):
    valet_id = run(add_valet(store, credentials, "val@valet.co"))
    credentials.set_disabled(valet_id)

    outcome = run(_login(controller, "val@valet.co"))

    assert outcome.error_code == LoginErrorCode.ACCOUNT_DISABLED


def test_rate_limited_after_repeated_failures(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))

    async def scenario():
        for _ in range(credentials.max_failed_attempts):
            await controller.login("val@valet.co", "wrong-password")
        # Even the right password is refused while locked out
        return await controller.login("val@valet.co", PASSWORD)

    outcome = run(scenario())

    assert outcome.error_code == LoginErrorCode.RATE_LIMITED


def test_dedicated_admin_goes_to_admin_area(controller, store, credentials):
    admin_id = run(add_admin(store, credentials, "boss@valet.co"))

    async def scenario():
        outcome = await controller.login("boss@valet.co", PASSWORD)
        monitor = controller.monitor_for(outcome.session)
        await controller.shutdown()
        return outcome, monitor

    outcome, monitor = run(scenario())

    assert outcome.success
    assert outcome.destination == Destination.ADMIN_AREA
    assert outcome.session.user_id == admin_id
    assert outcome.session.role.kind == RoleKind.ADMIN
    assert controller.get_session(outcome.session.token) is outcome.session
    # Dedicated administrators are never polled
    assert monitor is None


def test_promoted_valet_goes_to_admin_area(controller, store, credentials):
    valet_id = run(add_valet(store, credentials, "lead@valet.co", is_admin=True))

    async def scenario():
        outcome = await controller.login("lead@valet.co", PASSWORD)
        monitored = controller.monitor_for(outcome.session) is not None
        await controller.shutdown()
        return outcome, monitored

    outcome, monitored = run(scenario())

    assert outcome.success
    assert outcome.destination == Destination.ADMIN_AREA
    assert monitored
    doc = run(store.get_document(VALETS_COLLECTION, valet_id))
    assert doc["lastLogin"]


def test_active_valet_goes_to_valet_area(controller, store, credentials):
    valet_id = run(add_valet(store, credentials, "val@valet.co"))

    outcome = run(_login(controller, "  VAL@valet.co "))

    assert outcome.success
    assert outcome.destination == Destination.VALET_AREA
    assert outcome.message == "Login successful!"
    assert run(store.get_document(VALETS_COLLECTION, valet_id))["lastLogin"]


def test_deactivated_valet_is_refused_and_signed_out(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co", is_active=False))

    outcome = run(_login(controller, "val@valet.co"))

    assert not outcome.success
    assert outcome.reason == DenialReason.DEACTIVATED
    assert outcome.destination == Destination.SIGN_IN
    assert outcome.message == "Your account has been deactivated. Please contact your administrator."
    assert outcome.session is None
    assert controller.sessions == {}
    assert credentials.sign_out_calls == 1


def test_deactivated_promoted_valet_is_refused(controller, store, credentials):
    run(add_valet(store, credentials, "lead@valet.co", is_active=False, is_admin=True))

    outcome = run(_login(controller, "lead@valet.co"))

    assert outcome.reason == DenialReason.DEACTIVATED


def test_unprovisioned_identity_is_refused(controller, credentials):
    run(credentials.create_user("ghost@valet.co", PASSWORD))

    outcome = run(_login(controller, "ghost@valet.co"))

    assert outcome.reason == DenialReason.NOT_PROVISIONED
    assert outcome.message == "Account not found in system. Please contact your administrator."
    assert credentials.sign_out_calls == 1


def test_lookup_failure_is_refused(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))
    store.failing = True

    outcome = run(_login(controller, "val@valet.co"))

    assert not outcome.success
    assert outcome.reason == DenialReason.LOOKUP_FAILED
    assert credentials.sign_out_calls == 1


def test_last_login_write_failure_does_not_block_login(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))
    store.fail_writes = True

    outcome = run(_login(controller, "val@valet.co"))

    assert outcome.success


def test_refresh_failure_aborts_login(controller, store, credentials, monkeypatch):
    run(add_valet(store, credentials, "val@valet.co"))

    async def broken_refresh(identity, force=False):
        raise CredentialServiceError("token endpoint down")

    monkeypatch.setattr(credentials, "refresh_token", broken_refresh)

    outcome = run(_login(controller, "val@valet.co"))

    assert not outcome.success
    assert outcome.error_code == LoginErrorCode.PROVIDER_UNAVAILABLE
    assert credentials.sign_out_calls == 1


def test_logout_clears_session_and_monitor(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))

    async def scenario():
        login = await controller.login("val@valet.co", PASSWORD)
        session = login.session
        first = await controller.logout(session)
        second = await controller.logout(session)
        return session, first, second

    session, first, second = run(scenario())

    assert first.success and second.success
    assert first.destination == Destination.SIGN_IN
    assert session.end_reason == DenialReason.SIGNED_OUT
    # Voluntary sign-out leaves no error notice behind
    assert session.notices == []
    assert controller.get_session(session.token) is None
    assert controller.monitor_for(session) is None


def test_logout_without_session():
    controller = SessionController(LocalCredentialStore(bcrypt_rounds=4), InMemoryDocumentStore())

    assert run(controller.logout(None)).success


def test_logout_provider_failure_still_clears_local_state(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))

    async def scenario():
        login = await controller.login("val@valet.co", PASSWORD)
        credentials.fail_sign_out = True
        return login.session, await controller.logout(login.session)

    session, outcome = run(scenario())

    assert not outcome.success
    assert outcome.error_code == LoginErrorCode.PROVIDER_ERROR
    assert not session.is_live
    assert controller.sessions == {}


def test_password_reset(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))

    sent = run(controller.request_password_reset("val@valet.co"))
    unknown = run(controller.request_password_reset("nobody@valet.co"))
    empty = run(controller.request_password_reset(""))

    assert sent.success
    assert sent.message == "Password reset email sent!"
    assert unknown.error_code == LoginErrorCode.UNKNOWN_EMAIL
    assert empty.error_code == LoginErrorCode.MISSING_EMAIL


def test_force_logout_is_idempotent(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))

    async def scenario():
        session = (await controller.login("val@valet.co", PASSWORD)).session
        first = await controller.force_logout(session, DenialReason.DEACTIVATED)
        second = await controller.force_logout(session, DenialReason.NOT_PROVISIONED)
        return session, first, second

    session, first, second = run(scenario())

    assert (first, second) == (True, False)
    assert session.end_reason == DenialReason.DEACTIVATED
    assert len(session.notices) == 1
    assert credentials.sign_out_calls == 1
    # The tombstone stays until the next request shows its notice
    assert controller.get_session(session.token) is session
    controller.discard(session)
    assert controller.get_session(session.token) is None


def test_expired_valet_session_is_ended_by_its_monitor(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))

    async def scenario():
        session = (await controller.login("val@valet.co", PASSWORD)).session
        session.expires_at = datetime.utcnow() - timedelta(hours=1)
        await asyncio.sleep(0.3)
        monitor = controller.monitor_for(session)
        await controller.shutdown()
        return session, monitor

    session, monitor = run(scenario())

    assert session.end_reason == DenialReason.EXPIRED
    assert monitor is None
    assert credentials.sign_out_calls == 1
    # Kept until the expiry notice is shown
    assert controller.get_session(session.token) is session


def test_sweep_expires_unpolled_sessions_and_drops_old_tombstones(controller, store, credentials):
    run(add_admin(store, credentials, "boss@valet.co"))
    controller.ended_session_ttl_seconds = 60

    async def scenario():
        session = (await controller.login("boss@valet.co", PASSWORD)).session
        session.expires_at = datetime.utcnow() - timedelta(minutes=5)
        removed_now = await controller.sweep()
        ended_reason = session.end_reason
        kept = controller.get_session(session.token) is session
        removed_later = await controller.sweep(now=datetime.utcnow() + timedelta(minutes=2))
        return session, removed_now, ended_reason, kept, removed_later

    session, removed_now, ended_reason, kept, removed_later = run(scenario())

    assert ended_reason == DenialReason.EXPIRED
    assert (removed_now, kept) == (0, True)
    assert removed_later == 1
    assert controller.get_session(session.token) is None


def test_login_sweeps_stale_tombstones(controller, store, credentials):
    run(add_valet(store, credentials, "val@valet.co"))

    async def scenario():
        first = (await controller.login("val@valet.co", PASSWORD)).session
        await controller.force_logout(first, DenialReason.DEACTIVATED)
        first.ended_at = datetime.utcnow() - timedelta(seconds=controller.ended_session_ttl_seconds + 1)
        second = (await controller.login("val@valet.co", PASSWORD)).session
        await controller.shutdown()
        return first, second

    first, second = run(scenario())

    assert controller.get_session(first.token) is None
    assert list(controller.sessions) == [second.token]
