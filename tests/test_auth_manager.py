import json
import time

import pytest

from braidr.core.auth import get_token_subject
from braidr.core.exceptions import StorageError
from braidr.db.storage import AUTH_TOKENS_KEY, NEEDS_ONBOARDING_KEY, USER_KEY
from braidr.schemas.auth import AuthState
from braidr.schemas.user import ProfileUpdate, UserRole

from fake_backends import register_account

# Test data
test_customer = {
    "email": "jane@example.com",
    "password": "secret123",
    "role": "customer",
    "first_name": "Jane",
    "last_name": "Doe",
}

test_stylist = {
    "email": "alice@example.com",
    "password": "braids4ever",
    "role": "stylist",
    "first_name": "Alice",
    "last_name": "Mensah",
}

def stored_tokens(storage):
    raw = storage.snapshot().get(AUTH_TOKENS_KEY)
    return json.loads(raw) if raw else None

def fail_writes_to(monkeypatch, storage, failing_key):
    original = storage.set_item

    async def set_item(key, value):
        if key == failing_key:
            raise StorageError(f"Could not write {key}")
        await original(key, value)

    monkeypatch.setattr(storage, "set_item", set_item)

async def signed_in_manager(auth_stack, account):
    manager = auth_stack.build_manager()
    await manager.initialize()
    result = await manager.sign_in(account["email"], account["password"], account["role"])
    assert result.success, result.error
    await manager.wait_for_events()
    return manager

@pytest.mark.asyncio
async def test_initialize_without_session_is_unauthenticated(auth_stack):
    manager = auth_stack.build_manager()
    assert manager.state == AuthState.UNINITIALIZED

    result = await manager.initialize()

    assert result.success
    assert result.data is None
    assert manager.state == AuthState.UNAUTHENTICATED
    assert not manager.is_authenticated
    assert not manager.is_loading

@pytest.mark.asyncio
async def test_sign_up_customer_authenticates_and_requires_onboarding(auth_stack):
    manager = auth_stack.build_manager()
    await manager.initialize()

    result = await manager.sign_up("Jane", "Doe", "jane@example.com", "secret123", "customer")

    assert result.success, result.error
    assert result.message == "Account created"
    user = result.data
    assert user.role == UserRole.CUSTOMER
    assert user.fullName == "Jane Doe"
    assert user.isEmailVerified is False
    assert manager.state == AuthState.AUTHENTICATED
    assert manager.user == user
    assert manager.needs_onboarding

    # Profile row written with the identity user's id
    row = auth_stack.app.state.profiles[user.id]
    assert row["role"] == "customer"
    assert row["first_name"] == "Jane"

    snapshot = auth_stack.storage.snapshot()
    assert snapshot[NEEDS_ONBOARDING_KEY] == "true"
    cached = json.loads(snapshot[USER_KEY])
    assert cached["email"] == "jane@example.com"
    assert "session" not in cached
    assert stored_tokens(auth_stack.storage)["user"]["id"] == user.id

@pytest.mark.asyncio
async def test_sign_up_requiring_email_confirmation_stays_signed_out(auth_stack):
    auth_stack.app.state.autoconfirm = False
    manager = auth_stack.build_manager()
    await manager.initialize()

    result = await manager.sign_up("Jane", "Doe", "jane@example.com", "secret123", "customer")

    assert result.success
    assert "confirm" in result.message
    assert manager.state == AuthState.UNAUTHENTICATED
    assert manager.user is None
    assert stored_tokens(auth_stack.storage) is None
    assert auth_stack.storage.snapshot()[NEEDS_ONBOARDING_KEY] == "true"
    assert len(auth_stack.app.state.profiles) == 1

@pytest.mark.asyncio
async def test_sign_up_rejects_invalid_details_without_calling_provider(auth_stack):
    manager = auth_stack.build_manager()
    await manager.initialize()
    calls_before = list(auth_stack.app.state.calls)

    result = await manager.sign_up("  ", "Doe", "not-an-email", "123", "customer")

    assert not result.success
    assert "email" in result.error
    assert "password" in result.error
    assert manager.last_error == result.error
    assert auth_stack.app.state.calls == calls_before
    assert manager.state == AuthState.UNAUTHENTICATED

@pytest.mark.asyncio
async def test_sign_up_profile_failure_reports_partial_account(auth_stack):
    auth_stack.app.state.fail_profile_insert = True
    manager = auth_stack.build_manager()
    await manager.initialize()

    result = await manager.sign_up("Jane", "Doe", "jane@example.com", "secret123", "customer")

    assert not result.success
    assert "account was created" in result.error
    assert "permission denied" in result.error
    # The identity stays behind, no session is committed
    assert "jane@example.com" in auth_stack.app.state.identities
    assert manager.state == AuthState.UNAUTHENTICATED
    assert stored_tokens(auth_stack.storage) is None

@pytest.mark.asyncio
async def test_sign_in_with_matching_role(auth_stack):
    user_id = register_account(auth_stack.app, **test_customer)
    manager = await signed_in_manager(auth_stack, test_customer)

    assert manager.state == AuthState.AUTHENTICATED
    assert manager.user.id == user_id
    assert manager.user.session is not None
    assert get_token_subject(manager.user.session.accessToken) == user_id
    assert not manager.needs_onboarding

@pytest.mark.asyncio
async def test_sign_in_with_wrong_role_is_rejected(auth_stack):
    register_account(auth_stack.app, **test_customer)
    manager = auth_stack.build_manager()
    await manager.initialize()

    result = await manager.sign_in(test_customer["email"], test_customer["password"], "stylist")

    assert not result.success
    assert "registered as a customer" in result.error
    assert manager.state == AuthState.UNAUTHENTICATED
    assert manager.user is None
    assert stored_tokens(auth_stack.storage) is None
    assert USER_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_failed_sign_in_keeps_existing_session(auth_stack):
    stylist_id = register_account(auth_stack.app, **test_stylist)
    register_account(auth_stack.app, **test_customer)
    manager = await signed_in_manager(auth_stack, test_stylist)
    version_before = manager.version

    mismatch = await manager.sign_in(test_customer["email"], test_customer["password"], "stylist")
    bad_password = await manager.sign_in(test_stylist["email"], "wrong-password", "stylist")
    await manager.wait_for_events()

    assert not mismatch.success
    assert bad_password.error == "Invalid login credentials"
    assert manager.state == AuthState.AUTHENTICATED
    assert manager.user.id == stylist_id
    assert stored_tokens(auth_stack.storage)["user"]["id"] == stylist_id
    assert manager.version > version_before

@pytest.mark.asyncio
async def test_sign_in_succeeds_when_user_cache_write_fails(auth_stack, monkeypatch):
    user_id = register_account(auth_stack.app, **test_customer)
    manager = auth_stack.build_manager()
    await manager.initialize()
    fail_writes_to(monkeypatch, auth_stack.storage, USER_KEY)

    result = await manager.sign_in(test_customer["email"], test_customer["password"], "customer")
    await manager.wait_for_events()

    assert result.success, result.error
    assert manager.state == AuthState.AUTHENTICATED
    assert manager.user.id == user_id
    assert manager.last_error is None
    assert stored_tokens(auth_stack.storage)["user"]["id"] == user_id
    assert USER_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_sign_in_fails_cleanly_when_session_cannot_be_stored(auth_stack, monkeypatch):
    register_account(auth_stack.app, **test_customer)
    manager = auth_stack.build_manager()
    await manager.initialize()
    fail_writes_to(monkeypatch, auth_stack.storage, AUTH_TOKENS_KEY)

    result = await manager.sign_in(test_customer["email"], test_customer["password"], "customer")
    await manager.wait_for_events()

    assert not result.success
    assert manager.state == AuthState.UNAUTHENTICATED
    assert manager.user is None
    assert stored_tokens(auth_stack.storage) is None
    assert USER_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_sign_up_succeeds_when_user_cache_write_fails(auth_stack, monkeypatch):
    manager = auth_stack.build_manager()
    await manager.initialize()
    fail_writes_to(monkeypatch, auth_stack.storage, USER_KEY)

    result = await manager.sign_up("Jane", "Doe", "jane@example.com", "secret123", UserRole.CUSTOMER)
    await manager.wait_for_events()

    assert result.success, result.error
    assert manager.state == AuthState.AUTHENTICATED
    assert manager.user.id == result.data.id
    assert manager.needs_onboarding
    assert USER_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_sign_in_with_unknown_role_fails(auth_stack):
    manager = auth_stack.build_manager()
    await manager.initialize()

    result = await manager.sign_in("jane@example.com", "secret123", "admin")

    assert not result.success
    assert "admin" in result.error

@pytest.mark.asyncio
async def test_session_restored_after_restart(auth_stack):
    user_id = register_account(auth_stack.app, **test_customer)
    await signed_in_manager(auth_stack, test_customer)

    restarted = auth_stack.build_manager()
    result = await restarted.initialize()

    assert result.success
    assert result.data.id == user_id
    assert restarted.state == AuthState.AUTHENTICATED

@pytest.mark.asyncio
async def test_expired_session_is_refreshed_on_restore(auth_stack):
    register_account(auth_stack.app, **test_customer)
    await signed_in_manager(auth_stack, test_customer)
    tokens = stored_tokens(auth_stack.storage)
    tokens["expiresAt"] = int(time.time()) - 10
    await auth_stack.storage.set_item(AUTH_TOKENS_KEY, json.dumps(tokens))

    restarted = auth_stack.build_manager()
    result = await restarted.initialize()
    await restarted.wait_for_events()

    assert result.success
    assert restarted.state == AuthState.AUTHENTICATED
    refreshed = stored_tokens(auth_stack.storage)
    assert refreshed["refreshToken"] != tokens["refreshToken"]
    assert refreshed["expiresAt"] > time.time()
    assert restarted.user.session.accessToken == refreshed["accessToken"]

@pytest.mark.asyncio
async def test_restore_fails_closed_when_profile_lookup_errors(auth_stack):
    register_account(auth_stack.app, **test_customer)
    await signed_in_manager(auth_stack, test_customer)
    auth_stack.app.state.fail_profile_reads = True

    restarted = auth_stack.build_manager()
    result = await restarted.initialize()

    assert not result.success
    assert result.error == "Database is unavailable"
    assert restarted.state == AuthState.UNAUTHENTICATED
    assert restarted.user is None
    assert USER_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_restore_without_profile_row_is_signed_out(auth_stack):
    user_id = register_account(auth_stack.app, **test_customer)
    await signed_in_manager(auth_stack, test_customer)
    del auth_stack.app.state.profiles[user_id]

    restarted = auth_stack.build_manager()
    result = await restarted.initialize()

    assert result.success
    assert restarted.state == AuthState.UNAUTHENTICATED
    assert USER_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_restore_while_offline_is_signed_out(auth_stack):
    register_account(auth_stack.app, **test_customer)
    await signed_in_manager(auth_stack, test_customer)
    auth_stack.transport.offline = True

    restarted = auth_stack.build_manager()
    result = await restarted.initialize()

    assert not result.success
    assert restarted.state == AuthState.UNAUTHENTICATED

@pytest.mark.asyncio
async def test_sign_out_clears_everything(auth_stack):
    register_account(auth_stack.app, **test_customer)
    manager = await signed_in_manager(auth_stack, test_customer)
    await auth_stack.storage.set_item(NEEDS_ONBOARDING_KEY, "true")

    result = await manager.sign_out()
    await manager.wait_for_events()

    assert result.success
    assert ("POST", "/auth/v1/logout") in auth_stack.app.state.calls
    assert manager.state == AuthState.UNAUTHENTICATED
    assert manager.user is None
    assert not manager.needs_onboarding
    snapshot = auth_stack.storage.snapshot()
    for key in (USER_KEY, NEEDS_ONBOARDING_KEY, AUTH_TOKENS_KEY):
        assert key not in snapshot

@pytest.mark.asyncio
async def test_sign_out_succeeds_locally_when_provider_unreachable(auth_stack):
    register_account(auth_stack.app, **test_customer)
    manager = await signed_in_manager(auth_stack, test_customer)
    auth_stack.transport.fail_paths.add("/auth/v1/logout")

    result = await manager.sign_out()

    assert result.success
    assert manager.state == AuthState.UNAUTHENTICATED
    assert stored_tokens(auth_stack.storage) is None
    assert USER_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_sign_out_then_sign_in_ends_authenticated(auth_stack):
    """
    A SIGNED_OUT event that is applied after the next sign-in must not
    log the new session out.
    """
    user_id = register_account(auth_stack.app, **test_customer)
    manager = await signed_in_manager(auth_stack, test_customer)

    await manager.sign_out()
    result = await manager.sign_in(test_customer["email"], test_customer["password"], "customer")
    await manager.wait_for_events()

    assert result.success
    assert manager.state == AuthState.AUTHENTICATED
    assert manager.user.id == user_id

@pytest.mark.asyncio
async def test_revoked_session_signs_out_through_event(auth_stack):
    register_account(auth_stack.app, **test_customer)
    manager = await signed_in_manager(auth_stack, test_customer)
    await manager.wait_for_events()

    # Revoke the refresh token and let the access token lapse
    auth_stack.app.state.refresh_tokens.clear()
    tokens = stored_tokens(auth_stack.storage)
    tokens["expiresAt"] = int(time.time()) - 10
    await auth_stack.storage.set_item(AUTH_TOKENS_KEY, json.dumps(tokens))

    identity = manager._identity
    assert await identity.get_session() is None
    await manager.wait_for_events()

    assert manager.state == AuthState.UNAUTHENTICATED
    assert manager.user is None
    assert USER_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_state_versions_increase_monotonically(auth_stack):
    register_account(auth_stack.app, **test_customer)
    manager = auth_stack.build_manager()
    seen = []
    unsubscribe = manager.subscribe(lambda snapshot: seen.append(snapshot))

    await manager.initialize()
    await manager.sign_in(test_customer["email"], test_customer["password"], "customer")
    await manager.sign_out()
    await manager.wait_for_events()
    unsubscribe()

    versions = [snapshot.version for snapshot in seen]
    assert versions == sorted(versions)
    assert len(set(versions)) == len(versions)
    assert seen[-1].state == AuthState.UNAUTHENTICATED
    assert any(snapshot.isLoading for snapshot in seen)

@pytest.mark.asyncio
async def test_complete_onboarding_clears_flag(auth_stack):
    manager = auth_stack.build_manager()
    await manager.initialize()
    await manager.sign_up("Jane", "Doe", "jane@example.com", "secret123", "customer")
    assert manager.needs_onboarding

    result = await manager.complete_onboarding()

    assert result.success
    assert not manager.needs_onboarding
    assert NEEDS_ONBOARDING_KEY not in auth_stack.storage.snapshot()

@pytest.mark.asyncio
async def test_refresh_profile_replaces_user_snapshot(auth_stack):
    user_id = register_account(auth_stack.app, **test_customer)
    manager = await signed_in_manager(auth_stack, test_customer)
    before = manager.user
    auth_stack.app.state.profiles[user_id]["first_name"] = "Janet"

    result = await manager.refresh_profile()

    assert result.success
    assert manager.user.firstName == "Janet"
    assert manager.user.fullName == "Janet Doe"
    assert manager.user is not before
    assert before.firstName == "Jane"

@pytest.mark.asyncio
async def test_refresh_profile_when_signed_out_is_noop(auth_stack):
    manager = auth_stack.build_manager()
    await manager.initialize()
    version = manager.version

    result = await manager.refresh_profile()

    assert result.success
    assert result.data is None
    assert manager.version == version

@pytest.mark.asyncio
async def test_update_profile(auth_stack):
    user_id = register_account(auth_stack.app, **test_customer)
    manager = await signed_in_manager(auth_stack, test_customer)

    result = await manager.update_profile(ProfileUpdate(phone="+15555550100"))

    assert result.success, result.error
    assert manager.user.phone == "+15555550100"
    assert auth_stack.app.state.profiles[user_id]["phone"] == "+15555550100"
