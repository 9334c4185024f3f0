import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.dependencies import build_auth_runtime
from src.core.exceptions.base import (
    AuthRejectedError,
    InvalidInputError,
    InvalidTransitionError,
    NetworkError,
    UserRejectedError,
)
from src.core.service.auth.flow_controller import FORM_EMAIL_SIGNUP, AuthFlowController
from src.core.service.auth.models.account import ProfileUpdate
from src.core.service.auth.models.flow import AuthFlowState, NotificationLevel
from src.core.service.auth.models.session import AuthMethod, AuthSession
from src.core.service.wallet.environment import ClientEnvironment
from src.core.service.wallet.models import ConnectGuidance, WalletIdentity, WalletType
from src.core.service.wallet.providers import ACCOUNTS_CHANGED, CHAIN_CHANGED
from tests.conftest import DESKTOP_USER_AGENT, HOUR_MS

STORAGE_KEY = "defi-staking-auth"


async def ready(runtime):
    """Run the initial restore so the flow accepts user actions"""
    await runtime.controller.restore()
    runtime.controller.drain_notifications()
    return runtime.controller


def messages(controller):
    return [n.message for n in controller.drain_notifications()]


async def stored(storage):
    raw = await storage.get(STORAGE_KEY)
    return json.loads(raw) if raw else None


async def sign_up_alice(controller):
    controller.request_account_creation()
    await controller.connect_wallet(WalletType.METAMASK)
    controller.choose_signup()
    return await controller.sign_up("alice", "alice@example.com", "secret123", "Staking since genesis")


@pytest.mark.asyncio
class TestRestore:

    async def test_nothing_stored_leads_to_wallet_connect(self, runtime):
        session = await runtime.controller.restore()

        assert session is None
        assert runtime.controller.state == AuthFlowState.WALLET_CONNECT

    async def test_restore_is_idempotent(self, runtime, provider, wallet_account):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)

        first = await controller.restore()
        second = await controller.restore()

        assert controller.state == AuthFlowState.AUTHENTICATED
        assert first.address == second.address == wallet_account.address
        assert provider.listener_count(ACCOUNTS_CHANGED) == 1
        assert provider.listener_count(CHAIN_CHANGED) == 1
        assert provider.requests.count("eth_requestAccounts") == 1

    async def test_expired_session_is_cleared(self, runtime, storage, clock):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)
        clock.advance(24 * HOUR_MS + 1)

        session = await controller.restore()

        assert session is None
        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert await stored(storage) is None

    async def test_session_within_ttl_is_restored(self, runtime, clock):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)
        clock.advance(24 * HOUR_MS)

        session = await controller.restore()

        assert session is not None
        assert controller.state == AuthFlowState.AUTHENTICATED

    async def test_switched_account_forces_logout(self, runtime, storage, provider):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)
        provider.active_index = 1

        session = await controller.restore()

        assert session is None
        assert controller.session is None
        assert controller.connection is None
        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert await stored(storage) is None

    async def test_live_chain_updates_session_without_saving(self, runtime, storage, provider, wallet_account, clock):
        provider.authorized = True
        identity = WalletIdentity(address=wallet_account.address, chain_id=1, wallet_type=WalletType.METAMASK)
        await runtime.store.save(AuthSession.for_wallet(identity, clock()), WalletType.METAMASK)

        session = await runtime.controller.restore()

        assert session.chain_id == 1337
        assert (await stored(storage))["user"]["chainId"] == 1

    async def test_email_session_restores_without_wallet(self, runtime, backend, clock):
        account = await backend.signup("alice@example.com", "secret123", "alice")
        await runtime.store.save(AuthSession.for_account(account, clock()))

        session = await runtime.controller.restore()

        assert session.auth_method == AuthMethod.EMAIL
        assert runtime.controller.state == AuthFlowState.AUTHENTICATED

    async def test_storage_outage_is_reported(self, runtime, storage):
        storage.get = AsyncMock(side_effect=RedisConnectionError("connection refused"))

        session = await runtime.controller.restore()

        assert session is None
        assert runtime.controller.state == AuthFlowState.WALLET_CONNECT
        notifications = runtime.controller.drain_notifications()
        assert notifications[0].level == NotificationLevel.ERROR
        assert notifications[0].message == "Session storage is unavailable"

    async def test_expired_session_when_storage_delete_fails(self, runtime, storage, clock):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)
        controller.drain_notifications()
        clock.advance(24 * HOUR_MS + 1)
        storage.delete = AsyncMock(side_effect=RedisConnectionError("connection refused"))

        session = await controller.restore()

        assert session is None
        assert controller.session is None
        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert messages(controller) == ["Session storage is unavailable"]

    async def test_mismatch_when_storage_delete_fails(self, runtime, storage, provider):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)
        controller.drain_notifications()
        provider.active_index = 1
        storage.delete = AsyncMock(side_effect=RedisConnectionError("connection refused"))

        session = await controller.restore()

        assert session is None
        assert controller.session is None
        assert controller.connection is None
        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert messages(controller) == ["Session storage is unavailable"]


@pytest.mark.asyncio
class TestWalletConnect:

    async def test_wallet_only_access(self, runtime, storage, wallet_account):
        controller = await ready(runtime)

        connection = await controller.connect_wallet(WalletType.METAMASK)

        assert connection.address == wallet_account.address
        assert controller.state == AuthFlowState.AUTHENTICATED
        assert controller.session.wallet_only is True
        assert controller.session.display_name == f"Trader_{wallet_account.address[-6:].upper()}"
        record = await stored(storage)
        assert record["walletType"] == "metamask"
        assert record["user"]["address"] == wallet_account.address
        assert messages(controller) == [
            "Welcome! MetaMask connected successfully. You now have full access to the platform!"
        ]

    async def test_rejected_connection(self, runtime, storage, provider):
        controller = await ready(runtime)
        provider.approve_requests = False

        with pytest.raises(UserRejectedError):
            await controller.connect_wallet(WalletType.METAMASK)

        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert await stored(storage) is None
        notifications = controller.drain_notifications()
        assert notifications[0].level == NotificationLevel.INFO
        assert notifications[0].message == "Connection cancelled by user"

    async def test_missing_wallet_returns_guidance(self, storage, backend, clock):
        runtime = build_auth_runtime(
            storage,
            environment=ClientEnvironment(user_agent=DESKTOP_USER_AGENT),
            backend=backend,
            clock=clock,
            deep_link_timeout=0
        )
        controller = await ready(runtime)

        result = await controller.connect_wallet(WalletType.METAMASK)

        assert isinstance(result, ConnectGuidance)
        assert controller.state == AuthFlowState.WALLET_CONNECT
        notifications = controller.drain_notifications()
        assert notifications[0].level == NotificationLevel.WARNING
        assert notifications[0].message == "Please install MetaMask first"

    async def test_account_intent_routes_to_options(self, runtime, storage):
        controller = await ready(runtime)
        controller.request_account_creation()

        await controller.connect_wallet(WalletType.METAMASK)

        assert controller.state == AuthFlowState.AUTH_OPTIONS
        assert controller.session is None
        assert controller.account_intent is False
        assert await stored(storage) is None

    async def test_back_from_options_drops_connection(self, runtime):
        controller = await ready(runtime)
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)

        assert controller.back() == AuthFlowState.WALLET_CONNECT
        assert controller.connection is None

    async def test_actions_outside_their_state_are_refused(self, runtime):
        controller = await ready(runtime)

        with pytest.raises(InvalidTransitionError):
            controller.choose_signup()
        with pytest.raises(InvalidTransitionError):
            await controller.log_in("alice@example.com", "secret123")

    async def test_snapshot_exposes_identity_only(self, runtime, wallet_account):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)

        snapshot = controller.snapshot()

        assert snapshot.state == AuthFlowState.AUTHENTICATED
        assert snapshot.wallet.address == wallet_account.address
        assert snapshot.loading == {}


@pytest.mark.asyncio
class TestAccountFlows:

    async def test_signup_links_connected_wallet(self, runtime, storage, backend, wallet_account):
        controller = await ready(runtime)

        session = await sign_up_alice(controller)

        assert controller.state == AuthFlowState.AUTHENTICATED
        assert session.auth_method == AuthMethod.LINKED
        assert session.address == wallet_account.address
        assert session.username == "alice"
        assert session.wallet_only is False
        assert backend.current_user.is_linked_to(wallet_account.address)
        assert (await stored(storage))["user"]["authMethod"] == "linked"
        assert "Account created and wallet linked successfully!" in messages(controller)

    async def test_rejected_link_signature_keeps_account(self, runtime, provider, backend):
        controller = await ready(runtime)
        provider.approve_signatures = False

        session = await sign_up_alice(controller)

        assert controller.state == AuthFlowState.AUTHENTICATED
        assert session.auth_method == AuthMethod.EMAIL
        assert session.address is None
        assert backend.current_user.username == "alice"
        notifications = controller.drain_notifications()
        assert notifications[-1].level == NotificationLevel.WARNING
        assert notifications[-1].message == "Account created but wallet linking failed. You can link it later."

    @pytest.mark.parametrize("username,email,password,expected", [
        ("  ", "alice@example.com", "secret123", "Please enter a username"),
        ("alice", "", "secret123", "Please enter both email and password"),
        ("alice", "alice@example.com", "12345", "Password must be at least 6 characters long"),
    ])
    async def test_signup_validation(self, runtime, backend, username, email, password, expected):
        controller = await ready(runtime)
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_signup()
        controller.drain_notifications()

        with pytest.raises(InvalidInputError) as exc_info:
            await controller.sign_up(username, email, password)

        assert exc_info.value.message == expected
        assert controller.state == AuthFlowState.EMAIL_SIGNUP
        assert backend.current_user is None

    async def test_signup_with_taken_username(self, runtime, backend):
        await backend.signup("other@example.com", "secret123", "alice")
        await backend.logout()
        controller = await ready(runtime)
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_signup()

        with pytest.raises(InvalidInputError) as exc_info:
            await controller.sign_up("Alice", "alice@example.com", "secret123")

        assert exc_info.value.message == "Username is already taken"

    async def test_signup_without_wallet_returns_to_connect(self, runtime):
        controller = await ready(runtime)
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_signup()
        controller.drain_notifications()
        controller.connection = None

        result = await controller.sign_up("alice", "alice@example.com", "secret123")

        assert result is None
        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert messages(controller) == ["Please connect your wallet first"]

    async def test_concurrent_submission_is_ignored(self, runtime, backend):
        controller = await ready(runtime)
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_signup()

        gate = asyncio.Event()
        original_signup = backend.signup

        async def slow_signup(*args, **kwargs):
            await gate.wait()
            return await original_signup(*args, **kwargs)

        backend.signup = slow_signup
        first = asyncio.create_task(controller.sign_up("alice", "alice@example.com", "secret123"))
        await asyncio.sleep(0)

        assert controller.is_loading(FORM_EMAIL_SIGNUP) is True
        assert await controller.sign_up("alice", "alice@example.com", "secret123") is None

        gate.set()
        session = await first

        assert session.username == "alice"
        assert controller.is_loading(FORM_EMAIL_SIGNUP) is False

    async def test_account_switch_during_login_discards_result(self, runtime, storage, backend, provider):
        controller = await ready(runtime)
        await sign_up_alice(controller)
        await controller.logout()
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_login()
        controller.drain_notifications()
        runtime.watcher.reconnect_delay = 60

        gate = asyncio.Event()
        original_login = backend.login

        async def slow_login(*args, **kwargs):
            await gate.wait()
            return await original_login(*args, **kwargs)

        backend.login = slow_login
        pending = asyncio.create_task(controller.log_in("alice@example.com", "secret123"))
        await asyncio.sleep(0)

        await provider.switch_account(1)
        gate.set()
        session = await pending

        assert session is None
        assert controller.session is None
        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert await stored(storage) is None
        assert "Your wallet changed before the request finished. Please try again." in messages(controller)
        await runtime.watcher.stop()

    async def test_account_switch_during_save_is_not_persisted(self, runtime, storage, provider):
        controller = await ready(runtime)
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_signup()
        runtime.watcher.reconnect_delay = 60

        writing = asyncio.Event()
        gate = asyncio.Event()
        original_set = storage.set

        async def slow_set(*args, **kwargs):
            writing.set()
            await gate.wait()
            return await original_set(*args, **kwargs)

        storage.set = slow_set
        pending = asyncio.create_task(controller.sign_up("alice", "alice@example.com", "secret123"))
        await writing.wait()

        await provider.switch_account(1)
        gate.set()
        session = await pending

        assert session is None
        assert controller.session is None
        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert await stored(storage) is None
        assert controller.is_loading(FORM_EMAIL_SIGNUP) is False
        await runtime.watcher.stop()

    async def test_login_with_linked_wallet(self, runtime, wallet_account):
        controller = await ready(runtime)
        await sign_up_alice(controller)
        await controller.logout()

        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_login()
        session = await controller.log_in("alice@example.com", "secret123")

        assert session.auth_method == AuthMethod.LINKED
        assert session.address == wallet_account.address
        assert "Welcome back, alice!" in messages(controller)

    async def test_login_with_unlinked_account(self, runtime, backend):
        await backend.signup("bob@example.com", "secret123", "bob")
        await backend.logout()
        controller = await ready(runtime)
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_login()

        session = await controller.log_in("bob@example.com", "secret123")

        assert session.auth_method == AuthMethod.EMAIL
        assert session.address is None
        assert session.username == "bob"

    async def test_login_with_wrong_password(self, runtime, backend):
        await backend.signup("bob@example.com", "secret123", "bob")
        await backend.logout()
        controller = await ready(runtime)
        controller.request_account_creation()
        await controller.connect_wallet(WalletType.METAMASK)
        controller.choose_login()
        controller.drain_notifications()

        with pytest.raises(AuthRejectedError):
            await controller.log_in("bob@example.com", "wrong-password")

        assert controller.state == AuthFlowState.EMAIL_LOGIN
        assert messages(controller) == ["Invalid email or password"]

    async def test_link_wallet_to_email_session(self, runtime, provider, clock, wallet_account):
        controller = await ready(runtime)
        provider.approve_signatures = False
        await sign_up_alice(controller)
        provider.approve_signatures = True
        clock.advance(1000)

        session = await controller.link_wallet()

        assert session.auth_method == AuthMethod.LINKED
        assert session.address == wallet_account.address
        assert controller.state == AuthFlowState.AUTHENTICATED
        assert messages(controller)[-1] == "Wallet linked successfully!"

    async def test_link_wallet_requires_email_session(self, runtime):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)

        with pytest.raises(InvalidInputError):
            await controller.link_wallet()


@pytest.mark.asyncio
class TestUpgradeAndProfile:

    async def test_wallet_only_session_never_gains_account_fields(self, runtime):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)

        with pytest.raises(InvalidTransitionError):
            await controller.sign_up("alice", "alice@example.com", "secret123")

        controller.open_profile()
        with pytest.raises(InvalidInputError) as exc_info:
            await controller.update_profile(ProfileUpdate(username="alice"))

        assert exc_info.value.message == "Create an account to edit your profile"
        assert controller.session.wallet_only is True
        assert controller.session.username is None

    async def test_upgrade_then_cancel_keeps_wallet_session(self, runtime):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)
        wallet_session = controller.session

        assert controller.upgrade_account() == AuthFlowState.AUTH_OPTIONS
        assert controller.back() == AuthFlowState.AUTHENTICATED
        assert controller.session == wallet_session

    async def test_upgrade_to_linked_account(self, runtime, wallet_account):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)

        controller.upgrade_account()
        controller.choose_signup()
        session = await controller.sign_up("alice", "alice@example.com", "secret123")

        assert session.auth_method == AuthMethod.LINKED
        assert session.wallet_only is False
        assert session.can_upgrade_account is False
        assert session.address == wallet_account.address

    async def test_profile_update(self, runtime, storage):
        controller = await ready(runtime)
        await sign_up_alice(controller)
        controller.open_profile()

        session = await controller.update_profile(ProfileUpdate(username="alice2", bio="Validator"))

        assert controller.state == AuthFlowState.AUTHENTICATED
        assert session.username == "alice2"
        assert session.display_name == "alice2"
        assert session.bio == "Validator"
        assert (await stored(storage))["user"]["username"] == "alice2"
        assert messages(controller)[-1] == "Profile updated successfully!"

    async def test_profile_close(self, runtime):
        controller = await ready(runtime)
        await sign_up_alice(controller)

        assert controller.open_profile() == AuthFlowState.PROFILE
        assert controller.close_profile() == AuthFlowState.AUTHENTICATED


@pytest.mark.asyncio
class TestLogoutAndProviderEvents:

    async def test_logout_clears_everything(self, runtime, storage, backend, provider):
        controller = await ready(runtime)
        await sign_up_alice(controller)

        state = await controller.logout()

        assert state == AuthFlowState.WALLET_CONNECT
        assert controller.session is None
        assert controller.connection is None
        assert backend.current_user is None
        assert await stored(storage) is None
        assert provider.listener_count(ACCOUNTS_CHANGED) == 0
        assert messages(controller)[-1] == "Logged out successfully"

    async def test_logout_when_backend_fails(self, runtime, storage, backend):
        controller = await ready(runtime)
        await sign_up_alice(controller)
        backend.logout = AsyncMock(side_effect=NetworkError())

        await controller.logout()

        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert await stored(storage) is None

    async def test_account_switch_clears_session(self, runtime, storage):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)

        assert await controller.handle_account_switched(["0x2222222222222222222222222222222222222222"]) is True

        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert controller.session is None
        assert await stored(storage) is None

    async def test_account_switch_ignored_while_restoring(self, runtime):
        assert await runtime.controller.handle_account_switched(["0x2222222222222222222222222222222222222222"]) is False
        assert runtime.controller.state == AuthFlowState.RESTORING

    async def test_chain_switch_clears_before_reload(self, runtime, storage):
        observed = {}

        async def reload():
            observed["record"] = await stored(storage)
            observed["session"] = controller.session
            observed["state"] = controller.state

        controller = AuthFlowController(
            runtime.adapter, runtime.store, runtime.verifier, runtime.linker, runtime.backend,
            reload_hook=reload
        )
        await controller.restore()
        await controller.connect_wallet(WalletType.METAMASK)

        await controller.handle_chain_switched(56)

        assert observed == {"record": None, "session": None, "state": AuthFlowState.RESTORING}

    async def test_chain_switch_reloads_into_wallet_connect(self, runtime, storage):
        controller = await ready(runtime)
        await controller.connect_wallet(WalletType.METAMASK)

        await controller.handle_chain_switched(56)

        assert controller.state == AuthFlowState.WALLET_CONNECT
        assert controller.session is None
        assert await stored(storage) is None
