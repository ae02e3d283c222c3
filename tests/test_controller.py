import asyncio

import pytest

from warpctl.controller import (
    ACCOUNT_ADVISORY,
    LICENSE_ADVISORY,
    ConnectionController,
    ControllerState,
)
from warpctl.warp import AccountSnapshot, ConnectionState, Mode


ACCOUNT_OUTPUT = "Account type: Free\nPremium Data: 500\nQuota: 1000\n"
CONNECTED = "Status update: Connected\nNetwork: healthy\n"
DISCONNECTED = "Status update: Disconnected\nReason: Manual Disconnection\n"


class FakeWarp:
    """Scripted stand-in for WarpCli that records every command."""

    def __init__(self, statuses=(), default_status=DISCONNECTED, account=ACCOUNT_OUTPUT):
        self.calls = []
        self.statuses = list(statuses)
        self.default_status = default_status
        self.account_output = account
        self.license_output = "Success\n"

    async def connect(self):
        self.calls.append("connect")
        return "Success\n"

    async def disconnect(self):
        self.calls.append("disconnect")
        return "Success\n"

    async def status(self):
        self.calls.append("status")
        if self.statuses:
            return self.statuses.pop(0)
        return self.default_status

    async def account(self):
        self.calls.append("account")
        return self.account_output

    async def set_mode(self, mode):
        self.calls.append(f"mode {mode.cli_argument}")
        return "Success\n"

    async def register_license(self, key):
        self.calls.append(f"license {key}")
        return self.license_output


class BlockingWarp(FakeWarp):
    """Status queries hang until released."""

    def __init__(self):
        super().__init__(default_status=CONNECTED)
        self.entered = None
        self.release = None

    async def status(self):
        self.entered.set()
        await self.release.wait()
        return await super().status()


def _drive(warp, body, **kwargs):
    sleeps = []

    async def sleep(delay):
        sleeps.append(delay)

    async def main():
        async with ConnectionController(warp, sleep=sleep, **kwargs) as controller:
            return await body(controller)

    return asyncio.run(main()), sleeps


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        (CONNECTED, ConnectionState.CONNECTED),
        ("Connected", ConnectionState.CONNECTED),
        (DISCONNECTED, ConnectionState.DISCONNECTED),
        ("Status update: Connecting\n", ConnectionState.DISCONNECTED),
        ("", ConnectionState.DISCONNECTED),
    ],
)
def test_refresh_status_matches_connected_substring(output, expected):
    warp = FakeWarp(default_status=output)

    result, _ = _drive(warp, lambda c: c.refresh_status())

    assert result is expected


def test_refresh_status_is_idempotent():
    warp = FakeWarp(default_status=CONNECTED)

    async def body(controller):
        first = await controller.refresh_status()
        second = await controller.refresh_status()
        return first, second, controller.state.connection

    (first, second, final), _ = _drive(warp, body)

    assert first is second is final is ConnectionState.CONNECTED


def test_refresh_status_is_connecting_while_outstanding():
    warp = FakeWarp(default_status=CONNECTED)
    seen = []

    async def body(controller):
        controller.subscribe(lambda state: seen.append(state.connection))
        await controller.refresh_status()

    _drive(warp, body)

    assert seen == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]


def test_toggle_from_disconnected_stops_on_first_confirmation():
    warp = FakeWarp(statuses=[DISCONNECTED, DISCONNECTED, CONNECTED])

    result, sleeps = _drive(warp, lambda c: c.toggle_connection())

    assert result is ConnectionState.CONNECTED
    assert warp.calls == ["connect", "status"] * 3 + ["account"]
    assert sleeps == [2.0, 2.0, 2.0]


def test_toggle_gives_up_after_six_attempts():
    warp = FakeWarp(default_status=DISCONNECTED)

    async def body(controller):
        await controller.toggle_connection()
        return controller.state

    state, sleeps = _drive(warp, body)

    assert state.connection is ConnectionState.DISCONNECTED
    assert warp.calls.count("connect") == 6
    assert warp.calls.count("status") == 6
    assert sleeps == [2.0] * 6
    assert state.advisory is None


def test_toggle_uses_configured_attempts_and_delay():
    warp = FakeWarp(default_status=DISCONNECTED)

    _, sleeps = _drive(warp, lambda c: c.toggle_connection(), attempts=2, retry_delay=0.5)

    assert warp.calls.count("connect") == 2
    assert sleeps == [0.5, 0.5]


def test_toggle_from_connected_disconnects_once_without_delay():
    warp = FakeWarp(statuses=[CONNECTED])

    async def body(controller):
        await controller.refresh_status()
        warp.calls.clear()
        return await controller.toggle_connection()

    result, sleeps = _drive(warp, body)

    assert result is ConnectionState.DISCONNECTED
    assert warp.calls == ["disconnect", "account"]
    assert sleeps == []


def test_toggle_is_connecting_until_account_refreshed():
    warp = FakeWarp(statuses=[CONNECTED])
    seen = []

    async def body(controller):
        controller.subscribe(lambda state: seen.append((state.connection, state.account.account_type)))
        await controller.toggle_connection()

    _drive(warp, body)

    assert seen == [
        (ConnectionState.CONNECTING, ""),
        (ConnectionState.CONNECTING, "Free"),
        (ConnectionState.CONNECTED, "Free"),
    ]


def test_toggle_refreshes_account_snapshot():
    warp = FakeWarp(statuses=[CONNECTED])

    async def body(controller):
        await controller.toggle_connection()
        return controller.state.account

    account, _ = _drive(warp, body)

    assert account == AccountSnapshot(quota_bytes=1000, premium_data_bytes=500, account_type="Free")


def test_account_parse_failure_keeps_previous_snapshot():
    warp = FakeWarp()

    async def body(controller):
        assert await controller.refresh_account()
        warp.account_output = "Account type: Free\nPremium Data: 500\nQuota: lots\n"
        ok = await controller.refresh_account()
        return ok, controller.state

    (ok, state), _ = _drive(warp, body)

    assert ok is False
    assert state.account.quota_bytes == 1000
    assert state.advisory == ACCOUNT_ADVISORY


def test_empty_account_output_is_not_an_error():
    warp = FakeWarp(account="")

    async def body(controller):
        ok = await controller.refresh_account()
        return ok, controller.state

    (ok, state), _ = _drive(warp, body)

    assert ok is False
    assert state.account == AccountSnapshot()
    assert state.advisory is None


def test_take_advisory_returns_message_once():
    warp = FakeWarp(account="Quota: ?\n")

    async def body(controller):
        await controller.refresh_account()
        return controller.take_advisory(), controller.take_advisory()

    (first, second), _ = _drive(warp, body)

    assert first == ACCOUNT_ADVISORY
    assert second is None


def test_set_mode_configures_tool_then_refreshes():
    warp = FakeWarp(default_status=CONNECTED)

    async def body(controller):
        result = await controller.set_mode(Mode.DIRECT_1111)
        return result, controller.state

    (result, state), _ = _drive(warp, body)

    assert warp.calls == ["mode proxy", "status", "account"]
    assert result is ConnectionState.CONNECTED
    assert state.mode is Mode.DIRECT_1111
    assert state.mode.label == "1.1.1.1"
    assert state.mode.ui_label == "Warp"


def test_register_license_reports_rejection():
    warp = FakeWarp()
    warp.license_output = ""

    async def body(controller):
        accepted = await controller.register_license("ABC-123")
        return accepted, controller.state.advisory

    (accepted, advisory), _ = _drive(warp, body)

    assert accepted is False
    assert advisory == LICENSE_ADVISORY
    assert warp.calls == ["license ABC-123", "account"]


def test_refresh_returns_combined_state():
    warp = FakeWarp(default_status=CONNECTED)

    state, _ = _drive(warp, lambda c: c.refresh())

    assert isinstance(state, ControllerState)
    assert state.connected
    assert state.account.account_type == "Free"


def test_operations_are_serialized():
    warp = FakeWarp(statuses=[CONNECTED, CONNECTED])

    async def body(controller):
        first = controller.set_mode(Mode.WARP_1111)
        second = controller.toggle_connection()
        return await first, await second

    (first, second), _ = _drive(warp, body)

    assert warp.calls == ["mode warp", "status", "account", "disconnect", "account"]
    assert first is ConnectionState.CONNECTED
    assert second is ConnectionState.DISCONNECTED


def test_cancelling_running_operation_restores_settled_state():
    warp = BlockingWarp()

    async def body(controller):
        warp.entered = asyncio.Event()
        warp.release = asyncio.Event()
        op = controller.refresh_status()
        await warp.entered.wait()
        assert controller.state.connecting

        op.cancel()
        with pytest.raises(asyncio.CancelledError):
            await op
        settled = controller.state.connection

        warp.release.set()
        after = await controller.refresh_status()
        return op.cancelled(), settled, after

    (cancelled, settled, after), _ = _drive(warp, body)

    assert cancelled
    assert settled is ConnectionState.DISCONNECTED
    assert after is ConnectionState.CONNECTED


def test_fresh_controller_does_not_claim_a_mode():
    warp = FakeWarp(default_status=CONNECTED)

    async def body(controller):
        await controller.refresh()
        before = controller.state.mode
        await controller.set_mode(Mode.DIRECT_1111)
        return before, controller.state.mode

    (before, after), _ = _drive(warp, body)

    assert not any(call.startswith("mode") for call in warp.calls[:2])
    assert before is None
    assert after is Mode.DIRECT_1111


def test_cancelling_toggle_mid_retry_stops_connecting():
    warp = BlockingWarp()

    async def body(controller):
        warp.entered = asyncio.Event()
        warp.release = asyncio.Event()
        op = controller.toggle_connection()
        await warp.entered.wait()
        assert controller.state.connecting

        op.cancel()
        with pytest.raises(asyncio.CancelledError):
            await op
        settled = controller.state.connection

        warp.release.set()
        await controller.refresh_account()
        return settled

    settled, sleeps = _drive(warp, body)

    assert settled is ConnectionState.DISCONNECTED
    assert warp.calls == ["connect", "account"]
    assert sleeps == [2.0]


def test_close_cancels_running_and_queued_operations():
    warp = BlockingWarp()

    async def main():
        warp.entered = asyncio.Event()
        warp.release = asyncio.Event()
        controller = ConnectionController(warp)
        controller.start()
        running = controller.refresh_status()
        queued = controller.toggle_connection()
        await warp.entered.wait()
        await controller.close()
        return running, queued, controller

    running, queued, controller = asyncio.run(main())

    assert running.cancelled()
    assert queued.cancelled()
    assert not controller.running
    assert "connect" not in warp.calls


def test_submitting_before_start_fails():
    controller = ConnectionController(FakeWarp())

    with pytest.raises(RuntimeError):
        controller.refresh_status()


def test_failing_subscriber_does_not_break_operation():
    warp = FakeWarp(default_status=CONNECTED)

    def broken(state):
        raise ValueError("boom")

    async def body(controller):
        controller.subscribe(broken)
        return await controller.refresh_status()

    result, _ = _drive(warp, body)

    assert result is ConnectionState.CONNECTED


def test_unsubscribe_stops_notifications():
    warp = FakeWarp(default_status=CONNECTED)
    seen = []

    async def body(controller):
        unsubscribe = controller.subscribe(seen.append)
        unsubscribe()
        await controller.refresh_status()

    _drive(warp, body)

    assert seen == []
