"""Connection controller for WARP.

The controller is the single owner of the connection, account and mode
state. Every operation is queued and executed one at a time by a worker
task, so operations never interleave their warp-cli calls or their state
updates. Each queued operation returns an :class:`Operation` handle that
can be awaited for the result or cancelled; cancelling a running
operation interrupts its in-flight subprocess.
"""

import asyncio
import logging
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable

from .config import AppConfig
from .warp.account import AccountParseError, AccountSnapshot, parse_account
from .warp.status import ConnectionState, is_connected, state_from_status
from .warp.warpcli import Mode, WarpCli

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 6
DEFAULT_RETRY_DELAY = 2.0

ACCOUNT_ADVISORY = "Could not read account information"
LICENSE_ADVISORY = "License key was not accepted"


@dataclass(frozen=True)
class ControllerState:
    """Observable controller state, replaced as a whole on every change."""

    connection: ConnectionState = ConnectionState.DISCONNECTED
    account: AccountSnapshot = field(default_factory=AccountSnapshot)
    mode: Mode | None = None
    advisory: str | None = None

    @property
    def connected(self) -> bool:
        return self.connection is ConnectionState.CONNECTED

    @property
    def connecting(self) -> bool:
        return self.connection is ConnectionState.CONNECTING


StateCallback = Callable[[ControllerState], None]


class Operation:
    """Handle for one queued unit of work.

    Await the handle for the operation's result. ``cancel()`` drops a
    queued operation or interrupts a running one; cancelling a task that
    is awaiting the handle has the same effect.
    """

    def __init__(self, name: str, factory: Callable[[], Awaitable]):
        self.name = name
        self._factory = factory
        self._future = asyncio.get_running_loop().create_future()
        self._task: asyncio.Task | None = None
        self._future.add_done_callback(self._on_future_done)

    def __repr__(self) -> str:
        return f"<Operation {self.name} done={self.done()}>"

    def __await__(self):
        return self._future.__await__()

    def _on_future_done(self, future: asyncio.Future) -> None:
        if future.cancelled() and self._task is not None and not self._task.done():
            self._task.cancel()

    def cancel(self) -> bool:
        if self._task is not None and not self._task.done():
            return self._task.cancel()
        return self._future.cancel()

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def _start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._factory())
        return self._task

    def _settle(self) -> None:
        task = self._task
        if task is None or self._future.done():
            return
        if task.cancelled():
            self._future.cancel()
        elif task.exception() is not None:
            self._future.set_exception(task.exception())
        else:
            self._future.set_result(task.result())


class _Outcome:
    """Connection state to publish when a CONNECTING phase ends."""

    __slots__ = ("state",)

    def __init__(self, state: ConnectionState):
        self.state = state


class ConnectionController:
    """Drive warp-cli and reconcile the observable state with its output."""

    def __init__(
        self,
        warp: WarpCli,
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        initial_mode: Mode | None = None,
    ):
        self.warp = warp
        self.attempts = attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._state = ControllerState(mode=initial_mode)
        self._subscribers: list[StateCallback] = []
        self._queue: asyncio.Queue[Operation] | None = None
        self._worker: asyncio.Task | None = None

    @classmethod
    def from_config(cls, config: AppConfig) -> "ConnectionController":
        return cls(
            WarpCli(config.warp_cli, timeout=config.command_timeout),
            attempts=config.connect_attempts,
            retry_delay=config.retry_delay,
        )

    # -- lifecycle -----------------------------------------------------

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker task. Must be called from a running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run_worker())

    async def close(self) -> None:
        """Cancel queued and running operations and stop the worker."""
        if self._worker is None:
            return
        worker, self._worker = self._worker, None

        while not self._queue.empty():
            self._queue.get_nowait().cancel()
            self._queue.task_done()

        worker.cancel()
        with suppress(asyncio.CancelledError):
            await worker
        logger.debug("Controller closed")

    async def __aenter__(self) -> "ConnectionController":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _run_worker(self) -> None:
        while True:
            op = await self._queue.get()
            try:
                if op.done():
                    continue
                logger.debug("Running %s", op.name)
                task = op._start()
                try:
                    await asyncio.wait([task])
                except asyncio.CancelledError:
                    task.cancel()
                    await asyncio.wait([task])
                    op._settle()
                    raise
                op._settle()
            finally:
                self._queue.task_done()

    def _submit(self, name: str, factory: Callable[[], Awaitable]) -> Operation:
        if not self.running:
            raise RuntimeError("ConnectionController is not running")
        op = Operation(name, factory)
        self._queue.put_nowait(op)
        return op

    # -- observable state ----------------------------------------------

    @property
    def state(self) -> ControllerState:
        return self._state

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Register a callback for state changes; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def take_advisory(self) -> str | None:
        """Return the pending advisory message and clear it."""
        message = self._state.advisory
        if message is not None:
            self._publish(advisory=None)
        return message

    def _publish(self, **changes) -> None:
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return
        self._state = new_state
        for callback in list(self._subscribers):
            try:
                callback(new_state)
            except Exception:
                logger.exception("State subscriber %r failed", callback)

    @contextmanager
    def _connecting(self):
        previous = self._state.connection
        if previous is ConnectionState.CONNECTING:
            previous = ConnectionState.DISCONNECTED
        outcome = _Outcome(previous)
        self._publish(connection=ConnectionState.CONNECTING)
        try:
            yield outcome
        finally:
            self._publish(connection=outcome.state)

    # -- public operations ---------------------------------------------

    def toggle_connection(self) -> Operation:
        """Disconnect if connected, otherwise connect with bounded retries."""
        return self._submit("toggle_connection", self._toggle_connection)

    def refresh_status(self) -> Operation:
        return self._submit("refresh_status", self._refresh_status)

    def refresh_account(self) -> Operation:
        return self._submit("refresh_account", self._refresh_account)

    def refresh(self) -> Operation:
        """Refresh the connection status and then the account snapshot."""
        return self._submit("refresh", self._refresh)

    def set_mode(self, mode: Mode) -> Operation:
        return self._submit("set_mode", lambda: self._set_mode(mode))

    def register_license(self, key: str) -> Operation:
        return self._submit("register_license", lambda: self._register_license(key))

    # -- units of work -------------------------------------------------

    async def _toggle_connection(self) -> ConnectionState:
        with self._connecting() as outcome:
            if outcome.state is ConnectionState.CONNECTED:
                logger.info("Disconnecting")
                await self.warp.disconnect()
                outcome.state = ConnectionState.DISCONNECTED
            else:
                await self._connect_with_retry(outcome)
            await self._refresh_account()
        return self._state.connection

    async def _connect_with_retry(self, outcome: _Outcome) -> None:
        for attempt in range(1, self.attempts + 1):
            await self.warp.connect()
            await self._sleep(self.retry_delay)
            if is_connected(await self.warp.status()):
                logger.info("Connected after %d attempt(s)", attempt)
                outcome.state = ConnectionState.CONNECTED
                return
            logger.debug("Connection not confirmed (attempt %d/%d)", attempt, self.attempts)
        logger.info("Connection not confirmed after %d attempts", self.attempts)

    async def _refresh_status(self) -> ConnectionState:
        with self._connecting() as outcome:
            outcome.state = state_from_status(await self.warp.status())
        return outcome.state

    async def _refresh_account(self) -> bool:
        output = await self.warp.account()
        if not output.strip():
            logger.debug("No account information available")
            return False
        try:
            snapshot = parse_account(output)
        except AccountParseError as e:
            logger.warning("Keeping previous account snapshot: %s", e)
            self._publish(advisory=ACCOUNT_ADVISORY)
            return False
        self._publish(account=snapshot)
        return True

    async def _refresh(self) -> ControllerState:
        await self._refresh_status()
        await self._refresh_account()
        return self._state

    async def _set_mode(self, mode: Mode) -> ConnectionState:
        logger.info("Switching mode to %s", mode.label)
        await self.warp.set_mode(mode)
        self._publish(mode=mode)
        state = await self._refresh_status()
        await self._refresh_account()
        return state

    async def _register_license(self, key: str) -> bool:
        output = await self.warp.register_license(key)
        accepted = bool(output.strip())
        if accepted:
            logger.info("License key registered")
        else:
            logger.warning("License key registration failed")
            self._publish(advisory=LICENSE_ADVISORY)
        await self._refresh_account()
        return accepted
