"""Connection manager for the messaging capability.

This module owns the single current Capability Client and drives it through
authentication, readiness, disconnection and recovery. It handles:
- Client launch and teardown
- Lifecycle state transitions (see ``lifecycle``)
- Bounded retries with fixed delays and forced session resets
- Admin re-entry (restart, clean session, logout)
- The readiness gate used by request handlers

Every client is wired with a callback bound to the generation it was
launched under. Events and scheduled starts from an older generation are
dropped, so only one client is ever current and receiving events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass
from typing import Any

from .capability import CapabilityClient
from .errors import CapabilityOperationError, ChatlinkClientError
from .events import (
    AuthFailure,
    Authenticated,
    CleanSessionRequested,
    ConnectionStatus,
    Disconnected,
    InitializationFailed,
    LifecycleEvent,
    LifecycleSnapshot,
    LifecycleState,
    LoadingScreen,
    LogoutCompleted,
    QrReceived,
    Ready,
    RestartRequested,
    StartRequested,
)
from .gate import ReadinessGate
from .lifecycle import Effect, EffectKind, RetryPolicy, Transition, transition
from .session_store import SessionStore

_LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[], CapabilityClient]


@dataclass(slots=True)
class _ScheduledStart:
    """A delayed start_initialization() bound to a client generation."""

    generation: int
    delay: float
    task: asyncio.Task[None]


class ConnectionManager:
    """Lifecycle owner for the messaging Capability Client.

    Usage:
        manager = ConnectionManager(factory, SessionStore(data_dir, "chatlink"))
        await manager.start_initialization()
        if manager.is_ready:
            chats = await manager.call("get_chats")
        await manager.close()
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        session_store: SessionStore,
        *,
        policy: RetryPolicy | None = None,
        client_id: str = "chatlink",
    ) -> None:
        """Initialize manager.

        Args:
            client_factory: Creates a fresh, unconnected Capability Client
            session_store: Persisted session data for the account
            policy: Retry ceiling and delays
            client_id: Identity used in log messages
        """
        self.client_id = client_id
        self._client_factory = client_factory
        self._session_store = session_store
        self._policy = policy or RetryPolicy()

        self._snapshot = LifecycleSnapshot()
        self._client: CapabilityClient | None = None
        self._generation = 0
        self._scheduled: _ScheduledStart | None = None
        self._effect_tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

        self.gate = ReadinessGate(lambda: self.status)

    # -------------------------------------------------------------------------
    # Public API: Status
    # -------------------------------------------------------------------------

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def snapshot(self) -> LifecycleSnapshot:
        return self._snapshot

    @property
    def status(self) -> ConnectionStatus:
        """Current status snapshot for callers."""
        return ConnectionStatus.from_snapshot(
            self._snapshot, self._policy.max_attempts
        )

    @property
    def is_ready(self) -> bool:
        return self._snapshot.state is LifecycleState.READY

    @property
    def client(self) -> CapabilityClient | None:
        return self._client

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending_start_delay(self) -> float | None:
        """Delay of the scheduled start, if one is pending."""
        if self._scheduled is None:
            return None
        return self._scheduled.delay

    # -------------------------------------------------------------------------
    # Public API: Lifecycle
    # -------------------------------------------------------------------------

    async def start_initialization(self) -> bool:
        """Start one initialization sequence.

        Returns:
            True if a sequence was started, False if the call was a no-op
            (sequence already running, client usable, or manager closed).
        """
        if self._closed:
            _LOGGER.debug("[%s] Initialization skipped: manager closed", self.client_id)
            return False

        result = self._apply(StartRequested())
        if not result.accepted:
            _LOGGER.info(
                "[%s] Initialization already in progress or not needed (state: %s)",
                self.client_id,
                self._snapshot.state.value,
            )
            return False

        _LOGGER.info(
            "[%s] Initializing messaging client (attempt %d/%d)",
            self.client_id,
            self._snapshot.attempt_count,
            self._policy.max_attempts,
        )
        await self._run_effects(result.effects, self._generation)
        return True

    async def restart(self) -> None:
        """Force a new lifecycle, bypassing the re-entrancy guard."""
        _LOGGER.info("[%s] Manual client restart requested", self.client_id)
        result = self._apply(RestartRequested())
        await self._run_effects(result.effects, self._generation)
        await self.start_initialization()

    async def clean_session(self) -> None:
        """Tear down, erase session data and schedule a fresh start."""
        _LOGGER.info("[%s] Manual session clean requested", self.client_id)
        result = self._apply(CleanSessionRequested())
        await self._run_effects(result.effects, self._generation)

    async def logout(self) -> None:
        """Log the account out of a ready client.

        Raises:
            NotReadyError: If the client is not ready.
            CapabilityOperationError: If the capability logout fails.
        """
        self.gate.require()
        client = self._require_client("logout")
        try:
            await client.logout()
        except ChatlinkClientError as err:
            raise CapabilityOperationError("logout", str(err)) from err
        self._apply(LogoutCompleted())
        _LOGGER.info("[%s] Logged out", self.client_id)

    async def call(self, operation: str, **params: Any) -> Any:
        """Run a gated domain operation against the current client.

        Raises:
            NotReadyError: If the client is not ready.
            CapabilityOperationError: If the operation fails.
        """
        self.gate.require()
        client = self._require_client(operation)
        try:
            return await client.request(operation, params)
        except ChatlinkClientError as err:
            _LOGGER.warning(
                "[%s] Operation %s failed: %s", self.client_id, operation, err
            )
            raise CapabilityOperationError(operation, str(err)) from err

    def request_start(self) -> None:
        """Start initialization in the background."""
        self._spawn(self.start_initialization())

    def request_restart(self) -> None:
        """Restart in the background; returns immediately."""
        self._spawn(self.restart())

    def request_clean_session(self) -> None:
        """Clean the session in the background; returns immediately."""
        self._spawn(self.clean_session())

    async def drain(self) -> None:
        """Wait for in-flight lifecycle effects to finish."""
        while self._effect_tasks:
            await asyncio.gather(*self._effect_tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending starts and destroy the current client."""
        _LOGGER.info("[%s] Closing connection manager", self.client_id)
        self._closed = True
        self._cancel_scheduled()
        await self._teardown()
        await self.drain()

    # -------------------------------------------------------------------------
    # Internal: State Machine
    # -------------------------------------------------------------------------

    def _apply(self, event: LifecycleEvent) -> Transition:
        """Single entry point for all state changes."""
        previous = self._snapshot
        result = transition(previous, event, self._policy)
        if not result.accepted:
            _LOGGER.debug(
                "[%s] Ignored %s in state %s",
                self.client_id,
                type(event).__name__,
                previous.state.value,
            )
            return result

        self._snapshot = result.snapshot
        if previous.state is not result.snapshot.state:
            _LOGGER.debug(
                "[%s] State: %s → %s",
                self.client_id,
                previous.state.value,
                result.snapshot.state.value,
            )
        return result

    def _on_client_event(self, generation: int, event: Any) -> None:
        """Callback wired into each client; drops superseded generations."""
        if generation != self._generation:
            _LOGGER.debug(
                "[%s] Ignoring %s from superseded client (generation %d)",
                self.client_id,
                type(event).__name__,
                generation,
            )
            return
        self._handle_event(generation, event)

    def _handle_event(self, generation: int, event: LifecycleEvent) -> None:
        self._log_event(event)
        result = self._apply(event)
        if not result.accepted:
            return

        if isinstance(event, AuthFailure | InitializationFailed) and not any(
            effect.kind is EffectKind.SCHEDULE_START for effect in result.effects
        ):
            _LOGGER.error(
                "[%s] Maximum initialization attempts reached; session data "
                "erased, manual restart required",
                self.client_id,
            )

        if result.effects:
            self._spawn(self._run_effects(result.effects, generation))

    def _log_event(self, event: LifecycleEvent) -> None:
        if isinstance(event, QrReceived):
            _LOGGER.info(
                "[%s] New QR code generated. Scan it with the mobile app",
                self.client_id,
            )
        elif isinstance(event, Authenticated):
            _LOGGER.info("[%s] Authenticated successfully", self.client_id)
        elif isinstance(event, Ready):
            _LOGGER.info("[%s] Client is ready and connected", self.client_id)
        elif isinstance(event, AuthFailure):
            _LOGGER.error("[%s] Authentication failed: %s", self.client_id, event.message)
        elif isinstance(event, InitializationFailed):
            _LOGGER.error("[%s] Initialization failed: %s", self.client_id, event.error)
        elif isinstance(event, Disconnected):
            _LOGGER.warning("[%s] Client disconnected: %s", self.client_id, event.reason)
        elif isinstance(event, LoadingScreen):
            _LOGGER.info(
                "[%s] Loading: %d%% - %s", self.client_id, event.percent, event.message
            )

    # -------------------------------------------------------------------------
    # Internal: Effects
    # -------------------------------------------------------------------------

    async def _run_effects(self, effects: Sequence[Effect], generation: int) -> None:
        """Carry out transition effects for the sequence owning ``generation``.

        Remaining effects are abandoned once a newer generation takes over.
        """
        for effect in effects:
            if generation != self._generation:
                _LOGGER.debug(
                    "[%s] Dropping %s: superseded by generation %d",
                    self.client_id,
                    effect.kind.value,
                    self._generation,
                )
                return

            if effect.kind is EffectKind.ERASE_SESSION:
                await self._erase_session()
            elif effect.kind is EffectKind.TEARDOWN_CLIENT:
                generation = await self._teardown()
            elif effect.kind is EffectKind.LAUNCH_CLIENT:
                await self._launch()
                return
            elif effect.kind is EffectKind.SCHEDULE_START:
                self._schedule_start(effect.delay or 0.0, generation)
            elif effect.kind is EffectKind.CANCEL_SCHEDULED:
                self._cancel_scheduled()

    async def _launch(self) -> None:
        """Replace the current client with a freshly initialized one."""
        self._generation += 1
        generation = self._generation

        previous, self._client = self._client, None
        if previous is not None:
            await self._destroy(previous)

        if generation != self._generation:
            _LOGGER.debug("[%s] Launch superseded before start", self.client_id)
            return

        try:
            client = self._client_factory()
            client.on_event(lambda event: self._on_client_event(generation, event))
            self._client = client
            await client.initialize()
        except Exception as err:
            self._on_client_event(generation, InitializationFailed(error=str(err)))

    async def _teardown(self) -> int:
        """Detach and destroy the current client; returns the new generation."""
        self._generation += 1
        client, self._client = self._client, None
        if client is not None:
            await self._destroy(client)
        return self._generation

    async def _destroy(self, client: CapabilityClient) -> None:
        try:
            await client.destroy()
        except Exception as err:
            _LOGGER.info("[%s] Error destroying previous client: %s", self.client_id, err)

    async def _erase_session(self) -> None:
        try:
            await self._session_store.erase()
        except Exception as err:
            _LOGGER.warning("[%s] Session erase failed: %s", self.client_id, err)

    def _require_client(self, operation: str) -> CapabilityClient:
        if self._client is None:
            raise CapabilityOperationError(operation, "No capability client")
        return self._client

    # -------------------------------------------------------------------------
    # Internal: Scheduling
    # -------------------------------------------------------------------------

    def _schedule_start(self, delay: float, generation: int) -> None:
        if self._closed:
            return
        if self._scheduled is not None:
            if self._scheduled.generation == generation:
                _LOGGER.debug("[%s] Initialization already scheduled", self.client_id)
                return
            # Pending start belongs to a superseded client.
            self._cancel_scheduled()

        _LOGGER.info("[%s] Initialization scheduled in %.1fs", self.client_id, delay)
        task = asyncio.create_task(self._start_after_delay(generation, delay))
        self._scheduled = _ScheduledStart(generation=generation, delay=delay, task=task)

    def _cancel_scheduled(self) -> None:
        if self._scheduled is not None:
            self._scheduled.task.cancel()
            self._scheduled = None

    async def _start_after_delay(self, generation: int, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Scheduled initialization cancelled", self.client_id)
            return

        if self._scheduled is not None and self._scheduled.task is asyncio.current_task():
            self._scheduled = None
        if generation != self._generation:
            _LOGGER.debug("[%s] Stale scheduled initialization skipped", self.client_id)
            return
        self._spawn(self.start_initialization())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._effect_tasks.add(task)
        task.add_done_callback(self._effect_done)

    def _effect_done(self, task: asyncio.Task[Any]) -> None:
        self._effect_tasks.discard(task)
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.error(
                "[%s] Lifecycle task failed: %s", self.client_id, err, exc_info=err
            )
