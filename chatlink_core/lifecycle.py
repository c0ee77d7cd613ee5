"""Pure lifecycle transition function.

Given the current snapshot and one event, ``transition`` returns the next
snapshot plus the side effects the manager must carry out. Nothing here
performs I/O or reads the clock.

Valid transitions:
    idle/disconnected/failed -> initializing  (StartRequested, lock free)
    initializing/awaiting_auth -> awaiting_auth  (QrReceived)
    initializing/awaiting_auth -> authenticated  (Authenticated)
    initializing/awaiting_auth/authenticated -> ready  (Ready)
    initializing/awaiting_auth/authenticated -> failed  (AuthFailure,
        InitializationFailed)
    any but idle -> disconnected  (Disconnected)
    ready -> disconnected  (LogoutCompleted)
    any -> idle  (RestartRequested, CleanSessionRequested)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from .events import (
    AuthFailure,
    Authenticated,
    CleanSessionRequested,
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

_STARTABLE = frozenset(
    {LifecycleState.IDLE, LifecycleState.DISCONNECTED, LifecycleState.FAILED}
)
_PRE_AUTH = frozenset({LifecycleState.INITIALIZING, LifecycleState.AWAITING_AUTH})
_IN_SEQUENCE = _PRE_AUTH | {LifecycleState.AUTHENTICATED}


class EffectKind(Enum):
    """Side effects requested by a transition."""

    ERASE_SESSION = "erase_session"
    TEARDOWN_CLIENT = "teardown_client"
    LAUNCH_CLIENT = "launch_client"
    SCHEDULE_START = "schedule_start"
    CANCEL_SCHEDULED = "cancel_scheduled"


@dataclass(frozen=True, slots=True)
class Effect:
    kind: EffectKind
    delay: float | None = None


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry ceiling and fixed delays (seconds).

    The disconnect delay must be strictly longer than the auth-failure delay.
    """

    max_attempts: int = 3
    auth_failure_delay: float = 5.0
    init_failure_delay: float = 5.0
    disconnect_delay: float = 10.0
    clean_session_delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        for name in (
            "auth_failure_delay",
            "init_failure_delay",
            "disconnect_delay",
            "clean_session_delay",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.disconnect_delay <= self.auth_failure_delay:
            raise ValueError("disconnect_delay must be longer than auth_failure_delay")


@dataclass(frozen=True, slots=True)
class Transition:
    """Result of applying one event."""

    snapshot: LifecycleSnapshot
    effects: tuple[Effect, ...] = ()
    accepted: bool = True


def _ignored(snapshot: LifecycleSnapshot) -> Transition:
    return Transition(snapshot=snapshot, accepted=False)


def _failed_attempt(
    snapshot: LifecycleSnapshot,
    policy: RetryPolicy,
    *,
    retry_delay: float,
    erase_before_retry: bool,
) -> Transition:
    """Shared handling for auth failures and initialize() errors."""
    failed = replace(
        snapshot,
        state=LifecycleState.FAILED,
        qr_payload=None,
        initializing=False,
    )
    if snapshot.attempt_count < policy.max_attempts:
        effects: list[Effect] = []
        if erase_before_retry:
            effects.append(Effect(EffectKind.ERASE_SESSION))
        effects.append(Effect(EffectKind.SCHEDULE_START, delay=retry_delay))
        return Transition(snapshot=failed, effects=tuple(effects))

    # Retries exhausted: forced session reset, wait for an admin operation.
    return Transition(
        snapshot=replace(failed, attempt_count=0),
        effects=(
            Effect(EffectKind.TEARDOWN_CLIENT),
            Effect(EffectKind.ERASE_SESSION),
        ),
    )


def transition(
    snapshot: LifecycleSnapshot, event: LifecycleEvent, policy: RetryPolicy
) -> Transition:
    """Apply ``event`` to ``snapshot`` under ``policy``."""
    state = snapshot.state

    if isinstance(event, StartRequested):
        if snapshot.initializing or state not in _STARTABLE:
            return _ignored(snapshot)
        effects: list[Effect] = []
        attempt = snapshot.attempt_count + 1
        if attempt > policy.max_attempts:
            effects.append(Effect(EffectKind.ERASE_SESSION))
            attempt = 1
        effects.append(Effect(EffectKind.LAUNCH_CLIENT))
        return Transition(
            snapshot=LifecycleSnapshot(
                state=LifecycleState.INITIALIZING,
                qr_payload=None,
                attempt_count=attempt,
                initializing=True,
            ),
            effects=tuple(effects),
        )

    if isinstance(event, QrReceived):
        if state not in _PRE_AUTH:
            return _ignored(snapshot)
        return Transition(
            snapshot=replace(
                snapshot, state=LifecycleState.AWAITING_AUTH, qr_payload=event.code
            )
        )

    if isinstance(event, Authenticated):
        if state not in _PRE_AUTH:
            return _ignored(snapshot)
        return Transition(
            snapshot=replace(
                snapshot, state=LifecycleState.AUTHENTICATED, qr_payload=None
            )
        )

    if isinstance(event, Ready):
        if state not in _IN_SEQUENCE:
            return _ignored(snapshot)
        return Transition(
            snapshot=LifecycleSnapshot(state=LifecycleState.READY),
        )

    if isinstance(event, AuthFailure):
        if state not in _IN_SEQUENCE:
            return _ignored(snapshot)
        return _failed_attempt(
            snapshot,
            policy,
            retry_delay=policy.auth_failure_delay,
            erase_before_retry=True,
        )

    if isinstance(event, InitializationFailed):
        if state not in _IN_SEQUENCE:
            return _ignored(snapshot)
        return _failed_attempt(
            snapshot,
            policy,
            retry_delay=policy.init_failure_delay,
            erase_before_retry=False,
        )

    if isinstance(event, Disconnected):
        if state is LifecycleState.IDLE:
            return _ignored(snapshot)
        disconnected = replace(
            snapshot,
            state=LifecycleState.DISCONNECTED,
            qr_payload=None,
            initializing=False,
        )
        if event.is_logout:
            return Transition(snapshot=disconnected)
        return Transition(
            snapshot=disconnected,
            effects=(Effect(EffectKind.SCHEDULE_START, delay=policy.disconnect_delay),),
        )

    if isinstance(event, LoadingScreen):
        return _ignored(snapshot)

    if isinstance(event, RestartRequested):
        return Transition(
            snapshot=LifecycleSnapshot(state=LifecycleState.IDLE),
            effects=(
                Effect(EffectKind.CANCEL_SCHEDULED),
                Effect(EffectKind.TEARDOWN_CLIENT),
            ),
        )

    if isinstance(event, CleanSessionRequested):
        return Transition(
            snapshot=LifecycleSnapshot(state=LifecycleState.IDLE),
            effects=(
                Effect(EffectKind.CANCEL_SCHEDULED),
                Effect(EffectKind.TEARDOWN_CLIENT),
                Effect(EffectKind.ERASE_SESSION),
                Effect(EffectKind.SCHEDULE_START, delay=policy.clean_session_delay),
            ),
        )

    if isinstance(event, LogoutCompleted):
        if state is not LifecycleState.READY:
            return _ignored(snapshot)
        return Transition(
            snapshot=replace(snapshot, state=LifecycleState.DISCONNECTED),
        )

    return _ignored(snapshot)
