"""Tests for the pure lifecycle transition function."""

from __future__ import annotations

import pytest

from chatlink_core.events import (
    AuthFailure,
    Authenticated,
    CleanSessionRequested,
    Disconnected,
    InitializationFailed,
    LifecycleSnapshot,
    LifecycleState,
    LoadingScreen,
    LogoutCompleted,
    QrReceived,
    Ready,
    RestartRequested,
    StartRequested,
)
from chatlink_core.lifecycle import Effect, EffectKind, RetryPolicy, transition

POLICY = RetryPolicy()


def _snap(state: LifecycleState, **kwargs) -> LifecycleSnapshot:
    return LifecycleSnapshot(state=state, **kwargs)


def _kinds(result) -> list[EffectKind]:
    return [effect.kind for effect in result.effects]


class TestRetryPolicy:
    """Tests for RetryPolicy validation."""

    def test_defaults(self):
        assert POLICY.max_attempts == 3
        assert POLICY.auth_failure_delay == 5.0
        assert POLICY.init_failure_delay == 5.0
        assert POLICY.disconnect_delay == 10.0
        assert POLICY.clean_session_delay == 2.0

    def test_disconnect_delay_must_exceed_auth_delay(self):
        with pytest.raises(ValueError, match="disconnect_delay"):
            RetryPolicy(auth_failure_delay=5.0, disconnect_delay=5.0)

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError, match="clean_session_delay"):
            RetryPolicy(clean_session_delay=-1)


class TestStartRequested:
    """Tests for starting an initialization sequence."""

    @pytest.mark.parametrize(
        "state",
        [LifecycleState.IDLE, LifecycleState.DISCONNECTED, LifecycleState.FAILED],
    )
    def test_start_from_startable_state(self, state):
        result = transition(_snap(state), StartRequested(), POLICY)

        assert result.accepted
        assert result.snapshot.state is LifecycleState.INITIALIZING
        assert result.snapshot.initializing
        assert result.snapshot.attempt_count == 1
        assert result.effects == (Effect(EffectKind.LAUNCH_CLIENT),)

    def test_start_ignored_while_lock_held(self):
        snapshot = _snap(LifecycleState.FAILED, initializing=True, attempt_count=1)
        result = transition(snapshot, StartRequested(), POLICY)

        assert not result.accepted
        assert result.snapshot is snapshot
        assert result.effects == ()

    @pytest.mark.parametrize(
        "state",
        [
            LifecycleState.INITIALIZING,
            LifecycleState.AWAITING_AUTH,
            LifecycleState.AUTHENTICATED,
            LifecycleState.READY,
        ],
    )
    def test_start_ignored_while_in_use(self, state):
        result = transition(_snap(state), StartRequested(), POLICY)
        assert not result.accepted

    def test_start_past_ceiling_erases_and_resets(self):
        snapshot = _snap(LifecycleState.DISCONNECTED, attempt_count=3)
        result = transition(snapshot, StartRequested(), POLICY)

        assert _kinds(result) == [EffectKind.ERASE_SESSION, EffectKind.LAUNCH_CLIENT]
        assert result.snapshot.attempt_count == 1

    def test_start_clears_stale_qr(self):
        snapshot = _snap(LifecycleState.DISCONNECTED, qr_payload="old")
        result = transition(snapshot, StartRequested(), POLICY)
        assert result.snapshot.qr_payload is None


class TestAuthEvents:
    """Tests for QR, authenticated and ready events."""

    def test_qr_moves_to_awaiting_auth(self):
        snapshot = _snap(LifecycleState.INITIALIZING, initializing=True, attempt_count=1)
        result = transition(snapshot, QrReceived(code="abc"), POLICY)

        assert result.snapshot.state is LifecycleState.AWAITING_AUTH
        assert result.snapshot.qr_payload == "abc"
        assert result.snapshot.initializing

    def test_new_qr_replaces_previous(self):
        snapshot = _snap(LifecycleState.AWAITING_AUTH, qr_payload="first")
        result = transition(snapshot, QrReceived(code="second"), POLICY)
        assert result.snapshot.qr_payload == "second"

    def test_qr_ignored_when_ready(self):
        result = transition(_snap(LifecycleState.READY), QrReceived(code="x"), POLICY)
        assert not result.accepted

    def test_authenticated_clears_qr(self):
        snapshot = _snap(LifecycleState.AWAITING_AUTH, qr_payload="abc")
        result = transition(snapshot, Authenticated(), POLICY)

        assert result.snapshot.state is LifecycleState.AUTHENTICATED
        assert result.snapshot.qr_payload is None

    @pytest.mark.parametrize(
        "state",
        [
            LifecycleState.INITIALIZING,
            LifecycleState.AWAITING_AUTH,
            LifecycleState.AUTHENTICATED,
        ],
    )
    def test_ready_resets_counters(self, state):
        snapshot = _snap(state, qr_payload="abc", attempt_count=2, initializing=True)
        result = transition(snapshot, Ready(), POLICY)

        assert result.snapshot == LifecycleSnapshot(state=LifecycleState.READY)
        assert result.effects == ()

    def test_ready_ignored_when_idle(self):
        assert not transition(_snap(LifecycleState.IDLE), Ready(), POLICY).accepted

    def test_loading_screen_ignored(self):
        snapshot = _snap(LifecycleState.INITIALIZING)
        result = transition(snapshot, LoadingScreen(percent=40), POLICY)
        assert not result.accepted
        assert result.snapshot is snapshot


class TestFailures:
    """Tests for auth failures and initialize() errors."""

    def test_auth_failure_below_ceiling_retries(self):
        snapshot = _snap(
            LifecycleState.AWAITING_AUTH,
            qr_payload="abc",
            attempt_count=1,
            initializing=True,
        )
        result = transition(snapshot, AuthFailure(message="bad"), POLICY)

        assert result.snapshot.state is LifecycleState.FAILED
        assert not result.snapshot.initializing
        assert result.snapshot.qr_payload is None
        assert result.snapshot.attempt_count == 1
        assert result.effects == (
            Effect(EffectKind.ERASE_SESSION),
            Effect(EffectKind.SCHEDULE_START, delay=POLICY.auth_failure_delay),
        )

    def test_auth_failure_at_ceiling_resets_without_retry(self):
        snapshot = _snap(LifecycleState.INITIALIZING, attempt_count=3, initializing=True)
        result = transition(snapshot, AuthFailure(), POLICY)

        assert result.snapshot.state is LifecycleState.FAILED
        assert result.snapshot.attempt_count == 0
        assert not result.snapshot.initializing
        assert _kinds(result) == [EffectKind.TEARDOWN_CLIENT, EffectKind.ERASE_SESSION]

    def test_init_failure_retries_without_erase(self):
        snapshot = _snap(LifecycleState.INITIALIZING, attempt_count=1, initializing=True)
        result = transition(snapshot, InitializationFailed(error="boom"), POLICY)

        assert result.snapshot.state is LifecycleState.FAILED
        assert result.effects == (
            Effect(EffectKind.SCHEDULE_START, delay=POLICY.init_failure_delay),
        )

    def test_init_failure_at_ceiling_stops(self):
        snapshot = _snap(LifecycleState.INITIALIZING, attempt_count=3, initializing=True)
        result = transition(snapshot, InitializationFailed(), POLICY)

        assert result.snapshot.attempt_count == 0
        assert EffectKind.SCHEDULE_START not in _kinds(result)

    def test_failure_ignored_outside_sequence(self):
        assert not transition(_snap(LifecycleState.READY), AuthFailure(), POLICY).accepted
        assert not transition(
            _snap(LifecycleState.FAILED), InitializationFailed(), POLICY
        ).accepted


class TestDisconnect:
    """Tests for disconnection handling."""

    def test_disconnect_schedules_reconnect(self):
        result = transition(
            _snap(LifecycleState.READY), Disconnected(reason="NETWORK_ERROR"), POLICY
        )

        assert result.snapshot.state is LifecycleState.DISCONNECTED
        assert result.effects == (
            Effect(EffectKind.SCHEDULE_START, delay=POLICY.disconnect_delay),
        )

    def test_logout_disconnect_does_not_reconnect(self):
        result = transition(
            _snap(LifecycleState.READY), Disconnected(reason="LOGOUT"), POLICY
        )

        assert result.snapshot.state is LifecycleState.DISCONNECTED
        assert result.effects == ()

    def test_disconnect_during_init_releases_lock(self):
        snapshot = _snap(
            LifecycleState.AWAITING_AUTH,
            qr_payload="abc",
            attempt_count=1,
            initializing=True,
        )
        result = transition(snapshot, Disconnected(reason="NAVIGATION"), POLICY)

        assert not result.snapshot.initializing
        assert result.snapshot.qr_payload is None
        assert result.snapshot.attempt_count == 1

    def test_disconnect_ignored_when_idle(self):
        result = transition(_snap(LifecycleState.IDLE), Disconnected(), POLICY)
        assert not result.accepted


class TestAdminEvents:
    """Tests for restart, clean session and logout."""

    def test_restart_resets_everything(self):
        snapshot = _snap(
            LifecycleState.AWAITING_AUTH,
            qr_payload="abc",
            attempt_count=2,
            initializing=True,
        )
        result = transition(snapshot, RestartRequested(), POLICY)

        assert result.snapshot == LifecycleSnapshot()
        assert _kinds(result) == [
            EffectKind.CANCEL_SCHEDULED,
            EffectKind.TEARDOWN_CLIENT,
        ]

    def test_clean_session_erases_and_schedules(self):
        result = transition(_snap(LifecycleState.READY), CleanSessionRequested(), POLICY)

        assert result.snapshot == LifecycleSnapshot()
        assert result.effects == (
            Effect(EffectKind.CANCEL_SCHEDULED),
            Effect(EffectKind.TEARDOWN_CLIENT),
            Effect(EffectKind.ERASE_SESSION),
            Effect(EffectKind.SCHEDULE_START, delay=POLICY.clean_session_delay),
        )

    def test_logout_completed_from_ready(self):
        result = transition(_snap(LifecycleState.READY), LogoutCompleted(), POLICY)

        assert result.snapshot.state is LifecycleState.DISCONNECTED
        assert result.effects == ()

    def test_logout_completed_ignored_when_not_ready(self):
        result = transition(_snap(LifecycleState.INITIALIZING), LogoutCompleted(), POLICY)
        assert not result.accepted
