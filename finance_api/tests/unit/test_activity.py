"""Tests for the idle timeout and session heartbeat watchdogs."""

import asyncio
from datetime import timedelta
from unittest.mock import Mock

import pytest

from finance_api.models.session import fetch_sessions
from finance_api.services.activity import (
    IDLE_TIMEOUT_REASON,
    IdleTimeout,
    SessionHeartbeat,
    idle_warning_message,
)


def test_idle_warning_message():
    assert idle_warning_message(120) == "Your session will expire in 2 minutes due to inactivity"


class TestIdleTimeout:
    @pytest.mark.asyncio
    async def test_times_out_without_activity(self):
        reasons = []
        idle = IdleTimeout(on_timeout=reasons.append, timeout=0.05, warning_time=0.01)
        idle.start()

        await asyncio.sleep(0.1)

        assert reasons == [IDLE_TIMEOUT_REASON]
        assert idle.active is False

    @pytest.mark.asyncio
    async def test_warns_before_timing_out(self):
        events = []
        idle = IdleTimeout(
            on_timeout=lambda reason: events.append(("timeout", reason)),
            on_warning=lambda message: events.append(("warning", message)),
            timeout=0.1,
            warning_time=0.06,
        )
        idle.start()

        await asyncio.sleep(0.07)
        assert [kind for kind, _ in events] == ["warning"]

        await asyncio.sleep(0.08)
        assert [kind for kind, _ in events] == ["warning", "timeout"]

    @pytest.mark.asyncio
    async def test_no_warning_when_warning_window_covers_timeout(self):
        on_warning = Mock()
        reasons = []
        idle = IdleTimeout(on_timeout=reasons.append, on_warning=on_warning, timeout=0.05, warning_time=0.05)
        idle.start()

        await asyncio.sleep(0.1)

        on_warning.assert_not_called()
        assert reasons == [IDLE_TIMEOUT_REASON]

    @pytest.mark.asyncio
    async def test_activity_reschedules_timeout(self):
        reasons = []
        idle = IdleTimeout(on_timeout=reasons.append, timeout=0.15, warning_time=0)
        idle.start()

        await asyncio.sleep(0.1)
        assert idle.record_activity("mousemove") is True
        await asyncio.sleep(0.1)
        assert reasons == []

        await asyncio.sleep(0.15)
        assert reasons == [IDLE_TIMEOUT_REASON]

    @pytest.mark.asyncio
    async def test_unlisted_events_do_not_count(self):
        idle = IdleTimeout(on_timeout=Mock(), timeout=10)
        idle.start()

        assert idle.record_activity("resize") is False
        assert idle.record_activity("keypress") is True
        idle.stop()

    def test_activity_before_start_is_ignored(self):
        idle = IdleTimeout(on_timeout=Mock())

        assert idle.active is False
        assert idle.record_activity("click") is False

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_timers(self):
        on_timeout = Mock()
        idle = IdleTimeout(on_timeout=on_timeout, timeout=0.05, warning_time=0)
        idle.start()
        idle.stop()

        await asyncio.sleep(0.1)

        on_timeout.assert_not_called()
        assert idle.active is False

    @pytest.mark.asyncio
    async def test_async_sign_out_callback_is_awaited(self):
        signed_out = asyncio.Event()

        async def sign_out(reason):
            signed_out.set()

        idle = IdleTimeout(on_timeout=sign_out, timeout=0.02, warning_time=0)
        idle.start()

        await asyncio.wait_for(signed_out.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_escape(self):
        on_timeout = Mock(side_effect=RuntimeError("router gone"))
        idle = IdleTimeout(on_timeout=on_timeout, timeout=0.02, warning_time=0)
        idle.start()

        await asyncio.sleep(0.05)

        on_timeout.assert_called_once_with(IDLE_TIMEOUT_REASON)


class TestSessionHeartbeat:
    @pytest.mark.asyncio
    async def test_start_without_session_does_nothing(self, make_registry):
        heartbeat = SessionHeartbeat(make_registry(), interval=0.01)

        assert heartbeat.start() is False
        assert heartbeat.running is False

    @pytest.mark.asyncio
    async def test_first_beat_refreshes_last_active(self, make_registry, store, clock):
        registry = make_registry()
        registry.register_session("user-1")
        clock.advance(minutes=5)

        heartbeat = SessionHeartbeat(registry, interval=60)
        assert heartbeat.start() is True
        await asyncio.sleep(0.05)
        await heartbeat.stop()

        record = fetch_sessions(store, "user-1")[0]
        assert record.last_active == record.created_at + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_beats_every_interval(self):
        registry = Mock()
        registry.get_current_session_id.return_value = "123_abcdef"
        registry.update_session_activity.return_value = True

        heartbeat = SessionHeartbeat(registry, interval=0.01)
        heartbeat.start()
        await asyncio.sleep(0.1)
        await heartbeat.stop()

        assert registry.update_session_activity.call_count >= 2
        assert heartbeat.running is False

    @pytest.mark.asyncio
    async def test_failed_beat_keeps_loop_alive(self):
        registry = Mock()
        registry.get_current_session_id.return_value = "123_abcdef"
        registry.update_session_activity.side_effect = RuntimeError("network down")

        heartbeat = SessionHeartbeat(registry, interval=0.01)
        result = await heartbeat.beat()
        assert result.ok is False
        assert result.value is False

        heartbeat.start()
        await asyncio.sleep(0.05)
        assert heartbeat.running is True
        await heartbeat.stop()

    @pytest.mark.asyncio
    async def test_stop_is_safe_when_not_started(self, make_registry):
        await SessionHeartbeat(make_registry()).stop()
