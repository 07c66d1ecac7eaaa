"""
Unit tests for the LifecycleController state machine.
"""

import asyncio

import pytest
import pytest_asyncio

from streamrelay.relay.errors import SessionNotFoundError
from streamrelay.relay.lifecycle import LifecycleController
from streamrelay.relay.registry import SessionRegistry
from streamrelay.relay.session import SessionState

EVICTION_DELAY = 0.1


@pytest_asyncio.fixture
async def relay_env(upstream):
    """Registry + controller wired to the fake upstream."""
    registry = SessionRegistry()
    async with upstream.client() as client:
        controller = LifecycleController(registry, client, eviction_delay=EVICTION_DELAY)
        yield registry, controller
        await controller.shutdown()


class TestJoinAndLeave:
    @pytest.mark.asyncio
    async def test_first_join_starts_relay(self, relay_env, upstream, make_sink):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")

        session = await controller.join("abc", make_sink())

        assert session.state is SessionState.ACTIVE
        assert session.relay is not None
        assert session.client_count == 1
        assert controller.relay_starts == 1

    @pytest.mark.asyncio
    async def test_join_unknown_session(self, relay_env, make_sink):
        _, controller = relay_env
        with pytest.raises(SessionNotFoundError):
            await controller.join("missing", make_sink())

    @pytest.mark.asyncio
    async def test_concurrent_first_joins_start_one_relay(
        self, relay_env, upstream, make_sink, wait_until
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")

        sinks = [make_sink(f"s{i}") for i in range(10)]
        await asyncio.gather(*(controller.join("abc", sink) for sink in sinks))
        await wait_until(lambda: len(upstream.requests) >= 1)
        await asyncio.sleep(0.02)

        session = registry.get("abc")
        assert controller.relay_starts == 1
        assert len(upstream.requests) == 1
        assert session.client_count == 10

    @pytest.mark.asyncio
    async def test_fan_out_to_all_subscribers(
        self, relay_env, upstream, make_sink, wait_until
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        a, b, c = make_sink("a"), make_sink("b"), make_sink("c")
        for sink in (a, b, c):
            await controller.join("abc", sink)

        upstream.push(b"c1", b"c2", b"c3")

        assert await wait_until(lambda: len(c.received) == 3)
        for sink in (a, b, c):
            assert sink.received == [b"c1", b"c2", b"c3"]

    @pytest.mark.asyncio
    async def test_last_leave_drains_and_stops_delivery(
        self, relay_env, upstream, make_sink, wait_until
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        sink = make_sink()
        session = await controller.join("abc", sink)
        upstream.push(b"c1")
        assert await wait_until(lambda: sink.received == [b"c1"])
        engine = session.relay

        remaining = await controller.leave(session, sink)

        assert remaining == 0
        assert session.state is SessionState.DRAINING
        assert session.relay is None
        assert session.eviction_timer is not None
        assert engine.stop_requested

        upstream.push(b"c2", b"c3")
        await engine.wait()
        assert sink.received == [b"c1"]
        assert engine.chunks_relayed == 1

    @pytest.mark.asyncio
    async def test_leave_with_others_remaining_keeps_active(
        self, relay_env, make_sink
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        a, b = make_sink("a"), make_sink("b")
        session = await controller.join("abc", a)
        await controller.join("abc", b)

        assert await controller.leave(session, a) == 1
        assert session.state is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_leave_twice_is_harmless(self, relay_env, make_sink):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        sink = make_sink()
        session = await controller.join("abc", sink)

        await controller.leave(session, sink)
        timer = session.eviction_timer
        assert await controller.leave(session, sink) == 0
        assert session.eviction_timer is timer


class TestUpstreamExit:
    @pytest.mark.asyncio
    async def test_upstream_end_closes_clients_normally(
        self, relay_env, upstream, make_sink, wait_until
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        a, b = make_sink("a"), make_sink("b")
        session = await controller.join("abc", a)
        await controller.join("abc", b)

        upstream.push(b"c1")
        upstream.end()

        assert await wait_until(lambda: b.closed_with is not None)
        assert session.state is SessionState.DRAINING
        assert a.received == [b"c1"]
        assert a.closed_with[0] == 1000
        assert b.closed_with[0] == 1000
        assert session.client_count == 0
        assert session.relay is None

    @pytest.mark.asyncio
    async def test_upstream_read_error_drains(
        self, relay_env, upstream, make_sink, wait_until
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        sink = make_sink()
        session = await controller.join("abc", sink)

        upstream.fail()

        assert await wait_until(lambda: sink.closed_with is not None)
        assert session.state is SessionState.DRAINING
        assert sink.closed_with[0] == 1000

    @pytest.mark.asyncio
    async def test_failed_open_leaves_session_joinable(
        self, relay_env, upstream, make_sink, wait_until
    ):
        registry, controller = relay_env
        upstream.status_code = 503
        registry.get_or_create("abc", "http://src/stream")
        first = make_sink("first")
        session = await controller.join("abc", first)

        assert await wait_until(lambda: first.closed_with is not None)
        assert session.state is SessionState.DRAINING
        assert first.closed_with[0] == 1000

        upstream.status_code = 200
        second = make_sink("second")
        again = await controller.join("abc", second)

        assert again is session
        assert session.state is SessionState.ACTIVE
        assert controller.relay_starts == 2


class TestEviction:
    @pytest.mark.asyncio
    async def test_drained_session_is_evicted(self, relay_env, make_sink, wait_until):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        sink = make_sink()
        session = await controller.join("abc", sink)
        await controller.leave(session, sink)

        assert "abc" in registry
        assert await wait_until(lambda: "abc" not in registry, timeout=1.0)
        assert session.state is SessionState.EVICTED

    @pytest.mark.asyncio
    async def test_join_during_draining_resurrects(
        self, relay_env, upstream, make_sink, wait_until
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        first = make_sink("first")
        session = await controller.join("abc", first)
        old_engine = session.relay
        await controller.leave(session, first)
        assert session.state is SessionState.DRAINING

        second = make_sink("second")
        again = await controller.join("abc", second)

        assert again is session
        assert session.id == "abc"
        assert session.source_url == "http://src/stream"
        assert session.state is SessionState.ACTIVE
        assert session.eviction_timer is None
        assert session.relay is not old_engine

        # The old engine was parked in its read and must not keep running
        await old_engine.wait()
        assert not old_engine.running

        await asyncio.sleep(EVICTION_DELAY * 2)
        assert registry.get("abc") is session

        await wait_until(lambda: len(upstream.requests) == 2)
        upstream.push(b"fresh")
        assert await wait_until(lambda: second.received == [b"fresh"])

    @pytest.mark.asyncio
    async def test_evicted_id_can_be_recreated(self, relay_env, make_sink, wait_until):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        sink = make_sink()
        session = await controller.join("abc", sink)
        await controller.leave(session, sink)
        assert await wait_until(lambda: "abc" not in registry, timeout=1.0)

        with pytest.raises(SessionNotFoundError):
            await controller.join("abc", make_sink())

        fresh = registry.get_or_create("abc", "http://src/other")
        assert fresh is not session
        assert fresh.state is SessionState.IDLE
        assert fresh.source_url == "http://src/other"

    @pytest.mark.asyncio
    async def test_create_during_draining_without_join_is_still_evicted(
        self, relay_env, make_sink, wait_until
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        sink = make_sink()
        session = await controller.join("abc", sink)
        await controller.leave(session, sink)

        again = registry.get_or_create("abc", "http://src/other")

        assert again is session
        assert session.state is SessionState.DRAINING
        assert session.eviction_timer is not None
        assert await wait_until(lambda: "abc" not in registry, timeout=1.0)
        assert session.state is SessionState.EVICTED

    @pytest.mark.asyncio
    async def test_join_after_create_during_draining_uses_new_source(
        self, relay_env, upstream, make_sink, wait_until
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        first = make_sink("first")
        session = await controller.join("abc", first)
        await controller.leave(session, first)

        registry.get_or_create("abc", "http://src/other")
        await controller.join("abc", make_sink("second"))

        assert session.state is SessionState.ACTIVE
        assert session.eviction_timer is None
        assert await wait_until(lambda: len(upstream.requests) == 2)
        assert str(upstream.requests[-1].url) == "http://src/other"

    @pytest.mark.asyncio
    async def test_stale_timer_does_not_evict_resurrected_session(
        self, relay_env, make_sink
    ):
        registry, controller = relay_env
        registry.get_or_create("abc", "http://src/stream")
        sink = make_sink()
        session = await controller.join("abc", sink)
        await controller.leave(session, sink)

        session.resurrect()
        assert session.state is SessionState.IDLE

        # A timer callback that slipped through must be a no-op
        controller._on_eviction_timer(session)
        assert registry.get("abc") is session
        assert session.state is SessionState.IDLE


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_stops_relays_and_closes_clients(
        self, upstream, make_sink, wait_until
    ):
        registry = SessionRegistry()
        async with upstream.client() as client:
            controller = LifecycleController(registry, client, eviction_delay=10)
            registry.get_or_create("abc", "http://src/stream")
            sink = make_sink()
            session = await controller.join("abc", sink)
            engine = session.relay
            await wait_until(lambda: len(upstream.requests) == 1)

            await controller.shutdown()

        assert not engine.running
        assert sink.closed_with[0] == 1001
        assert len(registry) == 0
        assert session.eviction_timer is None
