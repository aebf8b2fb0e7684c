import asyncio

from services.connectivity import ConnectivityMonitor, SocketProbe


class ScriptedProbe:
    """Returns the queued readings in order, then repeats the last one."""

    def __init__(self, *readings):
        self.readings = list(readings)
        self.calls = 0

    def check_now(self):
        self.calls += 1
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


class BrokenProbe:
    def check_now(self):
        raise RuntimeError("network stack exploded")


def test_start_initialises_state_from_probe():
    probe = ScriptedProbe(True)
    monitor = ConnectivityMonitor(probe)
    assert monitor.current_state() is False
    assert monitor.start() is True
    assert monitor.current_state() is True
    assert probe.calls == 1


def test_identical_readings_emit_once():
    monitor = ConnectivityMonitor(ScriptedProbe(True, True))
    subscription = monitor.subscribe()

    monitor.start()
    asyncio.run(monitor.poll_once())

    assert subscription.pending() == [True]


def test_only_transitions_are_broadcast():
    monitor = ConnectivityMonitor(ScriptedProbe(False))
    first = monitor.subscribe()
    second = monitor.subscribe()

    for reading in (False, False, True, True, False, True):
        monitor.update(reading)

    assert first.pending() == [False, True, False, True]
    assert second.pending() == [False, True, False, True]


def test_closed_subscription_stops_receiving():
    monitor = ConnectivityMonitor(ScriptedProbe(False))
    subscription = monitor.subscribe()
    monitor.update(True)
    subscription.close()
    monitor.update(False)

    assert subscription.pending() == [True]
    assert subscription.closed is True


def test_async_iteration_ends_on_close():
    async def scenario():
        monitor = ConnectivityMonitor(ScriptedProbe(False))
        subscription = monitor.subscribe()
        monitor.update(False)
        monitor.update(True)
        monitor.unsubscribe(subscription)
        return [value async for value in subscription]

    assert asyncio.run(scenario()) == [False, True]


def test_probe_errors_count_as_offline():
    monitor = ConnectivityMonitor(BrokenProbe())
    assert monitor.start() is False


def test_socket_probe_without_host_is_offline():
    assert SocketProbe(host="").check_now() is False


def test_run_polls_until_stopped():
    async def scenario():
        probe = ScriptedProbe(False, True)
        monitor = ConnectivityMonitor(probe, interval_sec=0.01)
        subscription = monitor.subscribe()
        runner = asyncio.create_task(monitor.run())
        values = []
        async for value in subscription:
            values.append(value)
            if value:
                break
        monitor.stop()
        await runner
        return values

    assert asyncio.run(scenario()) == [False, True]
