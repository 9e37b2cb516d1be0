"""Shared test doubles for vm-monitor."""

import asyncio
import copy

import pytest

from vm_monitor.services.aggregator import Category, QueryResult
from vm_monitor.services.broadcaster import Subscriber

GIB = 1024**3


def default_source_values() -> dict:
    return {
        "os_info": {
            "hostname": "vm-01",
            "distro": "Ubuntu",
            "release": "22.04.3 LTS",
            "kernel": "5.15.0-91-generic",
        },
        "network_interfaces": [
            {"iface": "lo", "internal": True, "ip4": "127.0.0.1"},
            {"iface": "docker0", "internal": False, "ip4": ""},
            {"iface": "eth0", "internal": False, "ip4": "10.0.0.5"},
        ],
        "current_load": {"currentLoad": 12.345},
        "cpu_temperature": {"main": 48.5},
        "mem": {"active": 4 * GIB, "total": 16 * GIB},
        "fs_size": [
            {"fs": "/dev/sda1", "mount": "/boot", "used": 10 * GIB, "size": 100 * GIB},
            {"fs": "/dev/sda2", "mount": "/", "used": 5 * GIB, "size": 500 * GIB},
        ],
        "network_stats": [
            {"iface": "eth0", "rx_sec": 500000, "tx_sec": 125000},
            {"iface": "eth1", "rx_sec": 250000, "tx_sec": None},
        ],
        "processes": {
            "list": [
                {"pid": 1, "name": "systemd", "user": "root", "cpu": 0.0, "mem": 0.1, "state": "sleeping"},
                {"pid": 200, "name": "postgres", "user": "postgres", "cpu": 35.27, "mem": 4.04, "state": "running"},
                {"pid": 201, "name": "python", "user": "app", "cpu": 12.0, "mem": 2.5, "state": "sleeping"},
                {"pid": 202, "name": "node", "user": "app", "cpu": 12.0, "mem": 3.1, "state": "running"},
                {"pid": 203, "name": "nginx", "user": "www-data", "cpu": 50.0, "mem": 0.8, "state": "running"},
                {"pid": 204, "name": "sshd", "user": "root", "cpu": 0.3, "mem": 0.2, "state": "sleeping"},
                {"pid": 205, "name": "cron", "user": "root", "cpu": 1.05, "mem": 0.1, "state": "idle"},
            ]
        },
        "time": {"uptime": 3600.5},
    }


_SOURCE_KEYS = {
    Category.CPU_LOAD: "current_load",
    Category.CPU_TEMPERATURE: "cpu_temperature",
    Category.MEMORY: "mem",
    Category.STORAGE: "fs_size",
    Category.NETWORK: "network_stats",
    Category.PROCESSES: "processes",
    Category.UPTIME: "time",
}


def make_results(overrides=None):
    """Build one successful QueryResult per category; exception values become failures."""
    defaults = default_source_values()
    values = {category: defaults[key] for category, key in _SOURCE_KEYS.items()}
    values.update(overrides or {})

    results = {}
    for category, value in values.items():
        if isinstance(value, BaseException):
            results[category] = QueryResult(category=category, error=value)
        else:
            results[category] = QueryResult(category=category, value=value)
    return results


class FakeMetricSource:
    """
    In-memory metric source.

    Each query answers with the configured value; a value that is an exception
    instance is raised instead. `delay` makes every query sleep first.
    """

    def __init__(self, delay: float = 0.0, **overrides) -> None:
        self.values = default_source_values()
        self.values.update(overrides)
        self.delay = delay
        self.calls = {name: 0 for name in self.values}
        self.in_flight = 0
        self.max_in_flight = 0

    async def _answer(self, name: str):
        self.calls[name] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            value = self.values[name]
            if isinstance(value, BaseException):
                raise value
            return copy.deepcopy(value)
        finally:
            self.in_flight -= 1

    async def os_info(self):
        return await self._answer("os_info")

    async def network_interfaces(self):
        return await self._answer("network_interfaces")

    async def current_load(self):
        return await self._answer("current_load")

    async def cpu_temperature(self):
        return await self._answer("cpu_temperature")

    async def mem(self):
        return await self._answer("mem")

    async def fs_size(self):
        return await self._answer("fs_size")

    async def network_stats(self):
        return await self._answer("network_stats")

    async def processes(self):
        return await self._answer("processes")

    async def time(self):
        return await self._answer("time")


class RecordingSubscriber(Subscriber):
    """Subscriber that keeps every received event; optionally fails on send."""

    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.events = []

    @property
    def event_names(self):
        return [event for event, _ in self.events]

    async def send(self, event, payload):
        if self.fail:
            raise ConnectionResetError("client went away")
        self.events.append((event, payload))


async def wait_until(condition, timeout=2.0, interval=0.005):
    """Wait until condition() returns True, or timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise TimeoutError(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def source() -> FakeMetricSource:
    return FakeMetricSource()
