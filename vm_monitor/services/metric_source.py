import asyncio
import platform
import socket
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import psutil

# Sensor groups checked in order when looking for the main CPU temperature
_CPU_SENSOR_GROUPS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "acpitz")

_PROCESS_ATTRS = ["pid", "name", "username", "cpu_percent", "memory_percent", "status"]


class PsutilMetricSource:
    """
    Point-in-time host metric queries backed by psutil.

    Every query is an independent coroutine that may raise; the blocking psutil
    calls run in a worker thread so concurrent queries do not block the event
    loop. Dictionary shapes are the ones the aggregator and the onboarding
    handshake consume.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._net_lock = threading.Lock()
        self._last_net: Optional[Tuple[float, Dict[str, Any]]] = None
        # First cpu_percent() call always returns 0.0; prime it
        psutil.cpu_percent(interval=None)

    async def os_info(self) -> Dict[str, str]:
        return await asyncio.to_thread(self._os_info)

    async def network_interfaces(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._network_interfaces)

    async def current_load(self) -> Dict[str, float]:
        return await asyncio.to_thread(self._current_load)

    async def cpu_temperature(self) -> Dict[str, Optional[float]]:
        return await asyncio.to_thread(self._cpu_temperature)

    async def mem(self) -> Dict[str, int]:
        return await asyncio.to_thread(self._mem)

    async def fs_size(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._fs_size)

    async def network_stats(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._network_stats)

    async def processes(self) -> Dict[str, List[Dict[str, Any]]]:
        return await asyncio.to_thread(self._processes)

    async def time(self) -> Dict[str, float]:
        return await asyncio.to_thread(self._time)

    def _os_info(self) -> Dict[str, str]:
        distro = platform.system()
        release = platform.release()
        if distro == "Linux":
            try:
                os_release = platform.freedesktop_os_release()
            except OSError:
                os_release = {}
            distro = os_release.get("NAME", distro)
            release = os_release.get("VERSION", os_release.get("VERSION_ID", release))
        elif distro == "Darwin":
            distro = "macOS"
            release = platform.mac_ver()[0] or release
        elif distro == "Windows":
            release = platform.version()

        return {
            "hostname": socket.gethostname(),
            "distro": distro,
            "release": release,
            "kernel": platform.release(),
        }

    def _network_interfaces(self) -> List[Dict[str, Any]]:
        interfaces: List[Dict[str, Any]] = []
        for name, addresses in psutil.net_if_addrs().items():
            ip4 = next(
                (addr.address for addr in addresses if addr.family == socket.AF_INET),
                "",
            )
            interfaces.append(
                {
                    "iface": name,
                    "internal": _is_loopback(name, ip4),
                    "ip4": ip4,
                }
            )
        return interfaces

    def _current_load(self) -> Dict[str, float]:
        return {"currentLoad": psutil.cpu_percent(interval=None)}

    def _cpu_temperature(self) -> Dict[str, Optional[float]]:
        read_sensors = getattr(psutil, "sensors_temperatures", None)
        if read_sensors is None:
            # Not supported on this platform (e.g. Windows, macOS)
            return {"main": None}

        sensors = read_sensors()
        for group in _CPU_SENSOR_GROUPS:
            readings = sensors.get(group)
            if readings:
                return {"main": readings[0].current}
        return {"main": None}

    def _mem(self) -> Dict[str, int]:
        vm = psutil.virtual_memory()
        # Matches "active" in the sense of total minus reclaimable memory
        return {"active": vm.total - vm.available, "total": vm.total}

    def _fs_size(self) -> List[Dict[str, Any]]:
        volumes: List[Dict[str, Any]] = []
        for partition in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except OSError:
                # Unmounted removable media, restricted mountpoints
                continue
            volumes.append(
                {
                    "fs": partition.device,
                    "mount": partition.mountpoint,
                    "used": usage.used,
                    "size": usage.total,
                }
            )
        return volumes

    def _network_stats(self) -> List[Dict[str, Any]]:
        now = self._clock()
        counters = psutil.net_io_counters(pernic=True)
        if_stats = psutil.net_if_stats()
        addresses = psutil.net_if_addrs()

        with self._net_lock:
            previous = self._last_net
            self._last_net = (now, counters)

        stats: List[Dict[str, Any]] = []
        for name, counter in counters.items():
            nic = if_stats.get(name)
            if nic is None or not nic.isup:
                continue
            ip4 = next(
                (a.address for a in addresses.get(name, []) if a.family == socket.AF_INET),
                "",
            )
            if _is_loopback(name, ip4):
                continue

            rx_sec: Optional[float] = None
            tx_sec: Optional[float] = None
            if previous is not None:
                last_time, last_counters = previous
                last = last_counters.get(name)
                elapsed = now - last_time
                if last is not None and elapsed > 0:
                    rx_sec = max(counter.bytes_recv - last.bytes_recv, 0) / elapsed
                    tx_sec = max(counter.bytes_sent - last.bytes_sent, 0) / elapsed

            stats.append({"iface": name, "rx_sec": rx_sec, "tx_sec": tx_sec})
        return stats

    def _processes(self) -> Dict[str, List[Dict[str, Any]]]:
        entries: List[Dict[str, Any]] = []
        for proc in psutil.process_iter(attrs=_PROCESS_ATTRS):
            try:
                info = proc.info
                entries.append(
                    {
                        "pid": info.get("pid", 0),
                        "name": info.get("name") or "",
                        "user": info.get("username") or "",
                        "cpu": info.get("cpu_percent") or 0.0,
                        "mem": info.get("memory_percent") or 0.0,
                        "state": info.get("status") or "",
                    }
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return {"list": entries}

    def _time(self) -> Dict[str, float]:
        return {"uptime": time.time() - psutil.boot_time()}


def _is_loopback(name: str, ip4: str) -> bool:
    return name == "lo" or name.startswith("lo0") or ip4.startswith("127.")
