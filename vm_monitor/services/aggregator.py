"""Merge per-category metric query results into one normalized snapshot."""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from numbers import Real
from typing import Any, Awaitable, Callable, FrozenSet, List, Mapping, Optional, Tuple

import structlog
from pydantic import ValidationError

from vm_monitor.models.stats import ProcessEntry, ProcessStatus, SystemStats

log = structlog.get_logger()

GIB = 1024**3
TOP_PROCESS_COUNT = 5


class Category(str, Enum):
    """Metric categories queried on every tick."""

    CPU_LOAD = "cpu_load"
    CPU_TEMPERATURE = "cpu_temperature"
    MEMORY = "memory"
    STORAGE = "storage"
    NETWORK = "network"
    PROCESSES = "processes"
    UPTIME = "uptime"


class CycleAggregationError(Exception):
    """Raised when a tick's results cannot be turned into a snapshot at all."""


@dataclass(frozen=True)
class QueryResult:
    """Outcome of one category query: either a value or the failure reason."""

    category: Category
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Snapshot:
    """Stats and top processes of one tick, plus the categories that fell back to defaults."""

    stats: SystemStats
    processes: List[ProcessEntry]
    degraded: FrozenSet[Category] = field(default_factory=frozenset)


async def settle(category: Category, query: Callable[[], Awaitable[Any]]) -> QueryResult:
    """Run a single query and capture its failure instead of raising it."""
    try:
        value = await query()
    except Exception as exc:
        log.debug("source_query_failed", category=category.value, error=repr(exc))
        return QueryResult(category=category, error=exc)
    return QueryResult(category=category, value=value)


def round1(value: float) -> float:
    """Round half away from zero to one decimal."""
    return float(Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _non_negative(value: float) -> float:
    if value < 0:
        raise ValueError(f"negative reading: {value}")
    return value


def _cpu_load(result: QueryResult) -> float:
    return round1(float(result.value["currentLoad"]))


def _cpu_temperature(result: QueryResult) -> float:
    main = (result.value or {}).get("main")
    # Hosts without thermal sensors are common, absence is not a failure
    return float(main) if _is_number(main) else 0.0


def _memory(result: QueryResult) -> Tuple[float, float]:
    mem = result.value
    return round1(_non_negative(mem["active"]) / GIB), round1(_non_negative(mem["total"]) / GIB)


def select_volume(volumes: List[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """Pick the volume with the largest size, the first one on ties."""
    selected = None
    for volume in volumes:
        if selected is None or volume["size"] > selected["size"]:
            selected = volume
    return selected


def _storage(result: QueryResult) -> Tuple[float, float]:
    volume = select_volume(list(result.value or []))
    if volume is None:
        return 0.0, 0.0
    return round1(_non_negative(volume["used"]) / GIB), round1(_non_negative(volume["size"]) / GIB)


def bytes_to_mbps(bytes_per_sec: float) -> float:
    return round1((bytes_per_sec * 8) / 1_000_000)


def _network(result: QueryResult) -> Tuple[float, float]:
    interfaces = list(result.value or [])
    rx = sum(iface.get("rx_sec") or 0 for iface in interfaces)
    tx = sum(iface.get("tx_sec") or 0 for iface in interfaces)
    return bytes_to_mbps(_non_negative(rx)), bytes_to_mbps(_non_negative(tx))


def _uptime(result: QueryResult) -> float:
    return _non_negative(float(result.value["uptime"]))


def top_processes(entries: List[Mapping[str, Any]], limit: int = TOP_PROCESS_COUNT) -> List[ProcessEntry]:
    """
    Return the `limit` busiest processes as ProcessEntry values.

    sorted() is stable, so processes with equal CPU keep their source order.
    """
    ranked = sorted(entries, key=lambda p: p["cpu"], reverse=True)[:limit]
    return [
        ProcessEntry(
            pid=p["pid"],
            name=p["name"],
            user=p.get("user") or "",
            cpu_percent=round1(p["cpu"]),
            mem_percent=round1(p["mem"]),
            status=ProcessStatus.SLEEPING if p.get("state") == "sleeping" else ProcessStatus.RUNNING,
        )
        for p in ranked
    ]


# Category -> (extractor, default used when the query failed or is malformed)
_DEGRADABLE = {
    Category.CPU_LOAD: (_cpu_load, 0.0),
    Category.CPU_TEMPERATURE: (_cpu_temperature, 0.0),
    Category.MEMORY: (_memory, (0.0, 0.0)),
    Category.STORAGE: (_storage, (0.0, 0.0)),
    Category.NETWORK: (_network, (0.0, 0.0)),
    Category.UPTIME: (_uptime, 0.0),
}


def aggregate(results: Mapping[Category, QueryResult]) -> Snapshot:
    """
    Build the snapshot of one tick from its settled query results.

    A failed or unreadable category other than processes falls back to its
    default and is reported in Snapshot.degraded. The process list is
    required: if it failed or is malformed the whole tick is unusable and
    CycleAggregationError is raised.
    """
    degraded = set()
    values = {}

    for category, (extract, default) in _DEGRADABLE.items():
        result = results.get(category)
        if result is None or not result.ok:
            degraded.add(category)
            values[category] = default
            continue
        try:
            values[category] = extract(result)
        except (KeyError, TypeError, ValueError, AttributeError, ArithmeticError) as exc:
            log.debug("source_result_malformed", category=category.value, error=repr(exc))
            degraded.add(category)
            values[category] = default

    processes_result = results.get(Category.PROCESSES)
    if processes_result is None:
        raise CycleAggregationError("process list query missing")
    if not processes_result.ok:
        raise CycleAggregationError(f"process list query failed: {processes_result.error!r}")

    try:
        processes = top_processes(list(processes_result.value["list"]))
    except (KeyError, TypeError, ValueError, ArithmeticError, ValidationError) as exc:
        raise CycleAggregationError(f"malformed process list: {exc!r}") from exc

    memory_used, memory_total = values[Category.MEMORY]
    storage_used, storage_total = values[Category.STORAGE]
    network_down, network_up = values[Category.NETWORK]

    try:
        stats = SystemStats(
            cpu_usage_percent=values[Category.CPU_LOAD],
            cpu_temp_celsius=values[Category.CPU_TEMPERATURE],
            memory_used_gib=memory_used,
            memory_total_gib=memory_total,
            storage_used_gib=storage_used,
            storage_total_gib=storage_total,
            network_down_mbps=network_down,
            network_up_mbps=network_up,
            uptime_seconds=values[Category.UPTIME],
        )
    except ValidationError as exc:
        raise CycleAggregationError(f"invalid stats values: {exc}") from exc

    return Snapshot(stats=stats, processes=processes, degraded=frozenset(degraded))
