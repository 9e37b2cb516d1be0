from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class ProcessStatus(str, Enum):
    RUNNING = "Running"
    SLEEPING = "Sleeping"


class SystemStats(BaseModel):
    """Normalized host metrics produced once per sampling tick."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cpu_usage_percent: float = Field(
        ...,
        alias="cpuUsagePercent",
        description="Current CPU load in percent, rounded to one decimal",
    )
    cpu_temp_celsius: float = Field(
        0.0,
        alias="cpuTempCelsius",
        description="Main CPU temperature, 0 if the host exposes no sensor",
    )
    memory_used_gib: float = Field(
        ...,
        ge=0,
        alias="memoryUsedGiB",
        description="Actively used RAM in GiB",
    )
    memory_total_gib: float = Field(
        ...,
        ge=0,
        alias="memoryTotalGiB",
        description="Total RAM in GiB",
    )
    storage_used_gib: float = Field(
        ...,
        ge=0,
        alias="storageUsedGiB",
        description="Used space of the largest mounted volume in GiB",
    )
    storage_total_gib: float = Field(
        ...,
        ge=0,
        alias="storageTotalGiB",
        description="Size of the largest mounted volume in GiB",
    )
    network_down_mbps: float = Field(
        ...,
        ge=0,
        alias="networkDownMbps",
        description="Receive rate summed over all reported interfaces in Mbit/s",
    )
    network_up_mbps: float = Field(
        ...,
        ge=0,
        alias="networkUpMbps",
        description="Transmit rate summed over all reported interfaces in Mbit/s",
    )
    uptime_seconds: float = Field(
        ...,
        ge=0,
        alias="uptimeSeconds",
        description="Seconds since the host was booted",
    )


class ProcessEntry(BaseModel):
    """One row of the top-processes list."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pid: int = Field(..., description="Process id")
    name: str = Field(..., description="Executable name")
    user: str = Field("", description="Owning user, empty if unknown")
    cpu_percent: float = Field(..., alias="cpuPercent", description="CPU usage in percent")
    mem_percent: float = Field(..., alias="memPercent", description="RAM usage in percent")
    status: ProcessStatus = Field(..., description="Simplified liveness state")


def dump_processes(processes: List[ProcessEntry]) -> List[dict]:
    """Serialise a process list to its wire form (camelCase keys)."""
    return [entry.model_dump(mode="json", by_alias=True) for entry in processes]
