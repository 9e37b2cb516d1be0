from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FALLBACK_IP = "127.0.0.1"


class IdentitySnapshot(BaseModel):
    """Static host identity, sent once to every new subscriber as `vm-info`."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    instance_id: str = Field(..., alias="instanceId", description="Hostname of the machine")
    status: Literal["Online"] = Field("Online", description="Always Online while serving")
    region: Literal["Local"] = Field(
        "Local",
        description="Cloud region; a local host has none",
    )
    ip: str = Field(
        FALLBACK_IP,
        description="IPv4 address of the first non-internal interface",
    )
    os: str = Field(..., description="Distribution and release, e.g. 'Ubuntu 22.04'")
    kernel: str = Field(..., description="Kernel release string")
