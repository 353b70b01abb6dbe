from enum import Enum

from pydantic import BaseModel, Field, TypeAdapter
from typing_extensions import Annotated, Literal


class ProviderType(str, Enum):
    SSE = "sse"
    Stdio = "stdio"


class SseProviderConfig(BaseModel):
    type: Literal[ProviderType.SSE]
    url: Annotated[str, Field(description="URL of the provider's event stream")]
    headers: Annotated[dict[str, str], Field(
        description="Extra HTTP headers sent with every request",
        default_factory=dict,
    )]
    connect_timeout: Annotated[float, Field(
        description="Seconds to wait for the endpoint announcement and the handshake",
        default=15.0,
    )]
    request_timeout: Annotated[float, Field(
        description="Seconds to wait for the response to a request",
        default=60.0,
    )]
    heartbeat_interval: Annotated[float, Field(
        description="Seconds between keep-alive pings",
        default=10.0,
    )]
    reconnect_delay: Annotated[float, Field(
        description="Seconds to wait before reconnecting a failed stream",
        default=0.5,
    )]


class StdioProviderConfig(BaseModel):
    type: Literal[ProviderType.Stdio]
    command: Annotated[str, Field(description="Executable of the provider process")]
    args: Annotated[list[str], Field(description="Arguments of the provider process", default_factory=list)]
    env: Annotated[dict[str, str] | None, Field(
        description="Extra environment variables of the provider process",
        default=None,
    )]
    cwd: Annotated[str | None, Field(description="Working directory of the provider process", default=None)]
    request_timeout: Annotated[float, Field(
        description="Seconds to wait for the response to a request",
        default=60.0,
    )]


ProviderConfig = Annotated[
    SseProviderConfig | StdioProviderConfig,
    Field(discriminator="type")
]


def validate_provider_config(data: dict) -> SseProviderConfig | StdioProviderConfig:
    """Validate and return a ProviderConfig instance from a dictionary."""
    return TypeAdapter(ProviderConfig).validate_python(data)
