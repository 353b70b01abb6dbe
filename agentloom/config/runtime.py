from pydantic import BaseModel, Field
from typing_extensions import Annotated


class RuntimeConfig(BaseModel):
    """Limits and feature switches of the agent runtime"""

    max_iterations: Annotated[int, Field(
        description="Maximum reasoning/acting iterations of one agent before it gives up",
        default=500,
        ge=1,
    )]
    max_retries: Annotated[int, Field(
        description="Maximum retries of a failed reasoning call",
        default=3,
        ge=0,
    )]
    retry_base_delay: Annotated[float, Field(
        description="Base delay in seconds of the quadratic reasoning retry backoff",
        default=0.3,
        ge=0,
    )]
    compress_threshold: Annotated[int, Field(
        description="Transcript length (messages) at which history compression kicks in",
        default=80,
        ge=1,
    )]
    compress_tokens_threshold: Annotated[int, Field(
        description="Estimated prompt tokens at which history compression kicks in",
        default=80000,
        ge=1,
    )]
    large_text_length: Annotated[int, Field(
        description="Length above which a single text part is truncated during compression",
        default=5000,
        ge=1,
    )]
    parallel_tool_calls: Annotated[bool, Field(
        description="Dispatch concurrency safe capabilities of one step concurrently",
        default=True,
    )]
    agent_parallel: Annotated[bool, Field(
        description="Run the agents of a parallel stage concurrently",
        default=False,
    )]
    expert_mode: Annotated[bool, Field(
        description="Verify a candidate final answer once before accepting it",
        default=False,
    )]
    circuit_breaker_threshold: Annotated[int, Field(
        description="Consecutive failed invocations that abort an agent",
        default=10,
        ge=1,
    )]
    max_invocation_retries: Annotated[int, Field(
        description="Maximum retries of a failed capability invocation requested by the exception hook",
        default=3,
        ge=0,
    )]
    invocation_retry_delay: Annotated[float, Field(
        description="Base delay in seconds between invocation retries",
        default=0.5,
        ge=0,
    )]
    agent_retries: Annotated[int, Field(
        description="Maximum retries of a whole agent requested by the agent error hook",
        default=1,
        ge=0,
    )]
