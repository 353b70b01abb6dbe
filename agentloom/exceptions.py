class AgentLoomError(Exception):
    """Base exception for AgentLoom errors"""
    def __init__(self, msg: str):
        self.msg = msg

    def __str__(self):
        return self.msg


class LLMError(AgentLoomError):
    pass


class NoChatLLMConfigError(LLMError):
    def __init__(self, msg: str | None = None):
        super().__init__(msg or "Can not find available Chat LLM Config")


class GraphError(AgentLoomError):
    pass


class NoExecutableAgentError(GraphError):
    def __init__(self, msg: str | None = None):
        super().__init__(msg or "No executable agent")


class PlanParseError(AgentLoomError):
    """Raised when a final plan document can not be parsed"""
    def __init__(self, msg: str, markup: str | None = None):
        self.markup = markup
        super().__init__(msg)


class CapabilityError(AgentLoomError):
    pass


class CapabilityNotFoundError(CapabilityError):
    def __init__(self, name: str, available: list[str] | None = None):
        self.name = name
        self.available = available or []
        super().__init__(f"{name} tool does not exist")


class ProtocolError(AgentLoomError):
    pass


class ProtocolConnectionError(ProtocolError):
    pass


class CapabilityProtocolError(ProtocolError):
    """Error reported by a capability provider, naming the failing method"""
    def __init__(self, method: str, detail: str):
        self.method = method
        self.detail = detail
        super().__init__(f"MCP {method} error: {detail}")


class ReasoningError(AgentLoomError):
    pass


class ReasoningFinishError(ReasoningError):
    """The reasoning engine stopped for a reason that must not be retried"""
    def __init__(self, finish_reason: str, detail: str | None = None):
        self.finish_reason = finish_reason
        super().__init__(f"LLM error: {detail or finish_reason}")


class AgentError(AgentLoomError):
    pass


class UnknownAgentError(AgentError):
    def __init__(self, agent_name: str):
        self.agent_name = agent_name
        super().__init__(f"Unknown Agent: {agent_name}")


class PolicyBlockedError(AgentError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Blocked: {reason}")


class CircuitBreakerTrippedError(AgentError):
    """Raised when too many consecutive invocations failed"""
    def __init__(self, consecutive_errors: int, last_error: BaseException | None):
        self.consecutive_errors = consecutive_errors
        self.last_error = last_error
        super().__init__(
            f"Circuit breaker tripped after {consecutive_errors} consecutive errors: {last_error}"
        )


class TaskCancelledError(AgentLoomError):
    def __init__(self, msg: str | None = None):
        super().__init__(msg or "Task was cancelled")
