"""Reasoning call logger.

Keeps every reasoning request/response of the agent runs of a task in memory,
grouped by agent run, and dumps them to a YAML file for offline inspection.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any

import yaml


@dataclass
class ReasoningCall:
    messages: list[dict[str, Any]]
    tools: list[str]
    response_text: str
    tool_calls: list[dict[str, Any]]
    finish_reason: str | None = None
    usage: dict[str, int] | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    duration_ms: int | None = None

    def flatten(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "request": {"messages": self.messages, "tools": self.tools},
            "response": {"text": self.response_text, "tool_calls": self.tool_calls},
        }
        for key in ("finish_reason", "usage", "error"):
            value = getattr(self, key)
            if value is not None:
                data["response"][key] = value
        return data


@dataclass
class AgentRunLog:
    task_id: str
    agent_id: str
    agent_name: str
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    calls: list[ReasoningCall] = field(default_factory=list)


class LLMLogger:
    """Thread-safe reasoning call logger that stores logs in memory and persists to YAML files."""

    def __init__(self, log_directory: str = "logs"):
        self.log_directory = log_directory
        self._runs: dict[tuple[str, str], AgentRunLog] = {}
        self._lock = Lock()
        os.makedirs(log_directory, exist_ok=True)

    def start_run(self, task_id: str, agent_id: str, agent_name: str) -> None:
        with self._lock:
            self._runs[(task_id, agent_id)] = AgentRunLog(task_id=task_id, agent_id=agent_id, agent_name=agent_name)

    def log_call(self, task_id: str, agent_id: str, call: ReasoningCall) -> None:
        with self._lock:
            run = self._runs.get((task_id, agent_id))
            if run is None:
                raise RuntimeError(f"No active run for agent {agent_id}. Call start_run() first.")
            run.calls.append(call)

    def complete_run(self, task_id: str, agent_id: str) -> None:
        with self._lock:
            run = self._runs.get((task_id, agent_id))
            if run:
                run.completed_at = datetime.now()

    def runs(self) -> list[AgentRunLog]:
        with self._lock:
            return list(self._runs.values())

    def dump_to_file(self, filename: str | None = None) -> str:
        """Dump all logged runs to a YAML file.

        Args:
            filename: Optional custom filename. If not provided, uses current datetime.

        Returns:
            The path to the created file.
        """
        if not filename:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"reasoning_log_{timestamp}.yaml"
        filepath = os.path.join(self.log_directory, filename)

        with self._lock:
            data = {
                "runs": [
                    {
                        "task_id": run.task_id,
                        "agent_id": run.agent_id,
                        "agent_name": run.agent_name,
                        "started_at": run.started_at.isoformat(),
                        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
                        "calls": [call.flatten() for call in run.calls],
                    }
                    for run in self._runs.values()
                ]
            }

        with open(filepath, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        return filepath

    def clear_logs(self) -> None:
        with self._lock:
            self._runs.clear()
