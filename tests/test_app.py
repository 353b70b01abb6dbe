"""Tests for configuration loading and executor wiring."""

from pathlib import Path

import pytest

from agentloom.app import build_executor
from agentloom.config.agentloom import load_config
from agentloom.config.capability import SseProviderConfig, StdioProviderConfig
from agentloom.protocol.sse import SseCapabilityClient
from agentloom.protocol.stdio import StdioCapabilityClient

CONFIG = """
chat_llm:
  type: openai
  model: gpt-4o
  api_key: ${AGENTLOOM_TEST_KEY}
runtime:
  agent_parallel: true
  max_iterations: 20
agents:
  - name: Browser
    description: Browses the web
    provider:
      type: sse
      url: http://localhost:8931/sse
  - name: Shell
    provider:
      type: stdio
      command: shell-provider
      args: ["--readonly"]
  - name: Writer
    extra_prompt: Write in plain English.
"""


@pytest.fixture
def config_path(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("AGENTLOOM_TEST_KEY", "secret")
    path = tmp_path / "agentloom.yml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_env_substitution_and_defaults(self, config_path: Path):
        config = load_config(str(config_path))

        assert config.chat_llm.api_key == "secret"
        assert config.runtime.agent_parallel is True
        assert config.runtime.max_iterations == 20
        assert config.runtime.circuit_breaker_threshold == 10
        assert config.log_directory is None

    def test_provider_configs_are_discriminated(self, config_path: Path):
        config = load_config(str(config_path))

        browser, shell, writer = config.agents
        assert isinstance(browser.provider, SseProviderConfig)
        assert isinstance(shell.provider, StdioProviderConfig)
        assert shell.provider.args == ["--readonly"]
        assert writer.provider is None


class TestBuildExecutor:
    def test_agents_and_provider_clients(self, config_path: Path):
        executor = build_executor(load_config(str(config_path)))

        assert list(executor.agents) == ["Browser", "Shell", "Writer"]
        assert isinstance(executor.agents["Browser"].provider_client, SseCapabilityClient)
        assert isinstance(executor.agents["Shell"].provider_client, StdioCapabilityClient)
        assert executor.agents["Writer"].provider_client is None
        assert executor.agents["Writer"].extra_prompt == "Write in plain English."
        assert executor.config.agent_parallel is True

    def test_template_directory_overrides_packaged_prompts(self, config_path: Path, tmp_path: Path):
        templates = tmp_path / "prompts" / "en"
        templates.mkdir(parents=True)
        (templates / "agent_user.jinja2").write_text("Custom prompt", encoding="utf-8")
        config = load_config(str(config_path))
        config.template_directory = str(tmp_path / "prompts")

        template_env = build_executor(config).agents["Writer"].template_env

        assert template_env.load_template("agent_user.jinja2").render() == "Custom prompt"
        packaged = template_env.load_template("agent_system.jinja2")
        assert Path(packaged.filename).parent.name == "en"
        assert "prompts" not in Path(packaged.filename).parts
