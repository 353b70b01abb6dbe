import asyncio
import logging
import uuid
from argparse import ArgumentParser
from pathlib import Path

from agentloom.app import build_executor
from agentloom.config.agentloom import load_config
from agentloom.exceptions import PlanParseError
from agentloom.plan.codec import parse_plan
from agentloom.tracer import Tracer, YAMLExporter

logger = logging.getLogger(__name__)


async def run(config_path: str, plan_path: str, verbosity: int | None):
    httpx_logger = logging.getLogger('httpx')
    if not verbosity:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
        httpx_logger.setLevel(logging.WARNING)
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level)

    config = load_config(config_path)
    tracer = None
    tracer_token = None
    if config.trace_directory:
        tracer = Tracer(exporter=YAMLExporter(output_dir=config.trace_directory))
        tracer_token = tracer.activate()

    try:
        with open(plan_path, 'r', encoding='utf-8') as f:
            plan = parse_plan(f"task{uuid.uuid4().hex[:8]}", f.read(), is_final=True)
        if plan is None:
            raise PlanParseError(f"No <root> plan element found in {plan_path}")
        executor = build_executor(config)
        result = await executor.run_plan(plan)
        print(result.result)
        llm_logger = next((agent.gateway.llm_logger for agent in executor.agents.values()
                           if agent.gateway.llm_logger is not None), None)
        if llm_logger is not None:
            logger.info("Reasoning log written to %s", llm_logger.dump_to_file())
    finally:
        if tracer is not None and tracer_token is not None:
            tracer.deactivate(tracer_token)


def main():
    parser = ArgumentParser('agentloom')
    parser.add_argument('--config', required=True, help="Path to the configuration file")
    parser.add_argument('-v', action='count', help="Verbosity level. -v for INFO, -vv for DEBUG")
    parser.add_argument('plan', help="Path to the plan markup to execute")
    ns = parser.parse_args()
    if not Path(ns.plan).exists():
        parser.error(f"Plan file not found: {ns.plan}")
    asyncio.run(run(ns.config, ns.plan, ns.v))


if __name__ == "__main__":
    main()
