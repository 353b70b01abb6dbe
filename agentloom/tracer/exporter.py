"""YAML exporter for trace data."""

import logging
import os
from datetime import datetime
from pathlib import Path

import yaml

from agentloom.tracer.span import Span

logger = logging.getLogger(__name__)


class YAMLExporter:
    """Writes a completed trace tree to a YAML file in *output_dir*."""

    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)
        os.makedirs(self.output_dir, exist_ok=True)

    def export(self, root_span: Span, filename: str | None = None) -> Path:
        """Serialize *root_span* to a YAML file and return its path."""
        if filename is None:
            filename = f"trace_{datetime.now().strftime('%Y%m%d_%H%M%S')}.yaml"
        path = self.output_dir / filename
        with open(path, "w", encoding="utf-8") as fh:
            yaml.dump(root_span.to_dict(), fh, default_flow_style=False, allow_unicode=True, sort_keys=False)
        logger.info("Trace exported to %s", path)
        return path
