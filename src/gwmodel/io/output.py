"""YAML rendering of build results."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import IO, Any

from ruamel.yaml import YAML

from gwmodel.builders.model_builder import BuildResult

logger = logging.getLogger(__name__)


def _yaml() -> YAML:
    yaml = YAML()
    yaml.indent(mapping=2, sequence=4, offset=2)
    yaml.default_flow_style = False
    yaml.allow_unicode = True
    yaml.width = 4096
    return yaml


def result_to_dict(result: BuildResult) -> dict[str, Any]:
    """Plain-data view of a build: the stack plus its side outputs."""
    return {
        "stack": result.stack.to_dict(),
        "backendSecurityGroupAllocated": result.backend_sg_allocated,
        "frontendNlbTargets": [
            {
                "targetGroupName": name,
                "port": target.port,
                "targetPort": target.target_port,
                "targetARN": target.target_arn,
            }
            for name, target in sorted(result.frontend_nlb_targets.items())
        ],
        "secrets": [f"{ns}/{name}" for ns, name in sorted(result.secrets)],
    }


def dump_result(result: BuildResult, stream: IO[str]) -> None:
    _yaml().dump(result_to_dict(result), stream)


def write_result(result: BuildResult, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        dump_result(result, f)
    logger.info("Stack %s written to %s", result.stack.stack_id, path)
