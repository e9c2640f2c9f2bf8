"""
Command lines for the in-container fault-injection tool.

create:  <tool> create <category> <action> --flag value ... --uid <id>
destroy: <tool> destroy <id>
         <tool> destroy <category> <action> --flag value ...   (no explicit id)
"""

import shlex
from typing import AbstractSet, Mapping

from chaos_docker.models import TRANSPORT_FLAGS, ExperimentRequest


def matcher_args(flags: Mapping[str, str], exclude: AbstractSet[str] = TRANSPORT_FLAGS) -> str:
    """Serialize matcher flags as ``--name value`` pairs, sorted by name."""
    parts = []
    for name in sorted(flags):
        value = flags[name]
        if name in exclude or value is None or value == "":
            continue
        parts.append(f"--{name} {shlex.quote(str(value))}")
    return " ".join(parts)


def _join(*parts: str) -> str:
    return " ".join(part for part in parts if part)


def create_command(tool_path: str, request: ExperimentRequest) -> str:
    return _join(
        tool_path,
        "create",
        request.target,
        request.action,
        matcher_args(request.flags),
        f"--uid {shlex.quote(request.experiment_id)}" if request.experiment_id else "",
    )


def destroy_command(tool_path: str, request: ExperimentRequest) -> str:
    if request.has_explicit_id:
        return _join(tool_path, "destroy", shlex.quote(request.experiment_id))
    return _join(tool_path, "destroy", request.target, request.action, matcher_args(request.flags))


def build_command(tool_path: str, request: ExperimentRequest) -> str:
    """Command line for the request's phase."""
    if request.is_destroy:
        return destroy_command(tool_path, request)
    return create_command(tool_path, request)
