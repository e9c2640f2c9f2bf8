"""
Container execution engine for docker chaos experiments.

Injects and reverses fault-injection commands inside docker containers,
either by deploying the fault-injection tool into the target container or
by running it in a sidecar container that shares the target's network
namespace.

Modules:
    client: Daemon connection management and API version negotiation
    locator: Container lookup by id or name
    deploy: Idempotent tool deployment into target containers
    lifecycle: Create/start/stop/remove/exec primitives
    executors: In-container, sidecar and container-self strategies
    engine: Category registry and dispatch entry point
"""

__version__ = "1.0.0"
__all__ = [
    "ChaosEngine",
    "EngineConfig",
    "ExperimentRequest",
    "ExecutionOutcome",
    "ErrorCode",
    "Phase",
    "get_connection",
]

from chaos_docker.client import get_connection
from chaos_docker.config import EngineConfig
from chaos_docker.engine import ChaosEngine
from chaos_docker.models import ErrorCode, ExperimentRequest, Phase
from chaos_docker.response import ExecutionOutcome
