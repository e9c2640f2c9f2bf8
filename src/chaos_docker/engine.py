"""
Engine entry point: dispatches experiments to an execution strategy by fault category.
"""

import dataclasses
import logging
import threading
import uuid
from typing import Dict, List, Mapping, Optional

from chaos_docker.client import get_connection
from chaos_docker.config import EngineConfig
from chaos_docker.executors.base import BaseDockerExecutor, ConnectionFactory
from chaos_docker.executors.container import ContainerRemoveExecutor
from chaos_docker.executors.exec_in import InContainerExecutor
from chaos_docker.executors.sidecar import SidecarExecutor, SidecarPolicy
from chaos_docker.local import LocalCommandRunner
from chaos_docker.models import ErrorCode, ExperimentRequest, Phase
from chaos_docker.response import ExecutionOutcome

logger = logging.getLogger(__name__)

SIDECAR_CATEGORIES = ("network",)
IN_CONTAINER_CATEGORIES = ("cpu", "mem", "disk", "process", "file")
CONTAINER_CATEGORY = "container"
CONTAINER_ACTIONS = ("remove", "rm")


def executor_key(category: str, action: str) -> str:
    return f"{category}-{action}"


class ChaosEngine:
    """
    Maps fault categories to executors and runs experiments.

    Network faults run in a sidecar (resident by default); cpu, mem, disk,
    process and file faults run inside the target container; the container
    category removes the target itself.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        connection_factory: ConnectionFactory = get_connection,
        runner: Optional[LocalCommandRunner] = None,
    ):
        self.config = config or EngineConfig()
        self.config.validate()
        self._executors: Dict[str, BaseDockerExecutor] = {}

        for category in SIDECAR_CATEGORIES:
            policy = self.config.sidecar_policies.get(category, SidecarPolicy.EPHEMERAL.value)
            self.register(category, SidecarExecutor(self.config, connection_factory, policy=policy))

        in_container = InContainerExecutor(self.config, connection_factory, runner)
        for category in IN_CONTAINER_CATEGORIES:
            self.register(category, in_container)

        self.register(CONTAINER_CATEGORY, ContainerRemoveExecutor(self.config, connection_factory))
        logger.info(f"ChaosEngine initialized with categories: {', '.join(self.categories())}")

    def register(self, category: str, executor: BaseDockerExecutor) -> None:
        self._executors[category] = executor

    def categories(self) -> List[str]:
        return sorted(self._executors)

    def executor_for(self, category: str) -> Optional[BaseDockerExecutor]:
        return self._executors.get(category)

    def execute(self, request: ExperimentRequest, cancel: Optional[threading.Event] = None) -> ExecutionOutcome:
        """
        Run an experiment with the strategy registered for its category.

        A create request without an experiment id gets a generated one.
        """
        if not request.is_destroy and not request.experiment_id:
            request = dataclasses.replace(request, experiment_id=uuid.uuid4().hex[:16])

        executor = self.executor_for(request.target)
        if executor is None:
            logger.error(f"[{request.experiment_id}] Unsupported fault category: {request.target}")
            return ExecutionOutcome.fail(ErrorCode.PARAMETER_INVALID, f"unsupported fault category: {request.target}")
        if request.target == CONTAINER_CATEGORY and request.action not in CONTAINER_ACTIONS:
            return ExecutionOutcome.fail(
                ErrorCode.PARAMETER_INVALID,
                f"unsupported action for {CONTAINER_CATEGORY}: {request.action}",
            )

        logger.info(
            f"[{request.experiment_id}] {request.phase.value} {executor_key(request.target, request.action)} "
            f"via {executor.name}"
        )
        return executor.execute(request, cancel)

    def create(
        self,
        target: str,
        action: str,
        flags: Mapping[str, str],
        experiment_id: str = "",
        cancel: Optional[threading.Event] = None,
    ) -> ExecutionOutcome:
        return self.execute(ExperimentRequest(target, action, Phase.CREATE, flags, experiment_id), cancel)

    def destroy(
        self,
        target: str,
        action: str,
        flags: Mapping[str, str],
        experiment_id: str = "",
        cancel: Optional[threading.Event] = None,
    ) -> ExecutionOutcome:
        return self.execute(ExperimentRequest(target, action, Phase.DESTROY, flags, experiment_id), cancel)
