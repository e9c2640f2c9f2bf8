"""
Shared wiring for docker executors.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from opentelemetry import trace

from chaos_docker.client import DaemonConnection, get_connection
from chaos_docker.command import build_command
from chaos_docker.config import EngineConfig
from chaos_docker.exceptions import AmbiguousInputError, ChaosDockerError
from chaos_docker.lifecycle import LifecycleController
from chaos_docker.locator import resolve_container
from chaos_docker.metrics import track_execution
from chaos_docker.models import (
    CONTAINER_ID_FLAG,
    CONTAINER_NAME_FLAG,
    ENDPOINT_FLAG,
    ContainerRecord,
    ExperimentRequest,
)
from chaos_docker.response import ExecutionOutcome

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ConnectionFactory = Callable[[str, Optional[EngineConfig]], DaemonConnection]


class BaseDockerExecutor(ABC):
    """
    Base class for executors that reach a container through the daemon.

    Subclasses implement ``_execute``; every ChaosDockerError they raise
    is turned into a failure outcome here.
    """

    name = "base"

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        connection_factory: ConnectionFactory = get_connection,
    ):
        self.config = config or EngineConfig()
        self._connection_factory = connection_factory

    def validate(self, request: ExperimentRequest) -> None:
        """Check the request before any daemon call is made."""
        if request.identity.is_empty:
            raise AmbiguousInputError(
                f"less parameter: need one of {CONTAINER_ID_FLAG}, {CONTAINER_NAME_FLAG}"
            )

    def lifecycle_for(self, request: ExperimentRequest) -> LifecycleController:
        """Lifecycle controller bound to the request's daemon endpoint."""
        connection = self._connection_factory(request.flag(ENDPOINT_FLAG), self.config)
        return LifecycleController(connection.api, self.config)

    def resolve_target(self, lifecycle: LifecycleController, request: ExperimentRequest) -> ContainerRecord:
        return resolve_container(lifecycle.api, request.identity)

    def command_for(self, request: ExperimentRequest) -> str:
        return build_command(self.config.tool_path, request)

    def execute(self, request: ExperimentRequest, cancel: Optional[threading.Event] = None) -> ExecutionOutcome:
        """
        Run the request and return its outcome. Never raises ChaosDockerError.

        Args:
            request: Experiment to inject or reverse
            cancel: Optional event; when set, the invocation stops before its next step
        """
        uid = request.experiment_id
        with tracer.start_as_current_span("chaos_docker.execute") as span, \
                track_execution(request.target, request.phase.value, self.name) as labels:
            span.set_attribute("chaos.category", request.target)
            span.set_attribute("chaos.action", request.action)
            span.set_attribute("chaos.phase", request.phase.value)
            span.set_attribute("chaos.experiment_id", uid)
            try:
                self.validate(request)
                lifecycle = self.lifecycle_for(request)
                outcome = self._execute(request, lifecycle, cancel)
            except ChaosDockerError as e:
                log = logger.warning if e.retryable else logger.error
                log(f"[{uid}] {self.name} {request.target} {request.action} {request.phase.value} failed: {e.message}")
                outcome = ExecutionOutcome.from_error(e)

            labels["outcome"] = "success" if outcome.success else ("failure" if outcome.is_fatal else "recoverable")
            span.set_attribute("chaos.success", outcome.success)
            span.set_attribute("chaos.code", int(outcome.code))
            return outcome

    @abstractmethod
    def _execute(
        self,
        request: ExperimentRequest,
        lifecycle: LifecycleController,
        cancel: Optional[threading.Event],
    ) -> ExecutionOutcome:
        """Strategy-specific execution."""
