"""
Container self experiment: remove the target container.
"""

import logging
import threading
from typing import Optional

from chaos_docker.executors.base import BaseDockerExecutor
from chaos_docker.lifecycle import LifecycleController, check_cancelled
from chaos_docker.models import FORCE_FLAG, ExperimentRequest
from chaos_docker.response import ExecutionOutcome

logger = logging.getLogger(__name__)


class ContainerRemoveExecutor(BaseDockerExecutor):
    """
    Removes the target container.

    Stops it first unless the ``force`` flag is given. Removal cannot be
    reversed, so the destroy phase succeeds without touching the daemon.
    """

    name = "remove"

    def execute(self, request: ExperimentRequest, cancel: Optional[threading.Event] = None) -> ExecutionOutcome:
        if request.is_destroy:
            return ExecutionOutcome.ok(request.experiment_id)
        return super().execute(request, cancel)

    def _execute(
        self,
        request: ExperimentRequest,
        lifecycle: LifecycleController,
        cancel: Optional[threading.Event],
    ) -> ExecutionOutcome:
        container = self.resolve_target(lifecycle, request)
        check_cancelled(cancel, "container remove")

        force = request.flag(FORCE_FLAG)
        if force and force.lower() != "false":
            lifecycle.force_remove(container.id)
        else:
            lifecycle.stop_and_remove(container.id, timeout=1)
        logger.info(f"[{request.experiment_id}] Removed container {container.name} ({container.id[:12]})")
        return ExecutionOutcome.ok(request.experiment_id)
