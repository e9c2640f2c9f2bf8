"""
Sidecar execution strategy.

Runs fault commands in a helper container that joins the target's network
namespace with NET_ADMIN, for faults the target container cannot apply
itself. The helper is either ephemeral (created and removed per call) or
resident (reused across calls, removed on a successful destroy).
"""

import logging
import threading
from enum import Enum
from typing import Optional, Sequence

from chaos_docker.client import get_connection
from chaos_docker.config import EngineConfig
from chaos_docker.exceptions import ExecError, NotFoundError
from chaos_docker.executors.base import BaseDockerExecutor, ConnectionFactory
from chaos_docker.lifecycle import ContainerSpec, KeyedLock, LifecycleController, check_cancelled
from chaos_docker.locator import find_container_by_name
from chaos_docker.metrics import record_sidecar_event
from chaos_docker.models import IMAGE_REPO_FLAG, IMAGE_VERSION_FLAG, ContainerRecord, ErrorCode, ExperimentRequest
from chaos_docker.response import ExecutionOutcome, decode_outcome

logger = logging.getLogger(__name__)

SIDECAR_LABEL_KEY = "chaosblade"
TARGET_LABEL_KEY = "chaosblade.target"


class SidecarPolicy(str, Enum):
    """Lifecycle policy of a sidecar container."""
    EPHEMERAL = "ephemeral"
    RESIDENT = "resident"


def sidecar_container_name(target_name: str, category: str) -> str:
    """Deterministic sidecar name for a target container and fault category."""
    return f"{target_name.lstrip('/')}-{category}"


class SidecarExecutor(BaseDockerExecutor):
    """
    Executes fault commands in a helper container sharing the target's network.

    Calls for the same sidecar name are serialised in-process, so two
    concurrent create calls cannot both try to create the helper.
    """

    name = "runAndExecSidecar"

    # Shared by every instance in the process.
    _locks = KeyedLock()

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        connection_factory: ConnectionFactory = get_connection,
        policy: SidecarPolicy = SidecarPolicy.EPHEMERAL,
        capabilities: Sequence[str] = ("NET_ADMIN",),
    ):
        super().__init__(config, connection_factory)
        self.policy = SidecarPolicy(policy)
        self.capabilities = list(capabilities)

    @property
    def is_resident(self) -> bool:
        return self.policy == SidecarPolicy.RESIDENT

    def container_spec(self, request: ExperimentRequest, target_id: str) -> ContainerSpec:
        return ContainerSpec(
            image=self.config.image_ref(request.flag(IMAGE_REPO_FLAG), request.flag(IMAGE_VERSION_FLAG)),
            command=["/bin/sh"],
            network_mode=f"container:{target_id}",
            cap_add=list(self.capabilities),
            labels={
                SIDECAR_LABEL_KEY: self.config.sidecar_label,
                TARGET_LABEL_KEY: target_id,
            },
            tty=True,
        )

    def _execute(
        self,
        request: ExperimentRequest,
        lifecycle: LifecycleController,
        cancel: Optional[threading.Event],
    ) -> ExecutionOutcome:
        try:
            target = self.resolve_target(lifecycle, request)
        except NotFoundError as e:
            if not request.is_destroy:
                raise
            return self._target_gone(request, lifecycle, e)

        sidecar_name = sidecar_container_name(target.name, request.target)
        command = self.command_for(request)
        with self._locks.hold(sidecar_name):
            if self.is_resident:
                if request.is_destroy:
                    return self._destroy_resident(request, lifecycle, sidecar_name, command)
                return self._create_resident(request, lifecycle, target, sidecar_name, command, cancel)
            return self._run_ephemeral(request, lifecycle, target, sidecar_name, command, cancel)

    # ========================================================
    # RESIDENT
    # ========================================================

    def _create_resident(
        self,
        request: ExperimentRequest,
        lifecycle: LifecycleController,
        target: ContainerRecord,
        sidecar_name: str,
        command: str,
        cancel: Optional[threading.Event],
    ) -> ExecutionOutcome:
        uid = request.experiment_id
        existing = find_container_by_name(lifecycle.api, sidecar_name)
        if existing is not None and existing.is_running and existing.labels.get(TARGET_LABEL_KEY) == target.id:
            logger.info(f"[{uid}] Reusing sidecar {sidecar_name} ({existing.id[:12]})")
            record_sidecar_event("reused")
            sidecar_id = existing.id
        else:
            if existing is not None:
                logger.info(
                    f"[{uid}] Sidecar {sidecar_name} is {existing.state.value} and attached to "
                    f"{existing.labels.get(TARGET_LABEL_KEY, 'unknown')[:12]}, recreating for {target.id[:12]}"
                )
                lifecycle.force_remove(existing.id)
                record_sidecar_event("removed")
            check_cancelled(cancel, "sidecar create")
            sidecar_id = lifecycle.start_ready(self.container_spec(request, target.id), sidecar_name, cancel)
            record_sidecar_event("created")

        check_cancelled(cancel, "exec")
        try:
            output = lifecycle.exec_command(sidecar_id, command)
        except ExecError as e:
            return decode_outcome("", e)
        logger.info(f"[{uid}] sidecar {sidecar_name} ({sidecar_id[:12]}) output: {output.strip()}")
        return decode_outcome(output)

    def _destroy_resident(
        self,
        request: ExperimentRequest,
        lifecycle: LifecycleController,
        sidecar_name: str,
        command: str,
    ) -> ExecutionOutcome:
        uid = request.experiment_id
        existing = find_container_by_name(lifecycle.api, sidecar_name)
        if existing is None:
            missing = NotFoundError(sidecar_name)
            logger.warning(f"[{uid}] Sidecar {sidecar_name} already destroyed")
            return ExecutionOutcome.fail(ErrorCode.SIDECAR_NOT_FOUND, f"already destroyed: {missing.message}")

        try:
            output = lifecycle.exec_command(existing.id, command)
        except ExecError as e:
            outcome = decode_outcome("", e)
        else:
            outcome = decode_outcome(output)

        if not outcome.success:
            logger.warning(f"[{uid}] Destroy in sidecar {sidecar_name} failed, leaving it for inspection: {outcome.message}")
            return outcome

        lifecycle.force_remove(existing.id)
        record_sidecar_event("removed")
        return outcome

    # ========================================================
    # EPHEMERAL
    # ========================================================

    def _run_ephemeral(
        self,
        request: ExperimentRequest,
        lifecycle: LifecycleController,
        target: ContainerRecord,
        sidecar_name: str,
        command: str,
        cancel: Optional[threading.Event],
    ) -> ExecutionOutcome:
        uid = request.experiment_id
        leftover = find_container_by_name(lifecycle.api, sidecar_name)
        if leftover is not None:
            logger.info(f"[{uid}] Removing leftover sidecar {sidecar_name} ({leftover.state.value})")
            lifecycle.force_remove(leftover.id)
            record_sidecar_event("removed")

        run = lifecycle.execute_and_cleanup(
            self.container_spec(request, target.id),
            sidecar_name,
            remove_after=True,
            command=command,
            cancel=cancel,
        )
        if run.container_id:
            record_sidecar_event("created")
            record_sidecar_event("removed")
        logger.info(f"[{uid}] sidecar container {run.container_id[:12]} output: {run.output.strip()}, err: {run.error}")

        if run.error is not None and not run.executed:
            return ExecutionOutcome.from_error(run.error)
        return decode_outcome(run.output, run.error)

    # ========================================================
    # DESTROY WITH TARGET GONE
    # ========================================================

    def _target_gone(
        self,
        request: ExperimentRequest,
        lifecycle: LifecycleController,
        error: NotFoundError,
    ) -> ExecutionOutcome:
        """Destroy against a missing target: clean up any leftover sidecar, report non-fatal."""
        uid = request.experiment_id
        target_name = request.identity.name
        if target_name:
            sidecar_name = sidecar_container_name(target_name, request.target)
            with self._locks.hold(sidecar_name):
                leftover = find_container_by_name(lifecycle.api, sidecar_name)
                if leftover is not None:
                    lifecycle.force_remove(leftover.id)
                    record_sidecar_event("removed")
        logger.warning(f"[{uid}] Target container already gone: {error.message}")
        return ExecutionOutcome.fail(ErrorCode.SIDECAR_NOT_FOUND, f"already destroyed: {error.message}")
