"""
In-container execution strategy.

Deploys the fault-injection tool into the target container (create phase
only) and runs the generated command there.
"""

import logging
import threading
from typing import Optional

from chaos_docker.client import get_connection
from chaos_docker.config import EngineConfig
from chaos_docker.deploy import ToolDeployer
from chaos_docker.exceptions import ExecError, NotFoundError
from chaos_docker.executors.base import BaseDockerExecutor, ConnectionFactory
from chaos_docker.lifecycle import LifecycleController, check_cancelled
from chaos_docker.local import LocalCommandRunner
from chaos_docker.models import (
    TOOL_ARCHIVE_FLAG,
    TOOL_OVERRIDE_FLAG,
    ErrorCode,
    ExperimentRequest,
    parse_bool_flag,
)
from chaos_docker.response import ExecutionOutcome, decode_outcome

logger = logging.getLogger(__name__)


class InContainerExecutor(BaseDockerExecutor):
    """Runs fault commands inside the target container's own namespaces."""

    name = "runCmdInContainer"

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        connection_factory: ConnectionFactory = get_connection,
        runner: Optional[LocalCommandRunner] = None,
    ):
        super().__init__(config, connection_factory)
        self.runner = runner or LocalCommandRunner()

    def _execute(
        self,
        request: ExperimentRequest,
        lifecycle: LifecycleController,
        cancel: Optional[threading.Event],
    ) -> ExecutionOutcome:
        uid = request.experiment_id
        deployer = ToolDeployer(lifecycle, self.config, self.runner)

        archive_path = ""
        extract_dir = ""
        if not request.is_destroy:
            archive_path = request.flag(TOOL_ARCHIVE_FLAG) or self.config.default_archive_path
            extract_dir = deployer.archive_top_dir(archive_path)

        try:
            container = self.resolve_target(lifecycle, request)
        except NotFoundError as e:
            if not request.is_destroy:
                raise
            logger.warning(f"[{uid}] Target container already gone: {e.message}")
            return ExecutionOutcome.fail(ErrorCode.TARGET_GONE, f"already destroyed: {e.message}")
        command = self.command_for(request)

        if not request.is_destroy:
            check_cancelled(cancel, "tool deployment")
            override = parse_bool_flag(request.flag(TOOL_OVERRIDE_FLAG))
            deployer.deploy(container.id, archive_path, extract_dir, override)

        check_cancelled(cancel, "exec")
        logger.debug(f"[{uid}] Executing in {container.name}: {command}")
        result = lifecycle.run_in_container(container.id, command, privileged=True)
        if result.failed:
            logger.error(f"[{uid}] Command failed in {container.name}: {result.stderr.strip()}")
            return decode_outcome(result.stdout, ExecError(result.stderr.strip()))
        return decode_outcome(result.stdout)
