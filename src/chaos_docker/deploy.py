"""
Deployment of the fault-injection tool into target containers.
"""

import logging
import posixpath
from typing import Optional

from chaos_docker.config import EngineConfig
from chaos_docker.exceptions import DeployError, ExecError
from chaos_docker.lifecycle import LifecycleController
from chaos_docker.local import LocalCommandRunner
from chaos_docker.metrics import record_deployment

logger = logging.getLogger(__name__)


class ToolDeployer:
    """
    Ensures the tool tree exists at the fixed install path inside a container.

    Deployment is idempotent: when the tool binary is already present and
    override is off, nothing is copied or renamed.
    """

    def __init__(
        self,
        lifecycle: LifecycleController,
        config: Optional[EngineConfig] = None,
        runner: Optional[LocalCommandRunner] = None,
    ):
        self.lifecycle = lifecycle
        self.config = config or lifecycle.config
        self.runner = runner or LocalCommandRunner()

    def archive_top_dir(self, archive_path: str) -> str:
        """
        Top-level directory of the local tool archive.

        Raises:
            InvalidParameterError: If the archive is unreadable
        """
        return self.runner.archive_top_dir(archive_path)

    def is_installed(self, container_id: str) -> bool:
        """Privileged existence check for the tool binary inside the container."""
        probe = f"[ -e {self.config.tool_path} ] && echo True || echo False"
        try:
            output = self.lifecycle.exec_privileged(container_id, probe)
        except ExecError as e:
            logger.debug(f"Probe for {self.config.tool_path} in {container_id} failed: {e.message}")
            return False
        logger.debug(f"output: {output.strip()}")
        return "True" in output

    def deploy(self, container_id: str, archive_path: str, extract_dir_name: str, override: bool = False) -> bool:
        """
        Deploy the tool archive into the container.

        Args:
            container_id: Target container
            archive_path: Local tar archive of the tool
            extract_dir_name: Top-level directory the archive extracts to
            override: Redeploy even when the tool is already present

        Returns:
            True if the tool was copied, False if the existing install was kept

        Raises:
            DeployError: If copying or renaming fails
        """
        if not override and self.is_installed(container_id):
            logger.info(f"Tool already deployed in {container_id[:12]}, skipping")
            record_deployment("skipped")
            return False

        staging_dir = self.config.staging_dir
        install_dir = self.config.install_dir
        extracted_dir = posixpath.join(staging_dir, extract_dir_name)
        try:
            self.lifecycle.copy_to_container(container_id, archive_path, staging_dir, override)
            if extracted_dir != install_dir:
                rename_cmd = f"rm -rf {install_dir} && mv {extracted_dir} {install_dir}"
                logger.debug(f"renameCmd: {rename_cmd}")
                self.lifecycle.exec_privileged(container_id, rename_cmd)
        except ExecError as e:
            record_deployment("failed")
            raise DeployError(f"DeployChaosBlade failed: {e.message}", e)
        except OSError as e:
            record_deployment("failed")
            raise DeployError(f"DeployChaosBlade failed, cannot read {archive_path}: {e}", e)

        logger.info(f"Tool deployed to {container_id[:12]}:{install_dir} from {archive_path}")
        record_deployment("deployed")
        return True
