"""
Local host command runner.

Used to inspect the tool archive on the host before it is copied into a
container; the engine itself never parses archive bytes.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import List

from chaos_docker.exceptions import InvalidParameterError
from chaos_docker.models import TOOL_ARCHIVE_FLAG

logger = logging.getLogger(__name__)


@dataclass
class LocalCommandResult:
    """Result of a local command."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class LocalCommandRunner:
    """Runs commands on the local host with a bounded timeout."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def is_available(self, command: str) -> bool:
        return shutil.which(command) is not None

    def run(self, args: List[str]) -> LocalCommandResult:
        logger.debug(f"Running local command: {' '.join(args)}")
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return LocalCommandResult(returncode=-1, stdout="", stderr=str(e))
        return LocalCommandResult(completed.returncode, completed.stdout, completed.stderr)

    def archive_top_dir(self, archive_path: str) -> str:
        """
        Return the top-level directory name of a tar archive.

        Raises:
            InvalidParameterError: If the archive is unreadable or has no top directory
        """
        if not self.is_available("tar"):
            raise InvalidParameterError("`tar` command not found on the local host")
        if not os.path.isfile(archive_path):
            raise InvalidParameterError(f"`{archive_path}`: {TOOL_ARCHIVE_FLAG} parameter is invalid, file not found")

        result = self.run(["tar", "-tf", archive_path])
        if not result.success:
            raise InvalidParameterError(
                f"`{archive_path}`: {TOOL_ARCHIVE_FLAG} parameter is invalid, err: {result.stderr.strip()}"
            )

        for line in result.stdout.splitlines():
            entry = line.strip()
            if entry.startswith("./"):
                entry = entry[2:]
            top_dir = entry.split("/", 1)[0]
            if top_dir:
                return top_dir
        raise InvalidParameterError(
            f"`{archive_path}`: {TOOL_ARCHIVE_FLAG} parameter is invalid, extract empty directory failed"
        )
