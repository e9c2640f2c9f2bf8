"""
Container lifecycle primitives.

Create, start, stop, remove and exec through one daemon connection, with
docker SDK errors translated into engine exceptions at this boundary.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chaos_docker.config import EngineConfig
from chaos_docker.exceptions import (
    ChaosDockerError,
    ContainerConflictError,
    ContainerStartError,
    ExecError,
    ExecutionCancelledError,
    ImagePullError,
)
from chaos_docker.models import ContainerState, ErrorCode

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (DockerException, requests.exceptions.RequestException)


def check_cancelled(cancel: Optional[threading.Event], step: str) -> None:
    """Raise if the caller asked to cancel before ``step``."""
    if cancel is not None and cancel.is_set():
        raise ExecutionCancelledError(f"cancelled before {step}")


@dataclass
class ExecResult:
    """Captured output of a command run inside a container."""
    stdout: str
    stderr: str

    @property
    def failed(self) -> bool:
        return bool(self.stderr.strip())


@dataclass
class ContainerSpec:
    """
    Parameters for a container the engine creates.

    Attributes:
        image: Image reference
        command: Main process, kept alive by the TTY
        network_mode: Network mode, e.g. ``container:<id>``
        cap_add: Extra Linux capabilities
        labels: Labels set on the container
        tty: Allocate a pseudo-TTY
    """
    image: str
    command: List[str] = field(default_factory=lambda: ["/bin/sh"])
    network_mode: Optional[str] = None
    cap_add: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    tty: bool = True


@dataclass
class EphemeralRun:
    """
    Result of executing a command in a throwaway container.

    ``executed`` is False when the container never got as far as the exec.
    """
    container_id: str
    output: str
    error: Optional[ChaosDockerError] = None
    code: int = ErrorCode.OK
    executed: bool = False


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyedLock:
    """
    In-process mutual exclusion keyed by an arbitrary string.

    A key's lock exists only while some caller holds or waits for it.
    """

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]


class LifecycleController:
    """
    Lifecycle primitives for containers on one daemon.

    Attributes:
        api: Negotiated low-level docker client
        config: Engine configuration
    """

    def __init__(self, api: docker.APIClient, config: Optional[EngineConfig] = None):
        self.api = api
        self.config = config or EngineConfig()

    # ========================================================
    # EXEC
    # ========================================================

    def run_in_container(self, container_id: str, command: str, privileged: bool = False) -> ExecResult:
        """
        Run ``sh -c command`` in a container, capturing stdout and stderr separately.

        Raises:
            ExecError: If the exec cannot be created or attached
        """
        cmd = ["sh", "-c", command]
        logger.info(f"execute command: {' '.join(cmd)}")
        kwargs = {"privileged": True, "user": "root"} if privileged else {}
        try:
            exec_id = self.api.exec_create(container_id, cmd, stdout=True, stderr=True, **kwargs)
            stdout, stderr = self.api.exec_start(exec_id["Id"], demux=True)
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Exec in container: {container_id}, err: {e}")
            raise ExecError(f"execContainer {container_id} failed: {e}", e)

        result = ExecResult(
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
        )
        logger.debug(f"execute result: {result.stdout}, error msg: {result.stderr}")
        return result

    def exec_command(self, container_id: str, command: str, privileged: bool = False) -> str:
        """
        Run a command and return its stdout.

        Raises:
            ExecError: On transport failure, or carrying stderr when it is non-empty
        """
        result = self.run_in_container(container_id, command, privileged=privileged)
        if result.failed:
            raise ExecError(result.stderr.strip())
        return result.stdout

    def exec_privileged(self, container_id: str, command: str) -> str:
        return self.exec_command(container_id, command, privileged=True)

    def copy_to_container(self, container_id: str, src_file: str, dst_path: str, override: bool) -> None:
        """
        Copy a local tar archive into ``dst_path`` inside the container.

        The archive is extracted by the daemon. ``dst_path`` is created first.
        ``put_archive`` has no overwrite switch and always replaces existing
        files, so ``override`` is only recorded in the log.

        Raises:
            ExecError: If the directory cannot be created or the upload fails
            OSError: If the local archive cannot be opened
        """
        self.exec_privileged(container_id, f"mkdir -p {dst_path}")
        logger.debug(f"Copying {src_file} to {container_id}:{dst_path} (override={override})")
        with open(src_file, "rb") as archive:
            try:
                accepted = self.api.put_archive(container_id, dst_path, archive)
            except _TRANSPORT_ERRORS as e:
                raise ExecError(f"CopyToContainer {container_id} failed: {e}", e)
        if not accepted:
            raise ExecError(f"CopyToContainer {container_id} rejected archive {src_file}")

    # ========================================================
    # CREATE / START / STOP / REMOVE
    # ========================================================

    def create_and_start(self, spec: ContainerSpec, name: str) -> str:
        """
        Create and start a container.

        A container that was created but failed to start is not removed
        here; ContainerStartError carries its id so the caller can decide.

        Returns:
            The new container id

        Raises:
            ContainerConflictError: If the name is already taken
            ExecError: If creation fails
            ContainerStartError: If the created container cannot be started
        """
        host_config = self.api.create_host_config(
            network_mode=spec.network_mode,
            cap_add=spec.cap_add or None,
        )
        try:
            body = self.api.create_container(
                spec.image,
                command=spec.command,
                name=name,
                tty=spec.tty,
                detach=True,
                labels=spec.labels,
                host_config=host_config,
            )
        except APIError as e:
            logger.warning(f"Create container: {name}, err: {e}")
            if e.status_code == 409:
                raise ContainerConflictError(f"container name {name} is already in use, retry later", e)
            raise ExecError(f"CreateContainer {name} failed: {e}", e)
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Create container: {name}, err: {e}")
            raise ExecError(f"CreateContainer {name} failed: {e}", e)

        container_id = body["Id"]
        try:
            self.api.start(container_id)
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Start container: {container_id}, err: {e}")
            raise ContainerStartError(f"StartContainer {name} failed: {e}", container_id, e)
        logger.info(f"Container {name} ({container_id[:12]}) created and started")
        return container_id

    def stop_and_remove(self, container_id: str, timeout: Optional[int] = None) -> None:
        """
        Stop gracefully, then force-remove. A container that is already gone is not an error.

        Raises:
            ExecError: If stop or remove fails for any other reason
        """
        if timeout is None:
            timeout = self.config.stop_timeout
        try:
            self.api.stop(container_id, timeout=timeout)
        except NotFound:
            logger.info(f"Container {container_id} already removed")
            return
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Stop container: {container_id}, err: {e}")
            raise ExecError(f"StopContainer {container_id} failed: {e}", e)
        self.force_remove(container_id)

    def force_remove(self, container_id: str) -> None:
        """
        Remove a container regardless of its state.

        Raises:
            ExecError: If the daemon refuses the removal
        """
        try:
            self.api.remove_container(container_id, force=True)
        except NotFound:
            logger.info(f"Container {container_id} already removed")
            return
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Remove container: {container_id}, err: {e}")
            raise ExecError(f"RemoveContainer {container_id} failed: {e}", e)
        logger.info(f"Container {container_id[:12]} removed")

    def container_state(self, container_id: str) -> ContainerState:
        try:
            info = self.api.inspect_container(container_id)
        except _TRANSPORT_ERRORS as e:
            raise ExecError(f"InspectContainer {container_id} failed: {e}", e)
        return ContainerState.parse((info.get("State") or {}).get("Status"))

    def wait_until_running(self, container_id: str, cancel: Optional[threading.Event] = None) -> None:
        """
        Poll until the container is running.

        Raises:
            ContainerStartError: If it exits or does not come up within the readiness timeout
            ExecutionCancelledError: If cancelled while waiting
        """
        deadline = time.monotonic() + self.config.readiness_timeout
        while True:
            state = self.container_state(container_id)
            if state == ContainerState.RUNNING:
                return
            if state in (ContainerState.EXITED, ContainerState.DEAD, ContainerState.REMOVING):
                raise ContainerStartError(f"container {container_id} is {state.value}, expected running", container_id)
            if time.monotonic() >= deadline:
                raise ContainerStartError(
                    f"container {container_id} not running after {self.config.readiness_timeout}s "
                    f"(state: {state.value})",
                    container_id,
                )
            if cancel is not None:
                if cancel.wait(self.config.readiness_interval):
                    raise ExecutionCancelledError(f"cancelled while waiting for container {container_id}")
            else:
                time.sleep(self.config.readiness_interval)

    # ========================================================
    # IMAGES
    # ========================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=(
            retry_if_exception_type((APIError, requests.exceptions.ConnectionError))
            & retry_if_not_exception_type(NotFound)
        ),
        reraise=True
    )
    def _pull_image(self, ref: str) -> None:
        logger.info(f"Pulling image: {ref}")
        self.api.pull(ref)

    def ensure_image(self, ref: str) -> None:
        """
        Pull the image if it is not present locally.

        Raises:
            ImagePullError: If the pull fails
        """
        try:
            self.api.inspect_image(ref)
            return
        except ImageNotFound:
            logger.info(f"Cannot find the image by name: {ref}")
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Get image by name failed. name: {ref}, err: {e}")
        try:
            self._pull_image(ref)
        except _TRANSPORT_ERRORS as e:
            raise ImagePullError(f"pull image {ref} failed: {e}", e)

    # ========================================================
    # COMPOSITE
    # ========================================================

    def start_ready(self, spec: ContainerSpec, name: str, cancel: Optional[threading.Event] = None) -> str:
        """
        Make sure the image exists, then create, start and wait for a running container.

        Any container created along the way is force-removed when it does
        not reach the running state.

        Returns:
            The running container id
        """
        self.ensure_image(spec.image)
        check_cancelled(cancel, "container create")
        try:
            container_id = self.create_and_start(spec, name)
        except ContainerStartError as e:
            self._discard(e.container_id)
            raise

        try:
            self.wait_until_running(container_id, cancel)
        except ChaosDockerError:
            self._discard(container_id)
            raise
        return container_id

    def execute_and_cleanup(
        self,
        spec: ContainerSpec,
        name: str,
        remove_after: bool,
        command: str,
        timeout: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> EphemeralRun:
        """
        Run one command in a freshly created container.

        The container is removed afterwards when ``remove_after`` is set,
        whether or not the command succeeded. If creation fails no exec is
        attempted.

        Returns:
            EphemeralRun with the container id, stdout, and error if any
        """
        logger.debug(f"command: '{command}', image: {spec.image}, containerName: {name}")
        container_id = ""
        try:
            try:
                container_id = self.start_ready(spec, name, cancel)
                check_cancelled(cancel, "exec")
            except ChaosDockerError as e:
                return EphemeralRun(container_id=container_id, output="", error=e, code=e.code)

            try:
                output = self.exec_command(container_id, command)
            except ExecError as e:
                return EphemeralRun(container_id=container_id, output="", error=e, code=e.code, executed=True)
            logger.info(f"Execute output in container: {output}")
            return EphemeralRun(container_id=container_id, output=output, executed=True)
        finally:
            if remove_after and container_id:
                try:
                    self.stop_and_remove(container_id, timeout)
                except ExecError as e:
                    logger.warning(f"Cleanup of container {container_id} failed: {e.message}")
                    self._discard(container_id)

    def _discard(self, container_id: str) -> None:
        """Force-remove a container during cleanup, logging instead of raising."""
        if not container_id:
            return
        try:
            self.force_remove(container_id)
        except ExecError as e:
            logger.error(f"Failed to remove container {container_id}: {e.message}")
