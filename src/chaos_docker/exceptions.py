"""
Custom exceptions for the container execution engine.

Lower layers raise these; executors translate them into an
ExecutionOutcome so no raw docker error reaches the caller.
"""

from typing import Optional

from chaos_docker.models import ErrorCode


class ChaosDockerError(Exception):
    """Base exception for engine errors."""

    code: ErrorCode = ErrorCode.DOCKER_EXEC_FAILED
    retryable: bool = False

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConnectionError(ChaosDockerError):
    """Raised when the docker daemon cannot be reached or negotiated with."""

    code = ErrorCode.DAEMON_CONNECT_FAILED


class NotFoundError(ChaosDockerError):
    """Raised when a container or sidecar cannot be found."""

    code = ErrorCode.CONTAINER_NOT_FOUND

    def __init__(self, identifier: str, cause: Optional[BaseException] = None):
        super().__init__(f"container not found: {identifier}", cause)
        self.identifier = identifier


class AmbiguousInputError(ChaosDockerError):
    """Raised when required identifying flags are missing."""

    code = ErrorCode.PARAMETER_LESS


class InvalidParameterError(ChaosDockerError):
    """Raised when a flag value cannot be used."""

    code = ErrorCode.PARAMETER_INVALID


class DeployError(ChaosDockerError):
    """Raised when the fault-injection tool cannot be deployed."""

    code = ErrorCode.DEPLOY_FAILED


class ExecError(ChaosDockerError):
    """Raised when a transport-level exec or lifecycle call fails."""

    code = ErrorCode.DOCKER_EXEC_FAILED


class ContainerStartError(ExecError):
    """Raised when a created container fails to start or become ready."""

    def __init__(self, message: str, container_id: str, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.container_id = container_id


class ContainerConflictError(ExecError):
    """Raised when the daemon rejects a create because the name is taken."""

    code = ErrorCode.CONTAINER_CONFLICT
    retryable = True


class ImagePullError(ChaosDockerError):
    """Raised when the sidecar image is absent and cannot be pulled."""

    code = ErrorCode.IMAGE_PULL_FAILED


class DecodeError(ChaosDockerError):
    """Raised when an outcome payload cannot be parsed."""

    code = ErrorCode.DECODE_FAILED


class ExecutionCancelledError(ChaosDockerError):
    """Raised when the caller cancels an invocation between steps."""

    code = ErrorCode.CANCELLED
