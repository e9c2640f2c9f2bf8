"""
Response decoding for container executions.

Turns raw process output and transport errors into an ExecutionOutcome,
the only artifact the engine hands back to its caller.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from chaos_docker.exceptions import ChaosDockerError, DecodeError
from chaos_docker.models import ErrorCode

logger = logging.getLogger(__name__)

NO_OUTPUT_MESSAGE = (
    "cannot get result message from docker container, "
    "please execute recovery and try again"
)

# Codes that do not end the calling framework's workflow.
_NON_FATAL_CODES = frozenset({
    ErrorCode.OK,
    ErrorCode.SIDECAR_NOT_FOUND,
    ErrorCode.TARGET_GONE,
    ErrorCode.CONTAINER_CONFLICT,
})


@dataclass(frozen=True)
class ExecutionOutcome:
    """
    Structured result of one experiment invocation.

    Attributes:
        success: Whether the fault was injected or reversed
        code: Stable outcome code
        message: Human-readable error message, empty on success
        result: Opaque payload returned by the in-container tool
    """
    success: bool
    code: int = ErrorCode.OK
    message: str = ""
    result: Any = None

    @classmethod
    def ok(cls, result: Any = None) -> "ExecutionOutcome":
        return cls(success=True, code=ErrorCode.OK, result=result)

    @classmethod
    def fail(cls, code: int, message: str, result: Any = None) -> "ExecutionOutcome":
        return cls(success=False, code=code, message=message, result=result)

    @classmethod
    def from_error(cls, error: ChaosDockerError) -> "ExecutionOutcome":
        """Translate an engine error into a failure outcome."""
        return cls.fail(error.code, error.message)

    @property
    def is_fatal(self) -> bool:
        return not self.success and self.code not in _NON_FATAL_CODES

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the outcome envelope exchanged with the tool."""
        return {
            "code": int(self.code),
            "success": self.success,
            "error": self.message,
            "result": self.result,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def parse_envelope(content: str) -> ExecutionOutcome:
    """
    Parse an outcome envelope.

    Accepts ``error`` or the tool's legacy ``err`` key for the message.

    Raises:
        DecodeError: If the content is not a JSON outcome envelope
    """
    try:
        data = json.loads(content)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"invalid outcome payload: {content}", e)

    if not isinstance(data, dict) or ("code" not in data and "success" not in data):
        raise DecodeError(f"invalid outcome payload: {content}")

    success = bool(data.get("success", False))
    try:
        code = int(data.get("code", ErrorCode.OK if success else ErrorCode.DOCKER_EXEC_FAILED))
    except (TypeError, ValueError) as e:
        raise DecodeError(f"invalid outcome code in payload: {content}", e)

    message = data.get("error")
    if message is None:
        message = data.get("err") or ""
    return ExecutionOutcome(
        success=success,
        code=code,
        message=str(message),
        result=data.get("result"),
    )


def decode_outcome(
    stdout: Optional[str],
    exec_error: Optional[ChaosDockerError] = None,
    fallback: Optional[ExecutionOutcome] = None,
) -> ExecutionOutcome:
    """
    Decode the output of a container exec into an outcome.

    Args:
        stdout: Captured standard output, may be None
        exec_error: Transport-level error raised by the exec, if any
        fallback: Outcome to return when stdout is not a valid envelope

    Returns:
        ExecutionOutcome; never raises on malformed content
    """
    if exec_error is not None:
        # The tool reports some failures as an envelope on stderr.
        try:
            return parse_envelope(exec_error.message.strip())
        except DecodeError:
            return ExecutionOutcome.fail(
                ErrorCode.DOCKER_EXEC_FAILED,
                f"execContainer: {exec_error.message.strip()}",
            )

    output = (stdout or "").strip()
    if not output:
        return ExecutionOutcome.fail(ErrorCode.DOCKER_EXEC_FAILED, f"execContainer: {NO_OUTPUT_MESSAGE}")

    try:
        return parse_envelope(output)
    except DecodeError as e:
        logger.debug(f"Output is not an outcome envelope: {e.message}")
        if fallback is not None:
            return fallback
        return ExecutionOutcome.fail(ErrorCode.DECODE_FAILED, output)
