"""
Data model for the container execution engine.

Experiment requests, container identities and records, outcome codes,
and the names of the flags the engine consumes itself.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional


class ErrorCode(IntEnum):
    """Stable outcome codes returned to callers."""
    OK = 200
    PARAMETER_LESS = 40001
    PARAMETER_INVALID = 40002
    CONTAINER_NOT_FOUND = 40401
    SIDECAR_NOT_FOUND = 40402
    TARGET_GONE = 40403
    CONTAINER_CONFLICT = 40901
    CANCELLED = 49901
    DAEMON_CONNECT_FAILED = 50001
    DOCKER_EXEC_FAILED = 50002
    DEPLOY_FAILED = 50003
    IMAGE_PULL_FAILED = 50004
    DECODE_FAILED = 50005


class Phase(str, Enum):
    """Experiment phase: inject or reverse."""
    CREATE = "create"
    DESTROY = "destroy"


class ContainerState(str, Enum):
    """Container states as reported by the daemon."""
    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    EXITED = "exited"
    REMOVING = "removing"
    DEAD = "dead"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ContainerState":
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN


# ============================================================
# FLAG NAMES
# ============================================================

CONTAINER_ID_FLAG = "container-id"
CONTAINER_NAME_FLAG = "container-name"
ENDPOINT_FLAG = "docker-endpoint"
IMAGE_REPO_FLAG = "image-repo"
IMAGE_VERSION_FLAG = "image-version"
TOOL_ARCHIVE_FLAG = "blade-tar-file"
TOOL_OVERRIDE_FLAG = "blade-override"
FORCE_FLAG = "force"

# Consumed locally by the engine, never forwarded to the in-container tool.
TRANSPORT_FLAGS = frozenset({
    CONTAINER_ID_FLAG,
    CONTAINER_NAME_FLAG,
    ENDPOINT_FLAG,
    IMAGE_REPO_FLAG,
    IMAGE_VERSION_FLAG,
    TOOL_ARCHIVE_FLAG,
    TOOL_OVERRIDE_FLAG,
})

# Experiment id meaning "destroy whatever the matcher flags select".
WILDCARD_EXPERIMENT_ID = "*"

_TRUE_VALUES = ("true", "1", "yes", "on")


def parse_bool_flag(value: Optional[str]) -> bool:
    """Parse a boolean flag value; anything unrecognised is false."""
    if value is None:
        return False
    return value.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class ContainerIdentity:
    """User-supplied container identifier. The id wins when both are set."""
    id: str = ""
    name: str = ""

    @classmethod
    def from_flags(cls, flags: Mapping[str, str]) -> "ContainerIdentity":
        return cls(
            id=(flags.get(CONTAINER_ID_FLAG) or "").strip(),
            name=(flags.get(CONTAINER_NAME_FLAG) or "").strip(),
        )

    @property
    def is_empty(self) -> bool:
        return not self.id and not self.name

    def __str__(self) -> str:
        return self.id or self.name


@dataclass
class ContainerRecord:
    """
    Live container as reported by the daemon.

    Attributes:
        id: Full container id
        names: Container names, without the leading slash
        state: Current container state
        image: Image reference the container runs
        labels: Container labels
    """
    id: str
    names: List[str]
    state: ContainerState
    image: str = ""
    labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ContainerRecord":
        """Build a record from a ``GET /containers/json`` entry."""
        return cls(
            id=data.get("Id", ""),
            names=[name.lstrip("/") for name in data.get("Names") or []],
            state=ContainerState.parse(data.get("State")),
            image=data.get("Image", ""),
            labels=dict(data.get("Labels") or {}),
        )

    @property
    def name(self) -> str:
        return self.names[0] if self.names else self.id[:12]

    @property
    def is_running(self) -> bool:
        return self.state == ContainerState.RUNNING


@dataclass(frozen=True)
class ExperimentRequest:
    """
    Immutable input to an executor.

    Attributes:
        target: Fault category, e.g. ``network`` or ``cpu``
        action: Action within the category, e.g. ``delay``
        phase: CREATE injects the fault, DESTROY reverses it
        flags: Flat mapping of flag name to value
        experiment_id: Correlates logs; on destroy, selects a prior
            invocation unless empty or the wildcard
    """
    target: str
    action: str
    phase: Phase = Phase.CREATE
    flags: Mapping[str, str] = field(default_factory=dict)
    experiment_id: str = ""

    def __post_init__(self):
        object.__setattr__(self, "phase", Phase(self.phase))
        object.__setattr__(self, "flags", MappingProxyType(dict(self.flags)))

    @property
    def is_destroy(self) -> bool:
        return self.phase == Phase.DESTROY

    @property
    def has_explicit_id(self) -> bool:
        return bool(self.experiment_id) and self.experiment_id != WILDCARD_EXPERIMENT_ID

    @property
    def identity(self) -> ContainerIdentity:
        return ContainerIdentity.from_flags(self.flags)

    def flag(self, name: str, default: str = "") -> str:
        value = self.flags.get(name)
        return default if value is None else value
