"""
Execution strategies for docker experiments:
- In-container exec (tool deployed into the target)
- Sidecar (helper container sharing the target's network namespace)
- Container self (remove the target)
"""

from chaos_docker.executors.base import BaseDockerExecutor
from chaos_docker.executors.container import ContainerRemoveExecutor
from chaos_docker.executors.exec_in import InContainerExecutor
from chaos_docker.executors.sidecar import SidecarExecutor, SidecarPolicy, sidecar_container_name

__all__ = [
    "BaseDockerExecutor",
    "ContainerRemoveExecutor",
    "InContainerExecutor",
    "SidecarExecutor",
    "SidecarPolicy",
    "sidecar_container_name",
]
