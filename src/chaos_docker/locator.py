"""
Container lookup by id or name.
"""

import logging
import re
from typing import Optional

import docker
import requests
from docker.errors import DockerException

from chaos_docker.exceptions import AmbiguousInputError, ExecError, NotFoundError
from chaos_docker.models import CONTAINER_ID_FLAG, CONTAINER_NAME_FLAG, ContainerIdentity, ContainerRecord

logger = logging.getLogger(__name__)


def _exact_name(name: str) -> str:
    # The daemon's name filter matches substrings; anchor it to the whole name.
    return f"^/?{re.escape(name.lstrip('/'))}$"


def _list_first(api: docker.APIClient, filters: dict, identifier: str) -> Optional[ContainerRecord]:
    try:
        containers = api.containers(all=True, filters=filters)
    except (DockerException, requests.exceptions.RequestException) as e:
        raise ExecError(f"GetContainerList failed for {identifier}: {e}", e)
    if not containers:
        return None
    if len(containers) > 1:
        logger.debug(f"{len(containers)} containers match {identifier}, using the first")
    return ContainerRecord.from_api(containers[0])


def resolve_container(api: docker.APIClient, identity: ContainerIdentity) -> ContainerRecord:
    """
    Resolve a user-supplied identifier to a live container.

    The id takes precedence over the name. Stopped containers are included
    so that destroy can still reach them.

    Args:
        api: Docker client
        identity: Container id and/or name

    Returns:
        The first matching container

    Raises:
        AmbiguousInputError: If neither id nor name is given
        NotFoundError: If nothing matches
        ExecError: If the daemon call fails
    """
    if identity.is_empty:
        raise AmbiguousInputError(f"less parameter: need one of {CONTAINER_ID_FLAG}, {CONTAINER_NAME_FLAG}")

    if identity.id:
        record = _list_first(api, {"id": identity.id}, identity.id)
        searched = identity.id
    else:
        record = _list_first(api, {"name": _exact_name(identity.name)}, identity.name)
        searched = identity.name

    if record is None:
        raise NotFoundError(searched)
    return record


def find_container_by_name(api: docker.APIClient, name: str) -> Optional[ContainerRecord]:
    """
    Find a container by its exact name.

    Returns:
        The container, or None when absent
    """
    return _list_first(api, {"name": _exact_name(name)}, name)
