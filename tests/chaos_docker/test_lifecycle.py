"""Tests for container lifecycle primitives"""

import threading
from unittest.mock import Mock

import pytest
from docker.errors import DockerException, NotFound

from chaos_docker.exceptions import (
    ContainerConflictError,
    ContainerStartError,
    ExecError,
    ExecutionCancelledError,
    ImagePullError,
)
from chaos_docker.lifecycle import ContainerSpec, KeyedLock, check_cancelled
from chaos_docker.models import ContainerState, ErrorCode
from tests.utils import SIDECAR_IMAGE, SUCCESS_ENVELOPE


@pytest.fixture
def spec():
    return ContainerSpec(image=SIDECAR_IMAGE, network_mode="container:target", cap_add=["NET_ADMIN"])


class TestExec:
    def test_privileged_exec_runs_as_root_shell(self, fake_api, lifecycle):
        target = fake_api.add_container("web")
        result = lifecycle.run_in_container(target.id, "echo hi", privileged=True)
        assert result.stdout == SUCCESS_ENVELOPE
        assert not result.failed
        method, args = next(call for call in fake_api.calls if call[0] == "exec_create")
        assert args[1] == ["sh", "-c", "echo hi"]
        assert args[2] is True

    def test_exec_command_raises_on_stderr(self, fake_api, lifecycle):
        target = fake_api.add_container("web")
        fake_api.tool_stderr = "permission denied\n"
        with pytest.raises(ExecError, match="permission denied"):
            lifecycle.exec_command(target.id, "blade version")

    def test_exec_in_stopped_container_is_exec_error(self, fake_api, lifecycle):
        target = fake_api.add_container("web", state="exited")
        with pytest.raises(ExecError, match="execContainer"):
            lifecycle.run_in_container(target.id, "true")

    def test_copy_rejected_archive(self, fake_api, lifecycle, tool_archive):
        target = fake_api.add_container("web")
        fake_api.put_archive = Mock(return_value=False)
        with pytest.raises(ExecError, match="rejected archive"):
            lifecycle.copy_to_container(target.id, tool_archive, "/opt", override=False)


class TestCreateAndRemove:
    def test_name_conflict(self, fake_api, lifecycle, spec):
        fake_api.add_container("web-network")
        with pytest.raises(ContainerConflictError) as exc_info:
            lifecycle.create_and_start(spec, "web-network")
        assert exc_info.value.code == ErrorCode.CONTAINER_CONFLICT
        assert exc_info.value.retryable

    def test_start_failure_carries_id(self, fake_api, lifecycle, spec):
        fake_api.start_fails.add("helper")
        with pytest.raises(ContainerStartError) as exc_info:
            lifecycle.create_and_start(spec, "helper")
        assert exc_info.value.container_id == fake_api.by_name("helper").id

    def test_stop_and_remove(self, fake_api, lifecycle):
        container = fake_api.add_container("helper")
        lifecycle.stop_and_remove(container.id)
        assert container.id not in fake_api.containers_by_id
        assert ("stop", (container.id, 1)) in fake_api.calls

    def test_stop_missing_container_is_not_an_error(self, fake_api, lifecycle):
        lifecycle.stop_and_remove("deadbeef")
        lifecycle.force_remove("deadbeef")
        assert fake_api.count("remove_container") == 1

    def test_container_state(self, fake_api, lifecycle):
        container = fake_api.add_container("helper", state="paused")
        assert lifecycle.container_state(container.id) == ContainerState.PAUSED


class TestStartReady:
    def test_starts_running_container(self, fake_api, lifecycle, spec):
        container_id = lifecycle.start_ready(spec, "helper")
        assert fake_api.containers_by_id[container_id].state == "running"
        assert fake_api.count("pull") == 0

    def test_exited_container_is_removed(self, fake_api, lifecycle, spec):
        fake_api.start_exits.add("helper")
        with pytest.raises(ContainerStartError, match="is exited"):
            lifecycle.start_ready(spec, "helper")
        assert fake_api.by_name("helper") is None

    def test_failed_start_is_removed(self, fake_api, lifecycle, spec):
        fake_api.start_fails.add("helper")
        with pytest.raises(ContainerStartError):
            lifecycle.start_ready(spec, "helper")
        assert fake_api.by_name("helper") is None

    def test_cancelled_before_create(self, fake_api, lifecycle, spec):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ExecutionCancelledError):
            lifecycle.start_ready(spec, "helper", cancel)
        assert fake_api.count("create_container") == 0


class TestEnsureImage:
    def test_pulls_missing_image(self, fake_api, lifecycle):
        lifecycle.ensure_image("busybox:latest")
        assert fake_api.count("pull") == 1
        lifecycle.ensure_image("busybox:latest")
        assert fake_api.count("pull") == 1

    def test_pull_failure(self, fake_api, lifecycle):
        fake_api.pull = Mock(side_effect=DockerException("unauthorized"))
        with pytest.raises(ImagePullError) as exc_info:
            lifecycle.ensure_image("private/tool:1.0")
        assert exc_info.value.code == ErrorCode.IMAGE_PULL_FAILED

    def test_missing_repository_is_not_retried(self, fake_api, lifecycle):
        fake_api.pull = Mock(side_effect=NotFound("repository does not exist"))
        with pytest.raises(ImagePullError):
            lifecycle.ensure_image("nobody/missing:1.0")
        assert fake_api.pull.call_count == 1


class TestExecuteAndCleanup:
    def test_removes_container_after_success(self, fake_api, lifecycle, spec):
        run = lifecycle.execute_and_cleanup(spec, "web-network", True, "blade create network loss")
        assert run.executed
        assert run.error is None
        assert run.output == SUCCESS_ENVELOPE
        assert fake_api.by_name("web-network") is None

    def test_removes_container_after_exec_failure(self, fake_api, lifecycle, spec):
        fake_api.tool_stderr = "tc: command not found"
        run = lifecycle.execute_and_cleanup(spec, "web-network", True, "blade create network loss")
        assert run.executed
        assert isinstance(run.error, ExecError)
        assert run.code == ErrorCode.DOCKER_EXEC_FAILED
        assert fake_api.by_name("web-network") is None

    def test_keeps_container_when_not_removing(self, fake_api, lifecycle, spec):
        run = lifecycle.execute_and_cleanup(spec, "web-network", False, "blade version")
        assert fake_api.by_name("web-network").id == run.container_id

    def test_create_failure_skips_exec(self, fake_api, lifecycle, spec):
        existing = fake_api.add_container("web-network")
        run = lifecycle.execute_and_cleanup(spec, "web-network", True, "blade version")
        assert not run.executed
        assert run.code == ErrorCode.CONTAINER_CONFLICT
        assert fake_api.count("exec_create") == 0
        assert existing.id in fake_api.containers_by_id


class TestKeyedLock:
    def test_same_key_serialises(self):
        locks = KeyedLock()
        entered = threading.Event()

        def contender():
            with locks.hold("web-network"):
                entered.set()

        with locks.hold("web-network"):
            thread = threading.Thread(target=contender)
            thread.start()
            assert not entered.wait(0.05)
        thread.join(1)
        assert entered.is_set()

    def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        with locks.hold("a"):
            with locks.hold("b"):
                assert len(locks) == 2

    def test_released_keys_are_dropped(self):
        locks = KeyedLock()
        for name in ("web-network", "db-network", "cache-network"):
            with locks.hold(name):
                pass
        assert len(locks) == 0

    def test_key_dropped_after_raising_block(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            with locks.hold("web-network"):
                raise RuntimeError("boom")
        assert len(locks) == 0


def test_check_cancelled():
    check_cancelled(None, "exec")
    event = threading.Event()
    check_cancelled(event, "exec")
    event.set()
    with pytest.raises(ExecutionCancelledError, match="cancelled before exec"):
        check_cancelled(event, "exec")
