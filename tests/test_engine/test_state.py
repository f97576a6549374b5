"""Tests for runtime state classification and readiness polling."""

from unittest.mock import MagicMock

import pytest

from genoring.engine.state import RuntimeStateMachine, SystemMode
from genoring.errors import HookError, ReadinessTimeout
from genoring.models.config import Settings
from genoring.providers.base import ContainerInfo, ContainerState
from genoring.utils.process import ExecutionContext


class FakeClock:
    """Monotonic clock advanced by sleep calls."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def make_machine(tmp_path, containers=None, probe=None, confirm=None, profiles=""):
    registry = MagicMock()
    registry.module_services.return_value = []
    registry.list_enabled.return_value = ["genoring"]
    registry.container_name.side_effect = lambda service: service
    runtime = MagicMock()
    runtime.ps.return_value = containers or []
    runtime.container.return_value = None
    hooks = MagicMock()
    hooks.probe_state.side_effect = probe or (lambda module: None)
    hooks.has_state_hook.return_value = probe is not None
    (tmp_path / "docker-compose.yml").write_text("services: {}\n")
    clock = FakeClock()
    settings = Settings(project_dir=tmp_path, wait_ready=10, profiles=profiles)
    machine = RuntimeStateMachine(
        registry, runtime, hooks, settings, ExecutionContext(cwd=tmp_path),
        sleep=clock.sleep, clock=clock, confirm=confirm,
    )
    return machine, clock


class TestGetState:
    """Test aggregate platform state."""

    def test_no_containers(self, tmp_path):
        machine, _ = make_machine(tmp_path)
        assert machine.get_state() == ContainerState.NONE
        assert machine.get_status() == ""
        assert machine.mode() is None

    def test_missing_compose_file(self, tmp_path):
        """Test a project whose compose file was never generated."""
        machine, _ = make_machine(tmp_path)
        (tmp_path / "docker-compose.yml").unlink()
        machine.runtime.ps.side_effect = AssertionError("ps must not run")

        assert machine.get_state() == ContainerState.NONE
        assert machine.get_status() == ""

    def test_all_running(self, tmp_path):
        machine, _ = make_machine(tmp_path, containers=[
            ContainerInfo(name="genoring", state=ContainerState.RUNNING),
            ContainerInfo(name="genoring-proxy", state=ContainerState.RUNNING),
        ])
        assert machine.get_state() == ContainerState.RUNNING
        assert machine.get_status() == "online"

    def test_first_non_running_state(self, tmp_path):
        machine, _ = make_machine(tmp_path, containers=[
            ContainerInfo(name="genoring", state=ContainerState.RUNNING),
            ContainerInfo(name="genoring-proxy", state=ContainerState.RESTARTING),
            ContainerInfo(name="genoring-db", state=ContainerState.EXITED),
        ])
        assert machine.get_state() == ContainerState.RESTARTING
        assert machine.get_status() == "restarting"

    @pytest.mark.parametrize("profiles,mode", [
        ("dev", SystemMode.ONLINE),
        ("backend", SystemMode.BACKEND),
        ("offline", SystemMode.OFFLINE),
        ("prod, offline", SystemMode.OFFLINE),
    ])
    def test_mode_from_profiles(self, tmp_path, profiles, mode):
        machine, _ = make_machine(tmp_path, containers=[
            ContainerInfo(name="genoring", state=ContainerState.RUNNING),
        ], profiles=profiles)
        assert machine.mode() == mode


class TestModuleState:
    """Test module state classification."""

    def test_probe_wins(self, tmp_path):
        machine, _ = make_machine(tmp_path, probe=lambda module: "Running since 3 minutes")
        assert machine.module_state("genoring") == "running"

    def test_probe_other_state(self, tmp_path):
        machine, _ = make_machine(tmp_path, probe=lambda module: "installing")
        assert machine.module_state("genoring") == "installing"

    def test_from_services(self, tmp_path):
        machine, _ = make_machine(tmp_path)
        machine.registry.module_services.return_value = ["genoring", "genoring-proxy"]
        states = {"genoring": ContainerState.RUNNING, "genoring-proxy": ContainerState.CREATED}
        machine.runtime.container.side_effect = lambda name, context: ContainerInfo(name=name, state=states[name])

        assert machine.module_state("genoring") == "created"

        states["genoring-proxy"] = ContainerState.RUNNING
        assert machine.module_state("genoring") == "running"

    def test_module_without_services(self, tmp_path):
        machine, _ = make_machine(tmp_path)
        assert machine.module_state("genoring") == ""


class TestWaitReady:
    """Test readiness polling with a fake clock."""

    def test_ready_within_budget(self, tmp_path):
        """Test a module becoming ready at t=3 with a 10s budget."""
        clock_ref = {}

        def probe(module):
            return "running" if clock_ref["clock"]() >= 3 else "starting"

        machine, clock = make_machine(tmp_path, probe=probe)
        clock_ref["clock"] = clock

        machine.wait_ready("genoring", budget=10)

        assert 3 <= clock.now < 10

    def test_timeout(self, tmp_path):
        """Test the same module with a 2s budget."""
        clock_ref = {}

        def probe(module):
            return "running" if clock_ref["clock"]() >= 3 else "starting"

        machine, clock = make_machine(tmp_path, probe=probe)
        clock_ref["clock"] = clock

        with pytest.raises(ReadinessTimeout, match="genoring"):
            machine.wait_ready("genoring", budget=2, interactive=False)
        assert clock.now == 2

    def test_interactive_extension(self, tmp_path):
        """Test the user extending the budget once."""
        clock_ref = {}
        confirm = MagicMock(return_value=True)

        def probe(module):
            return "running" if clock_ref["clock"]() >= 3 else "starting"

        machine, clock = make_machine(tmp_path, probe=probe, confirm=confirm)
        clock_ref["clock"] = clock

        machine.wait_ready("genoring", budget=2, interactive=True)

        confirm.assert_called_once()

    def test_interactive_extension_only_once(self, tmp_path):
        confirm = MagicMock(return_value=True)
        machine, clock = make_machine(tmp_path, probe=lambda module: "starting", confirm=confirm)

        with pytest.raises(ReadinessTimeout):
            machine.wait_ready("genoring", budget=2, interactive=True)
        confirm.assert_called_once()
        assert clock.now == 4

    def test_absent_containers_are_not_waited_on(self, tmp_path):
        """Test services outside the active profiles count as ready."""
        machine, clock = make_machine(tmp_path)
        machine.registry.module_services.return_value = ["genoring-backend-only"]

        machine.wait_ready("genoring", budget=5)

        assert clock.now == 0

    def test_wait_modules_ready_uses_enabled_modules(self, tmp_path):
        machine, _ = make_machine(tmp_path, probe=lambda module: "running")
        machine.wait_modules_ready()
        machine.hooks.probe_state.assert_any_call("genoring")

    def test_state_hook_runs_once_per_poll(self, tmp_path):
        probe = MagicMock(return_value="starting")
        machine, clock = make_machine(tmp_path, probe=probe)

        with pytest.raises(ReadinessTimeout, match="state: starting"):
            machine.wait_ready("genoring", budget=2, interactive=False)

        # t=0, t=1 and t=2
        assert probe.call_count == 3
        machine.hooks.has_state_hook.assert_called_once_with("genoring")

    def test_failing_state_hook_stops_polling(self, tmp_path):
        probe = MagicMock(side_effect=HookError("Failed to get genoring module state", {"genoring": "crashed"}))
        machine, clock = make_machine(tmp_path, probe=probe)

        with pytest.raises(HookError, match="crashed"):
            machine.wait_ready("genoring", budget=10, interactive=False)
        assert clock.now == 0
