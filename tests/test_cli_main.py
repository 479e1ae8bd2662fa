"""
Tests for the command line entry point (stack_orchestrator.main).
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import yaml

from stack_orchestrator import main as cli
from stack_orchestrator.core.types import DestroyReport, RunResult, VerifyReport, VerifyResult


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "stack.yaml"
    path.write_text(yaml.safe_dump({
        "global": {"aws_region": "eu-central-1", "state": {"backend": "memory"}},
        "layers": {
            "network": {"source": {"repo_url": "file:///srv/network", "cdk_path": "infra"}},
            "service": {
                "depends_on": ["network"],
                "source": {"repo_url": "file:///srv/service", "script_path": "deploy.sh"},
            },
            "legacy": {
                "enabled": False,
                "source": {"repo_url": "file:///srv/legacy", "script_path": "deploy.sh"},
            },
        },
    }, sort_keys=False))
    return path


@pytest.fixture
def mock_orchestrator():
    with patch("stack_orchestrator.main.Orchestrator") as orchestrator_cls:
        orchestrator = MagicMock()
        orchestrator.dry_run = False
        orchestrator.global_config.log_level = "info"
        orchestrator_cls.from_config_file.return_value = orchestrator
        yield orchestrator_cls, orchestrator


class TestCliCommands:

    def test_list(self, config_file, capsys):
        exit_code = cli.main(["--config", str(config_file), "list"])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "network [cdk]" in out
        assert "service [script] <- network" in out
        assert "legacy [script] (disabled)" in out

    def test_status(self, config_file, capsys):
        exit_code = cli.main(["--config", str(config_file), "status"])

        status = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert list(status) == ["network", "service", "legacy"]
        assert status["network"]["deployed"] is False

    def test_missing_config_exits_1(self, tmp_path):
        assert cli.main(["--config", str(tmp_path / "nope.yaml"), "list"]) == 1

    def test_unknown_target_exits_1(self, config_file):
        assert cli.main(["--config", str(config_file), "verify", "nope"]) == 1


class TestDeployCommand:

    def test_success_exits_0(self, config_file, mock_orchestrator):
        orchestrator_cls, orchestrator = mock_orchestrator
        orchestrator.run.return_value = RunResult(success=True)

        exit_code = cli.main(["--config", str(config_file), "deploy", "service"])

        assert exit_code == 0
        orchestrator.run.assert_called_once_with(["service"])

    def test_failure_exits_1(self, config_file, mock_orchestrator, capsys):
        _, orchestrator = mock_orchestrator
        orchestrator.run.return_value = RunResult(success=False, error="Layer 'service' failed: boom")

        exit_code = cli.main(["--config", str(config_file), "deploy"])

        assert exit_code == 1
        orchestrator.run.assert_called_once_with(None)
        assert "boom" in capsys.readouterr().err

    def test_flags_forwarded(self, config_file, mock_orchestrator):
        orchestrator_cls, orchestrator = mock_orchestrator
        orchestrator.run.return_value = RunResult(success=True)

        cli.main(["--config", str(config_file), "deploy", "--dry-run", "--force", "--continue-on-error"])

        kwargs = orchestrator_cls.from_config_file.call_args.kwargs
        assert kwargs["dry_run"] is True
        assert kwargs["force"] is True
        assert kwargs["continue_on_error"] is True

    def test_continue_on_error_defaults_to_config(self, config_file, mock_orchestrator):
        orchestrator_cls, orchestrator = mock_orchestrator
        orchestrator.run.return_value = RunResult(success=True)

        cli.main(["--config", str(config_file), "deploy"])

        assert orchestrator_cls.from_config_file.call_args.kwargs["continue_on_error"] is None


class TestVerifyCommand:

    def test_all_present_exits_0(self, config_file, mock_orchestrator, capsys):
        _, orchestrator = mock_orchestrator
        orchestrator.verify.return_value = VerifyReport({"network": VerifyResult(skip=True, reason="exists")})

        assert cli.main(["--config", str(config_file), "verify"]) == 0
        assert "✓ network: exists" in capsys.readouterr().out

    def test_missing_exits_1(self, config_file, mock_orchestrator):
        _, orchestrator = mock_orchestrator
        orchestrator.verify.return_value = VerifyReport({"network": VerifyResult(skip=False)})

        assert cli.main(["--config", str(config_file), "verify"]) == 1


class TestDestroyCommand:

    def test_declined_prompt_destroys_nothing(self, config_file, mock_orchestrator):
        _, orchestrator = mock_orchestrator

        with patch("builtins.input", return_value="n"):
            exit_code = cli.main(["--config", str(config_file), "destroy"])

        assert exit_code == 1
        orchestrator.destroy.assert_not_called()

    def test_confirmed_prompt(self, config_file, mock_orchestrator):
        _, orchestrator = mock_orchestrator
        orchestrator.destroy.return_value = DestroyReport(success=True)

        with patch("builtins.input", return_value="yes"):
            exit_code = cli.main(["--config", str(config_file), "destroy", "service"])

        assert exit_code == 0
        orchestrator.destroy.assert_called_once_with(["service"])

    def test_force_skips_prompt(self, config_file, mock_orchestrator):
        _, orchestrator = mock_orchestrator
        orchestrator.destroy.return_value = DestroyReport(success=False, failed={"network": "DELETE_FAILED"})

        with patch("builtins.input") as mock_input:
            exit_code = cli.main(["--config", str(config_file), "destroy", "--force"])

        assert exit_code == 1
        mock_input.assert_not_called()
