"""
Tests for the command line entry point.

The cluster client and orchestrator are patched out; these tests cover
option handling, exit codes and signal wiring.
"""

import asyncio
import os
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from conftest import make_local
from podshell.main import main, run_session
from podshell.modules.api.errors import ClusterAPIError
from podshell.modules.api.models import (
    FailureKind,
    SessionReport,
    SessionResult,
    SessionState,
)

COMPLETED = SessionReport(stage=SessionState.ATTACHED, session_result=SessionResult.completed())
TIMED_OUT = SessionReport(
    stage=SessionState.AWAITING_READY,
    failure=FailureKind.READINESS_TIMEOUT,
    detail="timed out waiting for the pod to run",
)


@pytest.fixture
def cli():
    """Patches everything main() would reach outside the process."""
    with patch.dict(os.environ, {}, clear=True), \
         patch("podshell.main.load_dotenv"), \
         patch("podshell.main.configure_logging") as configure_logging, \
         patch("podshell.main.LocalEndpoints.from_process", side_effect=lambda: make_local(eof=True)), \
         patch("podshell.main.KubernetesClusterAPI.from_config") as from_config, \
         patch("podshell.main.SessionOrchestrator") as orchestrator_cls:
        orchestrator_cls.return_value.run = AsyncMock(return_value=COMPLETED)
        yield MagicMock(
            runner=CliRunner(),
            configure_logging=configure_logging,
            from_config=from_config,
            orchestrator_cls=orchestrator_cls,
        )


class TestMain:
    """Option handling and exit codes."""

    def test_completed_session_exits_zero(self, cli):
        result = cli.runner.invoke(main, [])

        assert result.exit_code == 0
        assert "session ended at stage 'attached'" in result.output
        cli.configure_logging.assert_called_once_with("INFO")

    def test_failed_session_exits_one(self, cli):
        cli.orchestrator_cls.return_value.run = AsyncMock(return_value=TIMED_OUT)

        result = cli.runner.invoke(main, [])

        assert result.exit_code == 1
        assert "readiness_timeout" in result.output

    def test_options_override_environment(self, cli):
        with patch.dict(os.environ, {"PODSHELL_POD_NAME": "from-env", "NAMESPACE": "env-ns"}):
            result = cli.runner.invoke(
                main,
                ["--name", "debug", "--namespace", "sandbox", "--ready-timeout", "3", "--no-tty"],
            )

        assert result.exit_code == 0
        descriptor = cli.orchestrator_cls.return_value.run.call_args.args[0]
        assert descriptor.name == "debug"
        assert descriptor.namespace == "sandbox"
        kwargs = cli.orchestrator_cls.call_args.kwargs
        assert kwargs["ready_timeout"] == 3
        assert kwargs["watch_timeout_seconds"] == 3
        assert kwargs["attach_params"].tty is False
        assert kwargs["exec_command"] == ["sh"]

    def test_environment_settings_used(self, cli):
        env = {"PODSHELL_SESSION_SECONDS": "30", "PODSHELL_TOLERATE_EXISTING": "false"}
        with patch.dict(os.environ, env):
            result = cli.runner.invoke(main, [])

        assert result.exit_code == 0
        kwargs = cli.orchestrator_cls.call_args.kwargs
        assert kwargs["session_bound"] == 30
        assert kwargs["tolerate_existing"] is False

    def test_invalid_pod_name_is_usage_error(self, cli):
        result = cli.runner.invoke(main, ["--name", "Not_A_Pod"])

        assert result.exit_code == 2
        cli.orchestrator_cls.assert_not_called()

    def test_invalid_environment_is_usage_error(self, cli):
        with patch.dict(os.environ, {"PODSHELL_READY_TIMEOUT": "soon"}):
            result = cli.runner.invoke(main, [])

        assert result.exit_code == 2
        assert "PODSHELL_READY_TIMEOUT" in result.output

    def test_non_positive_timeout_rejected(self, cli):
        result = cli.runner.invoke(main, ["--ready-timeout", "0"])
        assert result.exit_code == 2

    def test_missing_credentials_exit_one(self, cli):
        cli.from_config.side_effect = ClusterAPIError("Failed to load Kubernetes configuration")

        result = cli.runner.invoke(main, [])

        assert result.exit_code == 1
        assert "Failed to load Kubernetes configuration" in result.output
        cli.orchestrator_cls.assert_not_called()


class TestRunSession:
    """Signal wiring around a session."""

    @pytest.mark.asyncio
    async def test_sigint_sets_cancel(self):
        cancel = asyncio.Event()

        async def interrupted_run(descriptor):
            os.kill(os.getpid(), signal.SIGINT)
            await asyncio.wait_for(cancel.wait(), 1)
            return COMPLETED

        orchestrator = MagicMock()
        orchestrator.run = interrupted_run

        report = await run_session(orchestrator, MagicMock(), cancel)

        assert report is COMPLETED
        assert cancel.is_set()
