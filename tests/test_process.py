"""Tests for framework process spawning and cancellation."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from testr.adapters.process import CancellationSignal, ProcessOutcome, run_process, split_command

pytestmark = pytest.mark.anyio


class HangingProcess:
    """Stand-in for a spawned process that never exits on its own."""

    def __init__(self) -> None:
        self.pid = 4242
        self.returncode: int | None = None
        self._exited = asyncio.Event()
        self.terminate = Mock(side_effect=self._exited.set)

    async def communicate(self) -> tuple[bytes, bytes]:
        await self._exited.wait()
        self.returncode = -15
        return b"late output", b""


class TestCancellationSignal:
    """Tests for the one-shot cancellation signal."""

    def test_starts_uncancelled(self) -> None:
        assert CancellationSignal().is_cancelled is False

    def test_callbacks_run_once(self) -> None:
        """Callbacks fire on the first cancel only."""
        signal = CancellationSignal()
        callback = Mock()
        signal.add_callback(callback)

        signal.cancel()
        signal.cancel()

        assert signal.is_cancelled
        callback.assert_called_once()

    def test_callback_after_cancel_runs_immediately(self) -> None:
        signal = CancellationSignal()
        signal.cancel()
        callback = Mock()
        signal.add_callback(callback)
        callback.assert_called_once()

    async def test_wait(self) -> None:
        signal = CancellationSignal()
        asyncio.get_running_loop().call_later(0.01, signal.cancel)
        await asyncio.wait_for(signal.wait(), timeout=2)
        assert signal.is_cancelled


class TestRunProcess:
    """Tests for run_process."""

    async def test_collects_output_and_exit_code(self, tmp_path: Path) -> None:
        """stdout, stderr and the exit code are captured."""
        script = "import sys; print('hello'); print('oops', file=sys.stderr); sys.exit(3)"
        outcome = await run_process([sys.executable, "-c", script], cwd=tmp_path)

        assert outcome.completed
        assert outcome.stdout.strip() == "hello"
        assert outcome.stderr.strip() == "oops"
        assert outcome.exit_code == 3

    async def test_runs_in_cwd_with_env(self, tmp_path: Path) -> None:
        script = "import os; print(os.getcwd()); print(os.environ['CI'])"
        outcome = await run_process(
            [sys.executable, "-c", script], cwd=tmp_path, env={"CI": "true"}
        )

        lines = outcome.stdout.splitlines()
        assert Path(lines[0]).resolve() == tmp_path.resolve()
        assert lines[1] == "true"

    async def test_spawn_failure(self, tmp_path: Path) -> None:
        """A missing executable is reported, not raised."""
        outcome = await run_process([str(tmp_path / "no-such-binary")], cwd=tmp_path)

        assert outcome.spawn_error
        assert not outcome.completed

    async def test_cancel_before_output_terminates(self, tmp_path: Path) -> None:
        """Cancelling resolves immediately and sends a termination request."""
        process = HangingProcess()
        signal = CancellationSignal()
        asyncio.get_running_loop().call_later(0.05, signal.cancel)

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            outcome = await asyncio.wait_for(
                run_process(["jest"], cwd=tmp_path, cancel=signal), timeout=5
            )

        assert outcome.cancelled
        assert outcome.stdout == ""
        process.terminate.assert_called_once()
        await asyncio.wait_for(outcome.exited, timeout=5)
        assert process.returncode == -15

    async def test_already_cancelled_does_not_spawn(self, tmp_path: Path) -> None:
        signal = CancellationSignal()
        signal.cancel()
        spawn = AsyncMock()

        with patch("asyncio.create_subprocess_exec", new=spawn):
            outcome = await run_process(["jest"], cwd=tmp_path, cancel=signal)

        assert outcome.cancelled
        spawn.assert_not_called()

    async def test_real_process_cancelled(self, tmp_path: Path) -> None:
        """A real sleeping process is terminated on cancel."""
        signal = CancellationSignal()
        asyncio.get_running_loop().call_later(0.2, signal.cancel)

        outcome = await asyncio.wait_for(
            run_process(
                [sys.executable, "-c", "import time; time.sleep(30)"],
                cwd=tmp_path,
                cancel=signal,
            ),
            timeout=10,
        )

        assert outcome.cancelled
        assert outcome.exit_code is None

    async def test_timeout(self, tmp_path: Path) -> None:
        outcome = await run_process(
            [sys.executable, "-c", "import time; time.sleep(30)"],
            cwd=tmp_path,
            timeout=0.2,
        )

        assert outcome.timed_out
        assert not outcome.cancelled
        assert not outcome.completed


class TestHelpers:
    """Tests for small process helpers."""

    def test_split_command(self) -> None:
        assert split_command("npx jest") == ["npx", "jest"]
        assert split_command("php artisan test") == ["php", "artisan", "test"]

    def test_outcome_output(self) -> None:
        outcome = ProcessOutcome(stdout="a", stderr="b")
        assert outcome.output == "a\nb"
        assert outcome.completed
