"""Tests for running generated tests with jest or vitest."""

import stat
import sys
import threading
import time

import pytest

from testsmith.adapters.io import async_runner
from testsmith.adapters.testing import js_runner
from testsmith.adapters.testing.js_runner import JsTestRunner, runner_args, runner_candidates

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script as the runner")


def install_fake_runner(root, name, script):
    bin_dir = root / "node_modules" / ".bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    path = bin_dir / name
    path.write_text("#!/bin/sh\n" + script, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def no_global_runner(monkeypatch):
    monkeypatch.setattr(js_runner.shutil, "which", lambda name: None)


class TestRunnerArgs:
    def test_jest(self):
        assert runner_args("jest", "__tests__/a.test.ts") == ["--runTestsByPath", "__tests__/a.test.ts"]

    def test_vitest(self):
        assert runner_args("vitest", "__tests__/a.test.ts") == ["run", "__tests__/a.test.ts"]


class TestRunnerCandidates:
    @posix_only
    def test_local_binary_comes_first(self, tmp_path, monkeypatch):
        local = install_fake_runner(tmp_path, "jest", "exit 0\n")
        monkeypatch.setattr(js_runner.shutil, "which", lambda name: "/usr/bin/jest")

        assert runner_candidates(tmp_path, "jest") == [str(local), "/usr/bin/jest"]

    def test_nothing_installed(self, tmp_path, no_global_runner):
        assert runner_candidates(tmp_path, "vitest") == []


@posix_only
class TestJsTestRunner:
    """Execution through a fake project-local runner."""

    @pytest.mark.asyncio
    async def test_passing_run(self, tmp_path, no_global_runner):
        install_fake_runner(tmp_path, "jest", 'echo "PASS $2 CI=$CI"\nexit 0\n')
        test_file = tmp_path / "__tests__" / "a.test.ts"

        result = await JsTestRunner(timeout=30).run(tmp_path, test_file, "jest")

        assert result.ok
        assert result.runner_found
        assert result.output == "PASS __tests__/a.test.ts CI=1"
        assert result.command.endswith("jest --runTestsByPath __tests__/a.test.ts")

    @pytest.mark.asyncio
    async def test_failing_run_keeps_stderr(self, tmp_path, no_global_runner):
        install_fake_runner(tmp_path, "vitest", 'echo "FAIL $1" >&2\nexit 1\n')

        result = await JsTestRunner(timeout=30).run(tmp_path, tmp_path / "x.test.ts", "vitest")

        assert not result.ok
        assert result.output == "FAIL run"

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path, no_global_runner):
        install_fake_runner(tmp_path, "jest", "echo started\nsleep 30\n")

        result = await JsTestRunner(timeout=1).run(tmp_path, tmp_path / "x.test.ts", "jest")

        assert not result.ok
        assert result.runner_found
        assert "timed out" in result.output


class TestRunnerNotFound:
    @pytest.mark.asyncio
    async def test_missing_runner(self, tmp_path, no_global_runner):
        result = await JsTestRunner().run(tmp_path, tmp_path / "a.test.ts", "vitest")

        assert not result.ok
        assert not result.runner_found
        assert result.output == "Unable to locate vitest binary"
        assert result.command == "vitest run a.test.ts"


class TestRunSubprocessAsync:
    """Worker-thread wrapper around the blocking subprocess helper."""

    @pytest.mark.asyncio
    async def test_hung_worker_does_not_block_the_loop(self, monkeypatch):
        release = threading.Event()

        def stuck(cmd, timeout, cwd, env):
            release.wait(10)
            return "late", 0

        monkeypatch.setattr(async_runner, "run_subprocess_combined", stuck)
        monkeypatch.setattr(async_runner, "EXECUTOR_GRACE_SECONDS", 0.2)

        started = time.monotonic()
        try:
            with pytest.raises(TimeoutError):
                await async_runner.run_subprocess_async(["jest"], timeout=0)
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert elapsed < 5

    @pytest.mark.asyncio
    async def test_returns_worker_result(self, monkeypatch):
        monkeypatch.setattr(async_runner, "run_subprocess_combined", lambda cmd, timeout, cwd, env: ("ok", 0))

        assert await async_runner.run_subprocess_async(["jest"], timeout=5) == ("ok", 0)
