from __future__ import annotations

import json
import subprocess
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from cralph.cancellation import CancellationToken
from cralph.errors import AgentTimeoutError, CancellationError
from cralph.runner import AgentResult, ClaudeRunner, GitCommitter, check_agent_auth, create_agent_runner
from cralph.runner.auth import is_auth_cache_valid, save_auth_cache
from cralph.runner.base import normalize_output
from cralph.runner.git import commit_message


class FakePopen:
    stdout = b""
    stderr = b""
    returncode = 0
    hang = False
    interrupt_token: CancellationToken | None = None

    def __init__(self, argv: list[str], **kwargs: object) -> None:
        self.argv = argv
        self.kwargs = kwargs
        self.pid = 1234
        self.killed = False
        self.waited = False
        self.tracked_during_communicate = False
        self.inputs: list[bytes | None] = []

    def communicate(self, data: bytes | None = None, timeout: float | None = None) -> tuple[bytes, bytes]:
        self.inputs.append(data)
        if self.interrupt_token is not None and not self.killed:
            # Same steps as the SIGINT handler.
            self.tracked_during_communicate = self.interrupt_token.process is self
            self.interrupt_token.cancel()
            self.interrupt_token.kill_tracked_process()
            raise CancellationError("Cancelled")
        if self.hang and not self.killed:
            raise subprocess.TimeoutExpired(cmd=self.argv, timeout=timeout or 0)
        return self.stdout, self.stderr

    def kill(self) -> None:
        self.killed = True

    def wait(self, timeout: float | None = None) -> int:
        self.waited = True
        return -9


@pytest.fixture
def fake_popen(monkeypatch: pytest.MonkeyPatch) -> type[FakePopen]:
    class Popen(FakePopen):
        instances: list[FakePopen] = []

        def __init__(self, argv: list[str], **kwargs: object) -> None:
            super().__init__(argv, **kwargs)
            Popen.instances.append(self)

    monkeypatch.setattr(subprocess, "Popen", Popen)
    return Popen


@pytest.mark.parametrize("name", ["claude", "Claude", "claude-code"])
def test_create_agent_runner(name: str) -> None:
    assert isinstance(create_agent_runner(name), ClaudeRunner)


def test_create_agent_runner_invalid() -> None:
    with pytest.raises(ValueError, match="Unsupported agent runner"):
        create_agent_runner("gpt-shell")


def test_claude_runner_commands() -> None:
    runner = ClaudeRunner(executable="/opt/bin/claude")

    assert runner.iteration_command() == ["/opt/bin/claude", "-p", "--dangerously-skip-permissions"]
    assert runner.auxiliary_command() == ["/opt/bin/claude", "-p"]


def test_install_instructions_by_platform() -> None:
    runner = ClaudeRunner()

    assert "brew install claude" in runner.install_instructions("Darwin")
    assert "npm install -g @anthropic-ai/claude-code" in runner.install_instructions("Linux")


def test_run_pipes_prompt_and_concatenates_output(
    fake_popen: type[FakePopen], tmp_path: Path
) -> None:
    fake_popen.stdout = b"did a task\n"
    fake_popen.stderr = b"warning\n"
    fake_popen.returncode = 3
    token = CancellationToken()
    tracked: list[object] = []
    original_track = token.track

    def spy_track(process: subprocess.Popen[bytes]) -> None:
        tracked.append(process)
        original_track(process)

    token.track = spy_track  # type: ignore[method-assign]

    result = ClaudeRunner().run("do the thing", cwd=str(tmp_path), token=token)

    process = fake_popen.instances[0]
    assert process.argv == ["claude", "-p", "--dangerously-skip-permissions"]
    assert process.kwargs["cwd"] == str(tmp_path)
    assert process.kwargs["stdin"] == subprocess.PIPE
    assert process.inputs == [b"do the thing"]
    assert result.returncode == 3
    assert result.output == "did a task\nwarning\n"
    assert tracked == [process]
    assert token.process is None


def test_run_reports_spawn_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def missing(*_args: object, **_kwargs: object) -> None:
        raise FileNotFoundError("claude")

    monkeypatch.setattr(subprocess, "Popen", missing)

    result = ClaudeRunner().run("prompt")

    assert result.spawned is False
    assert result.returncode == 127
    assert "Failed to start claude" in result.stderr


def test_run_bounded_kills_process_on_timeout(fake_popen: type[FakePopen]) -> None:
    fake_popen.hang = True
    fake_popen.stdout = b"partial"

    with pytest.raises(AgentTimeoutError, match="timed out after 0.5s") as exc_info:
        ClaudeRunner().run_bounded("hello", timeout=0.5)

    process = fake_popen.instances[0]
    assert process.argv == ["claude", "-p"]
    assert process.killed is True
    assert exc_info.value.output == "partial"


def test_run_bounded_tracks_process_and_kills_it_on_interrupt(fake_popen: type[FakePopen]) -> None:
    token = CancellationToken()
    fake_popen.interrupt_token = token

    with pytest.raises(CancellationError):
        ClaudeRunner().run_bounded("Reply with just 'ok'", timeout=20, token=token)

    process = fake_popen.instances[0]
    assert process.tracked_during_communicate is True
    assert process.killed is True
    assert process.waited is True
    assert token.process is None


def test_run_reaps_process_on_interrupt(fake_popen: type[FakePopen]) -> None:
    token = CancellationToken()
    fake_popen.interrupt_token = token

    with pytest.raises(CancellationError):
        ClaudeRunner().run("work", token=token)

    process = fake_popen.instances[0]
    assert process.tracked_during_communicate is True
    assert process.waited is True
    assert token.process is None


def test_run_bounded_untracks_after_success(fake_popen: type[FakePopen]) -> None:
    fake_popen.stdout = b"ok"
    token = CancellationToken()

    result = ClaudeRunner().run_bounded("hello", timeout=5, token=token)

    assert result.stdout == "ok"
    assert token.process is None
    assert fake_popen.instances[0].killed is False


def test_normalize_output_handles_bytes_and_none() -> None:
    assert normalize_output(None) == ""
    assert normalize_output("text") == "text"
    assert normalize_output("héllo".encode("utf-8")) == "héllo"


class FakeAuthRunner:
    name = "fake"

    def __init__(self, result: AgentResult | None = None, *, timeout: bool = False) -> None:
        self.result = result
        self.timeout = timeout
        self.calls = 0
        self.tokens: list[CancellationToken | None] = []

    def run_bounded(
        self,
        prompt: str,
        *,
        timeout: float,
        cwd: str | None = None,
        token: CancellationToken | None = None,
    ) -> AgentResult:
        self.calls += 1
        self.tokens.append(token)
        assert prompt == "Reply with just 'ok'"
        if self.timeout:
            raise AgentTimeoutError(timeout)
        assert self.result is not None
        return self.result


def test_auth_check_caches_success(tmp_path: Path) -> None:
    cache = tmp_path / "auth-cache.json"
    runner = FakeAuthRunner(AgentResult(runner="fake", returncode=0, stdout="ok", stderr=""))

    assert check_agent_auth(runner, cache_path=cache) is True  # type: ignore[arg-type]
    assert check_agent_auth(runner, cache_path=cache) is True  # type: ignore[arg-type]

    assert runner.calls == 1
    assert "timestamp" in json.loads(cache.read_text(encoding="utf-8"))


def test_auth_check_passes_token_to_probe(tmp_path: Path) -> None:
    token = CancellationToken()
    runner = FakeAuthRunner(AgentResult(runner="fake", returncode=0, stdout="ok", stderr=""))

    check_agent_auth(runner, cache_path=tmp_path / "auth-cache.json", token=token)  # type: ignore[arg-type]

    assert runner.tokens == [token]


@pytest.mark.parametrize(
    "output",
    ["authentication_error", "OAuth token has expired", "Please run /login", "HTTP 401"],
)
def test_auth_check_rejects_auth_errors(tmp_path: Path, output: str) -> None:
    cache = tmp_path / "auth-cache.json"
    runner = FakeAuthRunner(AgentResult(runner="fake", returncode=0, stdout="", stderr=output))

    assert check_agent_auth(runner, cache_path=cache) is False  # type: ignore[arg-type]
    assert not cache.exists()


def test_auth_check_timeout_and_failure(tmp_path: Path) -> None:
    cache = tmp_path / "auth-cache.json"
    timed_out = FakeAuthRunner(timeout=True)
    failed = FakeAuthRunner(AgentResult(runner="fake", returncode=2, stdout="", stderr="boom"))

    assert check_agent_auth(timed_out, cache_path=cache, timeout=1) is False  # type: ignore[arg-type]
    assert check_agent_auth(failed, cache_path=cache) is False  # type: ignore[arg-type]


def test_auth_cache_expires(tmp_path: Path) -> None:
    cache = tmp_path / "nested" / "auth-cache.json"
    save_auth_cache(cache, now=1000.0)

    assert is_auth_cache_valid(cache, ttl_seconds=60, now=1059.0) is True
    assert is_auth_cache_valid(cache, ttl_seconds=60, now=1061.0) is False
    assert is_auth_cache_valid(cache, now=time.time()) is False


def test_auth_cache_ignores_garbage(tmp_path: Path) -> None:
    cache = tmp_path / "auth-cache.json"
    cache.write_text("not json", encoding="utf-8")
    assert is_auth_cache_valid(cache) is False

    cache.write_text(json.dumps({"timestamp": "yesterday"}), encoding="utf-8")
    assert is_auth_cache_valid(cache) is False


def test_git_committer_stages_and_commits(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[list[str]] = []

    def fake_run(argv: list[str], **kwargs: object) -> SimpleNamespace:
        calls.append(argv)
        assert kwargs["cwd"] == str(tmp_path)
        return SimpleNamespace(returncode=0, stdout=b"", stderr=b"")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = GitCommitter().commit_progress(4, cwd=str(tmp_path))

    assert result.committed is True
    assert calls == [["git", "add", "-A"], ["git", "commit", "-m", "cralph: iteration 4"]]


def test_git_committer_reports_nothing_to_commit(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(argv: list[str], **_kwargs: object) -> SimpleNamespace:
        if argv[1] == "commit":
            return SimpleNamespace(
                returncode=1,
                stdout=b"On branch main\nnothing to commit, working tree clean\n",
                stderr=b"",
            )
        return SimpleNamespace(returncode=0, stdout=b"", stderr=b"")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = GitCommitter().commit_progress(1, cwd=".")

    assert result.committed is False
    assert result.detail == "On branch main"


def test_git_committer_missing_git(monkeypatch: pytest.MonkeyPatch) -> None:
    def missing(*_args: object, **_kwargs: object) -> None:
        raise FileNotFoundError("git")

    monkeypatch.setattr(subprocess, "run", missing)

    result = GitCommitter().commit_progress(1, cwd=".")

    assert result.committed is False
    assert "git" in result.detail


def test_commit_message_contains_iteration() -> None:
    assert commit_message(12) == "cralph: iteration 12"
