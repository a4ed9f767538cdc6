"""
Integration tests against real repositories built with the git binary.
"""

import shutil
import subprocess
from pathlib import Path

import pytest

from submodule_sync.git_manager import GitManager
from submodule_sync.models import UpdateOptions, UpdateStrategy
from submodule_sync.update_orchestrator import UpdateOrchestrator

from tests.fixtures.reporters import RecordingReporter


pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@pytest.fixture(autouse=True)
def git_environment(monkeypatch):
    """Deterministic identity; allow file:// submodule clones."""
    monkeypatch.setenv("GIT_CONFIG_PARAMETERS", "'protocol.file.allow'='always'")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for kind in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{kind}_NAME", "Test User")
        monkeypatch.setenv(f"GIT_{kind}_EMAIL", "test@example.com")


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def make_repo(path: Path, name: str) -> Path:
    path.mkdir(parents=True)
    git(path, "init", "-q")
    commit_file(path, "README.md", f"# {name}\n", f"Initial commit in {name}")
    return path


def commit_file(repo: Path, filename: str, content: str, message: str) -> str:
    with open(repo / filename, "a") as f:
        f.write(content)
    git(repo, "add", filename)
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


def add_submodule(parent: Path, upstream: Path, path: str) -> None:
    git(parent, "submodule", "add", "-q", str(upstream), path)
    git(parent, "commit", "-q", "-m", f"Add {path} submodule")


@pytest.fixture
def nested_tree(tmp_path):
    """upstream super -> child -> grand, plus a fresh clone of super."""
    upstream = tmp_path / "upstream"
    grand = make_repo(upstream / "grand", "grand")
    child = make_repo(upstream / "child", "child")
    add_submodule(child, grand, "grand")
    sibling = make_repo(upstream / "sibling", "sibling")
    super_repo = make_repo(upstream / "super", "super")
    add_submodule(super_repo, child, "child")
    add_submodule(super_repo, sibling, "sibling")

    work = tmp_path / "work"
    git(tmp_path, "clone", "-q", str(super_repo), str(work))
    return {"upstream": upstream, "child": child, "grand": grand, "sibling": sibling, "work": work}


def run_update(work: Path, paths=(), **options) -> tuple:
    reporter = RecordingReporter()
    status = UpdateOrchestrator(GitManager(work), UpdateOptions(**options), reporter).run(paths)
    return status, reporter


class TestUpdateIntegration:
    """End-to-end updates of a freshly cloned superproject."""

    def test_init_and_update(self, nested_tree):
        work = nested_tree["work"]
        child_head = git(nested_tree["child"], "rev-parse", "HEAD")

        status, reporter = run_update(work, init=True)

        assert status == 0
        assert git(work / "child", "rev-parse", "HEAD") == child_head
        assert f"Submodule path 'child': checked out '{child_head}'" in reporter.infos
        assert any("registered for path 'child'" in m for m in reporter.infos)
        # Not recursive: the nested submodule stays empty
        assert not (work / "child" / "grand" / ".git").exists()

    def test_second_run_is_silent(self, nested_tree):
        work = nested_tree["work"]
        run_update(work, init=True)

        status, reporter = run_update(work)

        assert status == 0
        assert reporter.messages == []

    def test_recursive_update(self, nested_tree):
        work = nested_tree["work"]
        grand_head = git(nested_tree["grand"], "rev-parse", "HEAD")

        status, reporter = run_update(work, init=True, recursive=True)

        assert status == 0
        assert git(work / "child" / "grand", "rev-parse", "HEAD") == grand_head
        assert f"Submodule path 'child/grand': checked out '{grand_head}'" in reporter.infos
        assert (work / ".git" / "modules" / "child" / "modules" / "grand").is_dir()

    def test_uninitialized_submodules_skipped(self, nested_tree):
        work = nested_tree["work"]
        status, reporter = run_update(work)
        assert status == 0
        assert reporter.messages == []
        assert not (work / "child" / ".git").exists()

    def test_unmatched_path(self, nested_tree):
        status, reporter = run_update(nested_tree["work"], paths=("nope",))
        assert status == 1
        assert reporter.errors == ["error: pathspec 'nope' did not match any file(s) known to git"]

    def test_only_requested_path(self, nested_tree):
        work = nested_tree["work"]
        status, _ = run_update(work, paths=("sibling",), init=True)
        assert status == 0
        assert (work / "sibling" / ".git").exists()
        assert not (work / "child" / ".git").exists()

    def test_remote_tracking(self, nested_tree):
        work = nested_tree["work"]
        run_update(work, init=True)
        new_head = commit_file(nested_tree["sibling"], "NEWS", "more\n", "Upstream change")

        status, reporter = run_update(work, paths=("sibling",), remote=True)

        assert status == 0
        assert git(work / "sibling", "rev-parse", "HEAD") == new_head
        assert f"Submodule path 'sibling': checked out '{new_head}'" in reporter.infos

    def test_merge_strategy(self, nested_tree):
        work = nested_tree["work"]
        run_update(work, init=True)
        git(work / "sibling", "checkout", "-q", "-b", "topic")
        new_head = commit_file(nested_tree["sibling"], "NEWS", "more\n", "Upstream change")

        status, reporter = run_update(
            work, paths=("sibling",), remote=True, strategy=UpdateStrategy.MERGE
        )

        assert status == 0
        assert git(work / "sibling", "rev-parse", "HEAD") == new_head
        assert git(work / "sibling", "rev-parse", "--abbrev-ref", "HEAD") == "topic"
        assert f"Submodule path 'sibling': merged in '{new_head}'" in reporter.infos

    def test_recorded_commit_missing_upstream(self, nested_tree):
        work = nested_tree["work"]
        run_update(work, init=True)
        # Record a commit in the superproject that the sibling's remote never had
        sibling = work / "sibling"
        git(sibling, "commit", "-q", "--allow-empty", "-m", "local only")
        git(work, "add", "sibling")
        git(work, "commit", "-q", "-m", "Point sibling at a local commit")
        git(sibling, "checkout", "-q", "HEAD~1")
        # Lose the commit so that it must be fetched
        git(sibling, "reflog", "expire", "--expire=now", "--all")
        git(sibling, "gc", "-q", "--prune=now")

        status, reporter = run_update(work)

        assert status == 128
        assert reporter.errors[-1].startswith("fatal: Fetched in submodule path 'sibling'")

    def test_unclonable_sibling_leaves_others_untouched(self, nested_tree, tmp_path):
        work = nested_tree["work"]
        run_update(work, paths=("sibling",), init=True)
        old_head = git(work / "sibling", "rev-parse", "HEAD")
        # Record a newer sibling commit in the superproject
        commit_file(nested_tree["sibling"], "NEWS", "more\n", "Upstream change")
        git(work / "sibling", "fetch", "-q", "origin", "HEAD")
        git(work / "sibling", "checkout", "-q", "FETCH_HEAD")
        git(work, "add", "sibling")
        git(work, "commit", "-q", "-m", "Advance sibling")
        git(work / "sibling", "checkout", "-q", old_head)
        # Register child with a URL that cannot be cloned
        git(work, "config", "submodule.child.url", str(tmp_path / "nowhere"))

        status, reporter = run_update(work)

        assert status == 1
        assert git(work / "sibling", "rev-parse", "HEAD") == old_head
        assert reporter.errors == ["Failed to clone 'child' a second time, aborting"]
        assert reporter.infos == []
