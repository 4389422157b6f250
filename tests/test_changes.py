"""Tests for the change inspector."""

from __future__ import annotations

from pathlib import Path

from radish.workspace import EMPTY_TREE, ChangeAction, ChangeInspector, ChangeSet, GitRepo

from .conftest import git, write


def _by_path(changes: ChangeSet) -> dict[str, tuple[ChangeAction, int]]:
    return {f.path: (f.action, f.lines) for f in changes.files}


class TestChangeInspector:
    """Diffs between revisions and the working tree."""

    def test_clean_tree_has_no_changes(self, git_repo: Path) -> None:
        changes = ChangeInspector(GitRepo(git_repo)).inspect("HEAD")
        assert changes.files_changed == 0
        assert changes.lines_changed == 0

    def test_created_modified_deleted(self, git_repo: Path) -> None:
        write(git_repo, "doomed.txt", "bye\n")
        git(git_repo, "add", "-A")
        git(git_repo, "commit", "-q", "-m", "add doomed")

        write(git_repo, "README.md", "# demo\nmore\n")
        (git_repo / "doomed.txt").unlink()
        write(git_repo, "src/new.py", "a = 1\nb = 2\nc = 3\n")

        changes = ChangeInspector(GitRepo(git_repo)).inspect("HEAD")
        assert _by_path(changes) == {
            "README.md": (ChangeAction.MODIFIED, 1),
            "doomed.txt": (ChangeAction.DELETED, 1),
            "src/new.py": (ChangeAction.CREATED, 3),
        }
        assert changes.files_changed == 3
        assert changes.lines_changed == 5

    def test_between_two_revisions(self, git_repo: Path) -> None:
        base = git(git_repo, "rev-parse", "HEAD").strip()
        write(git_repo, "a.txt", "1\n2\n")
        git(git_repo, "add", "-A")
        git(git_repo, "commit", "-q", "-m", "a")
        head = git(git_repo, "rev-parse", "HEAD").strip()
        write(git_repo, "uncommitted.txt", "ignored\n")

        changes = ChangeInspector(GitRepo(git_repo)).inspect(base, head)
        assert changes.paths == ["a.txt"]
        assert changes.lines_changed == 2

    def test_no_history_diffs_against_empty_tree(self, empty_repo: Path) -> None:
        write(empty_repo, "first.txt", "one\ntwo")
        changes = ChangeInspector(GitRepo(empty_repo)).inspect("HEAD")
        assert changes.from_ref == EMPTY_TREE
        assert _by_path(changes) == {"first.txt": (ChangeAction.CREATED, 2)}

    def test_untracked_binary_counts_no_lines(self, git_repo: Path) -> None:
        (git_repo / "blob.bin").write_bytes(b"\x00\x01\x02\n\n\n")
        changes = ChangeInspector(GitRepo(git_repo)).inspect("HEAD")
        assert _by_path(changes) == {"blob.bin": (ChangeAction.CREATED, 0)}

    def test_gitignored_files_skipped(self, git_repo: Path) -> None:
        write(git_repo, ".gitignore", "*.log\n")
        write(git_repo, "debug.log", "noise\n")
        changes = ChangeInspector(GitRepo(git_repo)).inspect("HEAD")
        assert changes.paths == [".gitignore"]

    def test_excluded_paths_are_invisible(self, git_repo: Path) -> None:
        sessions = git_repo / ".radish" / "sessions"
        write(git_repo, ".radish/sessions/s1/events.json", "[]\n")
        write(git_repo, "src/app.py", "x = 1\n")
        changes = ChangeInspector(GitRepo(git_repo, exclude=[sessions])).inspect("HEAD")
        assert changes.paths == ["src/app.py"]

    def test_file_and_line_counts_are_independent(self, git_repo: Path) -> None:
        for i in range(4):
            write(git_repo, f"f{i}.txt", "")
        write(git_repo, "big.txt", "x\n" * 10)
        changes = ChangeInspector(GitRepo(git_repo)).inspect("HEAD")
        assert changes.files_changed == 5
        assert changes.lines_changed == 10

    def test_records_share_timestamp(self, git_repo: Path) -> None:
        write(git_repo, "a.txt", "a\n")
        write(git_repo, "b.txt", "b\n")
        records = ChangeInspector(GitRepo(git_repo)).inspect("HEAD").records()
        assert {r.path for r in records} == {"a.txt", "b.txt"}
        assert len({r.observed_at for r in records}) == 1
        assert records[0].to_record()["action"] == "created"
