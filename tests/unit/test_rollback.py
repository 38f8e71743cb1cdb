from __future__ import annotations

from pathlib import Path

from myaide.structured import parse_implementation_payload
from myaide.tools.edits import apply_actions
from myaide.tools.rollback import latest_applied_mutations, rollback_mutations
from myaide.tools.workspace import FileSystemTool, Mutation


def test_rollback_restores_removes_and_recreates(tmp_path: Path) -> None:
    (tmp_path / "edited.txt").write_text("before", encoding="utf-8")
    (tmp_path / "doomed.txt").write_text("keep me", encoding="utf-8")
    fs = FileSystemTool(tmp_path)
    mutations = [
        fs.write("edited.txt", "after"),
        fs.write("created/new.txt", "brand new"),
        fs.delete("doomed.txt"),
    ]

    report = rollback_mutations(fs, mutations)

    assert report.ok
    assert (tmp_path / "edited.txt").read_text(encoding="utf-8") == "before"
    assert not (tmp_path / "created" / "new.txt").exists()
    assert (tmp_path / "doomed.txt").read_text(encoding="utf-8") == "keep me"
    assert sorted(report.restored) == ["doomed.txt", "edited.txt"]
    assert report.removed == ["created/new.txt"]
    assert report.summary() == "restored 2, removed 1"


def test_latest_mutation_per_path_carries_pre_run_snapshot() -> None:
    mutations = [
        Mutation(action="write", path="a.txt", before="v0", after="v1", applied=True),
        Mutation(action="write", path="b.txt", before=None, after="b", applied=True),
        Mutation(action="write", path="a.txt", before="v1", after="v2", applied=True),
        Mutation(action="write", path="c.txt", before=None, after="c", reason="dry-run"),
    ]

    latest = latest_applied_mutations(mutations)

    assert [mutation.path for mutation in latest] == ["a.txt", "b.txt"]
    assert latest[0].before == "v0"
    assert latest[0].after == "v2"


def test_rollback_bypasses_dry_run_and_approval(tmp_path: Path) -> None:
    (tmp_path / "file.txt").write_text("changed", encoding="utf-8")
    mutation = Mutation(action="write", path="file.txt", before="pristine", after="changed", applied=True)
    fs = FileSystemTool(tmp_path, dry_run=True, approve=lambda _: False)

    assert rollback_mutations(fs, [mutation]).restored == ["file.txt"]
    assert (tmp_path / "file.txt").read_text(encoding="utf-8") == "pristine"


def test_rollback_failures_are_recorded_and_others_continue(tmp_path: Path) -> None:
    (tmp_path / "blocker").mkdir()
    (tmp_path / "fine.txt").write_text("new", encoding="utf-8")
    mutations = [
        Mutation(action="write", path="fine.txt", before="old", after="new", applied=True),
        Mutation(action="write", path="blocker", before=None, after="x", applied=True),
        Mutation(action="write", path="../outside.txt", before="x", after="y", applied=True),
    ]

    report = rollback_mutations(FileSystemTool(tmp_path), mutations)

    assert not report.ok
    assert set(report.failed) == {"blocker", "../outside.txt"}
    assert report.restored == ["fine.txt"]
    assert (tmp_path / "fine.txt").read_text(encoding="utf-8") == "old"
    assert report.summary() == "restored 1, removed 0, failed 2"


def test_rollback_restores_file_patched_twice_by_one_action(tmp_path: Path) -> None:
    pristine = "".join(f"{word}\n" for word in "one two three four five six seven eight nine ten".split())
    (tmp_path / "numbers.txt").write_text(pristine, encoding="utf-8")
    fs = FileSystemTool(tmp_path)
    payload = parse_implementation_payload(
        {
            "actions": [
                {
                    "type": "modify_file",
                    "path": "numbers.txt",
                    "patches": [
                        "@@ -1,3 +1,3 @@\n one\n-two\n+TWO\n three\n",
                        "@@ -8,3 +8,3 @@\n eight\n-nine\n+NINE\n ten\n",
                    ],
                }
            ]
        }
    )
    applied = apply_actions(fs, payload.actions)
    assert not applied.failed
    assert "TWO" in (tmp_path / "numbers.txt").read_text(encoding="utf-8")

    report = rollback_mutations(fs, applied.mutations)

    assert report.restored == ["numbers.txt"]
    assert (tmp_path / "numbers.txt").read_text(encoding="utf-8") == pristine


def test_rollback_removes_file_created_then_patched(tmp_path: Path) -> None:
    fs = FileSystemTool(tmp_path)
    mutations = [fs.write("fresh.txt", "a\n"), fs.write("fresh.txt", "b\n")]

    report = rollback_mutations(fs, mutations)

    assert report.removed == ["fresh.txt"]
    assert not (tmp_path / "fresh.txt").exists()


def test_rollback_leaves_path_created_then_deleted_absent(tmp_path: Path) -> None:
    fs = FileSystemTool(tmp_path)
    mutations = [fs.write("temp.txt", "scratch"), fs.delete("temp.txt")]

    report = rollback_mutations(fs, mutations)

    assert report.summary() == "restored 0, removed 0"
    assert not (tmp_path / "temp.txt").exists()
