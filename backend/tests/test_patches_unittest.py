from __future__ import annotations

import unittest

from chartwork.errors import FileNotFound, PatchError, Unauthorized
from chartwork.repositories.factory import RepositoryFactory
from chartwork.services.patches import (
    accept_all_patches,
    accept_patch,
    commit_pending_changes,
    fold_pending,
    reject_all_patches,
    reject_patch,
    stage_patch,
)
from fakes import RecordingPublisher, fake_repos, seed_file, seed_workspace


class _FlakyFiles:
    """Fails updates for one file id, delegates everything else."""

    def __init__(self, inner, bad_id: str):
        self.inner = inner
        self.bad_id = bad_id

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def update(self, file_id, revision_number, content, *, clear_pending=False):
        if file_id == self.bad_id:
            raise RuntimeError("write failed")
        await self.inner.update(file_id, revision_number, content, clear_pending=clear_pending)


class FoldPendingTests(unittest.TestCase):
    def test_empty_pending_keeps_content(self) -> None:
        self.assertEqual(fold_pending("a", ""), "a")
        self.assertEqual(fold_pending("a", None), "a")
        self.assertEqual(fold_pending("a", "b"), "b")


class PatchTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db, self.repos = fake_repos()

    def _row(self, file_id: str, revision: int = 1) -> dict:
        for row in self.db["workspace_files"].rows:
            if row["file_id"] == file_id and row["revision_number"] == revision:
                return row
        raise AssertionError(f"missing row {file_id}@{revision}")

    async def test_accept_merges_pending_and_publishes(self) -> None:
        publisher = RecordingPublisher()
        fid = await seed_file(self.db, path="values.yaml", content="a: 1\n", revision=1, pending="a: 2\n")
        out = await accept_patch(fid, 1, workspace_id="ws1", repos=self.repos, publisher=publisher)
        self.assertEqual((out.content, out.content_pending), ("a: 2\n", None))
        self.assertEqual((self._row(fid)["content"], self._row(fid)["content_pending"]), ("a: 2\n", None))
        self.assertEqual(publisher.count("artifact"), 1)

    async def test_reject_discards_pending_only(self) -> None:
        fid = await seed_file(self.db, path="values.yaml", content="a: 1\n", revision=1, pending="a: 2\n")
        out = await reject_patch(fid, 1, repos=self.repos)
        self.assertEqual((out.content, out.content_pending), ("a: 1\n", None))
        self.assertEqual(self._row(fid)["content"], "a: 1\n")
        self.assertIsNone(self._row(fid)["content_pending"])

    async def test_accept_and_reject_without_pending_are_noops(self) -> None:
        publisher = RecordingPublisher()
        fid = await seed_file(self.db, path="values.yaml", content="a: 1\n", revision=1)
        before = dict(self._row(fid))
        await accept_patch(fid, 1, repos=self.repos, publisher=publisher)
        await reject_patch(fid, 1, repos=self.repos, publisher=publisher)
        self.assertEqual(self._row(fid), before)
        self.assertEqual(publisher.events, [])

    async def test_file_of_another_workspace_is_not_found(self) -> None:
        fid = await seed_file(self.db, workspace_id="ws2", path="values.yaml", content="", revision=1, pending="x")
        with self.assertRaises(FileNotFound):
            await accept_patch(fid, 1, workspace_id="ws1", repos=self.repos)

    async def test_accept_all_reports_per_file_failures(self) -> None:
        good = await seed_file(self.db, path="a.yaml", content="a", revision=1, pending="A")
        bad = await seed_file(self.db, path="b.yaml", content="b", revision=1, pending="B")
        await seed_file(self.db, path="c.yaml", content="c", revision=1)
        repos = RepositoryFactory(
            files=_FlakyFiles(self.repos.files, bad),
            workspaces=self.repos.workspaces,
            plans=self.repos.plans,
            replace_log=self.repos.replace_log,
        )
        result = await accept_all_patches("ws1", 1, repos=repos)
        self.assertFalse(result.ok)
        self.assertEqual([row.file_path for row in result.updated], ["a.yaml"])
        self.assertEqual([(f.file_id, f.file_path) for f in result.failed], [(bad, "b.yaml")])
        self.assertEqual(self._row(good)["content"], "A")
        self.assertEqual(self._row(bad)["content_pending"], "B")

    async def test_reject_all_clears_every_pending_file(self) -> None:
        a = await seed_file(self.db, path="a.yaml", content="a", revision=1, pending="A")
        b = await seed_file(self.db, path="b.yaml", content="b", revision=1, pending="B")
        result = await reject_all_patches("ws1", 1, repos=self.repos)
        self.assertTrue(result.ok)
        self.assertEqual(len(result.updated), 2)
        self.assertEqual((self._row(a)["content"], self._row(a)["content_pending"]), ("a", None))
        self.assertEqual((self._row(b)["content"], self._row(b)["content_pending"]), ("b", None))


class StagePatchTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db, self.repos = fake_repos()
        await seed_workspace(self.db, "ws1", revision=1)

    def _row(self, file_id: str, revision: int = 1) -> dict:
        for row in self.db["workspace_files"].rows:
            if row["file_id"] == file_id and row["revision_number"] == revision:
                return row
        raise AssertionError(f"missing row {file_id}@{revision}")

    async def test_staged_patch_can_be_accepted(self) -> None:
        publisher = RecordingPublisher()
        fid = await seed_file(self.db, path="values.yaml", content="a: 1\n", revision=1)
        staged = await stage_patch("ws1", fid, 1, "a: 2\n", repos=self.repos, publisher=publisher)
        self.assertEqual((staged.content, staged.content_pending), ("a: 1\n", "a: 2\n"))
        self.assertEqual(self._row(fid)["content_pending"], "a: 2\n")
        self.assertEqual(publisher.events, [("artifact", "ws1", "values.yaml")])

        out = await accept_patch(fid, 1, workspace_id="ws1", repos=self.repos)
        self.assertEqual((out.content, out.content_pending), ("a: 2\n", None))
        self.assertEqual((self._row(fid)["content"], self._row(fid)["content_pending"]), ("a: 2\n", None))

    async def test_staged_patch_can_be_rejected(self) -> None:
        fid = await seed_file(self.db, path="values.yaml", content="a: 1\n", revision=1, pending="old")
        await stage_patch("ws1", fid, 1, "a: 3\n", repos=self.repos)
        self.assertEqual(self._row(fid)["content_pending"], "a: 3\n")
        out = await reject_patch(fid, 1, workspace_id="ws1", repos=self.repos)
        self.assertEqual((out.content, out.content_pending), ("a: 1\n", None))
        self.assertIsNone(self._row(fid)["content_pending"])

    async def test_staging_an_old_revision_is_refused(self) -> None:
        fid = await seed_file(self.db, path="values.yaml", content="a: 0\n", revision=0)
        with self.assertRaises(PatchError):
            await stage_patch("ws1", fid, 0, "a: 9\n", repos=self.repos)
        self.assertIsNone(self._row(fid, 0)["content_pending"])

    async def test_staging_a_file_of_another_workspace_is_not_found(self) -> None:
        fid = await seed_file(self.db, workspace_id="ws2", path="values.yaml", content="", revision=1)
        with self.assertRaises(FileNotFound):
            await stage_patch("ws1", fid, 1, "x", repos=self.repos)


class CommitPendingChangesTests(unittest.IsolatedAsyncioTestCase):
    async def test_commit_copies_files_into_next_revision(self) -> None:
        db, repos = fake_repos()
        await seed_workspace(db, "ws1", revision=1)
        await db["workspace_charts"].insert_one({"chart_id": "c1", "workspace_id": "ws1", "name": "web", "revision_number": 1})
        changed = await seed_file(db, path="values.yaml", content="a: 1\n", revision=1, pending="a: 2\n")
        blank = await seed_file(db, path="Chart.yaml", content="name: web\n", revision=1, pending="")
        same = await seed_file(db, path="templates/service.yaml", content="kind: Service\n", revision=1)

        out = await commit_pending_changes("ws1", "dev@local", repos=repos)

        self.assertEqual(out["revision_number"], 2)
        self.assertEqual(await repos.workspaces.current_revision("ws1"), 2)
        new_rows = {row.id: row for row in out["files"]}
        self.assertEqual(new_rows[changed].content, "a: 2\n")
        self.assertEqual(new_rows[blank].content, "name: web\n")
        self.assertEqual(new_rows[same].content, "kind: Service\n")
        self.assertTrue(all(row.revision_number == 2 and row.content_pending is None for row in out["files"]))
        old = [row for row in db["workspace_files"].rows if row["revision_number"] == 1]
        self.assertTrue(all(row["content_pending"] is None for row in old))
        self.assertEqual((await repos.files.get("ws1", "values.yaml")).revision_number, 2)
        charts = await repos.workspaces.list_charts("ws1", 2)
        self.assertEqual([(c.id, c.name) for c in charts], [("c1", "web")])
        self.assertEqual(db["workspace_revisions"].rows[0]["created_by_user_id"], "dev@local")

    async def test_commit_requires_user_and_workspace(self) -> None:
        _, repos = fake_repos()
        with self.assertRaises(Unauthorized):
            await commit_pending_changes("ws1", "", repos=repos)
        with self.assertRaises(PatchError):
            await commit_pending_changes("missing", "dev@local", repos=repos)


if __name__ == "__main__":
    unittest.main()
