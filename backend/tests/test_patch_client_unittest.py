from __future__ import annotations

import unittest

import httpx
from bson import ObjectId

from chartwork.errors import PatchError
from chartwork.models.workspace import PatchBatchResult, PatchFailure, WorkspaceFile
from chartwork.services.patch_client import DiffNavigator, HttpPatchServer, PatchClient, StorePatchServer
from fakes import fake_repos, seed_file


def _file(path: str, *, pending: str | None = "new", file_id: str | None = None, content: str = "old") -> WorkspaceFile:
    return WorkspaceFile(
        id=file_id or str(ObjectId()),
        workspace_id="ws1",
        file_path=path,
        content=content,
        content_pending=pending,
        revision_number=1,
    )


class _RecordingServer:
    def __init__(self, *, fail: bool = False, batch: PatchBatchResult | None = None):
        self.fail = fail
        self.batch = batch
        self.calls: list[tuple] = []

    async def accept(self, workspace_id: str, file_id: str, revision: int) -> WorkspaceFile:
        self.calls.append(("accept", file_id, revision))
        if self.fail:
            raise PatchError("server down")
        return _file("server.yaml", pending=None, file_id=file_id, content="from-server")

    async def reject(self, workspace_id: str, file_id: str, revision: int) -> WorkspaceFile:
        self.calls.append(("reject", file_id, revision))
        if self.fail:
            raise PatchError("server down")
        return _file("server.yaml", pending=None, file_id=file_id, content="kept")

    async def accept_all(self, workspace_id: str, revision: int) -> PatchBatchResult:
        self.calls.append(("accept_all", revision))
        if self.fail:
            raise PatchError("server down")
        return self.batch or PatchBatchResult()

    async def reject_all(self, workspace_id: str, revision: int) -> PatchBatchResult:
        self.calls.append(("reject_all", revision))
        if self.fail:
            raise PatchError("server down")
        return self.batch or PatchBatchResult()


class PatchClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_ephemeral_files_merge_locally_without_server(self) -> None:
        server = _RecordingServer()
        row = _file("values.yaml", file_id="local-1")
        client = PatchClient("ws1", [row], server)
        out = await client.accept_one("local-1", 1)
        self.assertEqual((out.content, out.content_pending), ("new", None))
        self.assertEqual(server.calls, [])

    async def test_persisted_files_use_server_result(self) -> None:
        server = _RecordingServer()
        row = _file("values.yaml")
        client = PatchClient("ws1", [row], server)
        out = await client.accept_one(row.id, 1)
        self.assertEqual(out.content, "from-server")
        self.assertEqual(server.calls, [("accept", row.id, 1)])

    async def test_server_failure_falls_back_to_local_merge(self) -> None:
        row = _file("values.yaml")
        client = PatchClient("ws1", [row], _RecordingServer(fail=True))
        with self.assertLogs("chartwork.services.patch_client", level="WARNING") as logs:
            out = await client.accept_one(row.id, 1)
        self.assertEqual((out.content, out.content_pending), ("new", None))
        self.assertTrue(any("degraded" in line for line in logs.output))

    async def test_reject_fallback_keeps_content(self) -> None:
        row = _file("values.yaml")
        client = PatchClient("ws1", [row], _RecordingServer(fail=True))
        out = await client.reject_one(row.id, 1)
        self.assertEqual((out.content, out.content_pending), ("old", None))

    async def test_no_pending_is_a_noop(self) -> None:
        server = _RecordingServer()
        row = _file("values.yaml", pending=None)
        client = PatchClient("ws1", [row], server)
        self.assertEqual(await client.accept_one(row.id, 1), row)
        self.assertEqual(await client.reject_one(row.id, 1), row)
        self.assertEqual(server.calls, [])

    async def test_local_fallback_failure_leaves_file_pending(self) -> None:
        def broken(_row: WorkspaceFile) -> None:
            raise RuntimeError("ui store rejected update")

        row = _file("values.yaml")
        client = PatchClient("ws1", [row], _RecordingServer(fail=True), on_update=broken)
        out = await client.accept_one(row.id, 1)
        self.assertEqual(out.content_pending, "new")
        self.assertEqual([f.id for f in client.pending_files()], [row.id])

    async def test_accept_all_settles_server_failures_locally(self) -> None:
        ok = _file("a.yaml")
        failed = _file("b.yaml")
        local = _file("c.yaml", file_id="local-c")
        clean = _file("d.yaml", pending=None)
        batch = PatchBatchResult(
            updated=[ok.model_copy(update={"content": "new", "content_pending": None})],
            failed=[PatchFailure(file_id=failed.id, file_path="b.yaml", error="write failed")],
        )
        client = PatchClient("ws1", [ok, failed, local, clean], _RecordingServer(batch=batch))
        updated = await client.accept_all(1)
        self.assertEqual(sorted(row.file_path for row in updated), ["a.yaml", "b.yaml", "c.yaml"])
        self.assertEqual(client.pending_files(), [])

    async def test_reject_all_when_server_is_down(self) -> None:
        rows = [_file("a.yaml"), _file("b.yaml")]
        client = PatchClient("ws1", rows, _RecordingServer(fail=True))
        updated = await client.reject_all(1)
        self.assertEqual([row.content for row in updated], ["old", "old"])
        self.assertEqual(client.pending_files(), [])

    async def test_store_server_is_authoritative(self) -> None:
        db, repos = fake_repos()
        fid = await seed_file(db, path="values.yaml", content="a", revision=1, pending="b")
        row = await repos.files.get_by_id(fid, 1)
        client = PatchClient("ws1", [row], StorePatchServer(repos))
        out = await client.accept_one(fid, 1)
        self.assertEqual(out.content, "b")
        self.assertEqual((await repos.files.get_by_id(fid, 1)).content, "b")


class HttpPatchServerTests(unittest.IsolatedAsyncioTestCase):
    async def test_accept_calls_route_with_revision(self) -> None:
        seen: list[httpx.Request] = []
        fid = str(ObjectId())

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_file("values.yaml", pending=None, file_id=fid).model_dump())

        server = HttpPatchServer("http://api.local", user_id="dev@local", transport=httpx.MockTransport(handler))
        out = await server.accept("ws1", fid, 4)
        self.assertEqual(out.id, fid)
        self.assertEqual(seen[0].url.path, f"/workspaces/ws1/files/{fid}/accept")
        self.assertEqual(seen[0].url.params["revision"], "4")

    async def test_error_status_raises_patch_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"detail": "boom"}))
        server = HttpPatchServer("http://api.local", transport=transport)
        with self.assertRaises(PatchError):
            await server.reject_all("ws1", 1)


class DiffNavigatorTests(unittest.TestCase):
    def test_wraps_in_both_directions(self) -> None:
        files = [_file("a.yaml"), _file("b.yaml"), _file("c.yaml")]
        nav = DiffNavigator(files)
        self.assertEqual(nav.current.file_path, "a.yaml")
        self.assertEqual(nav.prev().file_path, "c.yaml")
        self.assertEqual(nav.next().file_path, "a.yaml")
        self.assertEqual(nav.next().file_path, "b.yaml")
        self.assertEqual(nav.next().file_path, "c.yaml")
        self.assertEqual(nav.next().file_path, "a.yaml")

    def test_sync_keeps_current_file_and_skips_clean_files(self) -> None:
        a, b, c = _file("a.yaml"), _file("b.yaml"), _file("c.yaml")
        nav = DiffNavigator([a, b, c])
        nav.next()
        nav.sync([a.model_copy(update={"content_pending": None}), b, c])
        self.assertEqual(len(nav), 2)
        self.assertEqual(nav.current.file_path, "b.yaml")
        nav.sync([])
        self.assertIsNone(nav.current)
        self.assertIsNone(nav.next())
        self.assertIsNone(nav.prev())


if __name__ == "__main__":
    unittest.main()
