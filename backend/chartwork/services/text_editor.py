from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from ..errors import FileAlreadyExists, FileNotFound, NoMatch, WorkspaceError
from ..models.workspace import EditorResult, ReplaceLogEntry, TextEditorRequest
from ..repositories.factory import RepositoryFactory, repository_factory
from ..settings import settings
from .realtime import EventPublisher

logger = logging.getLogger(__name__)

NO_MATCH_ERROR = "String not found in file content"


@dataclass(frozen=True)
class ReplaceMatch:
    start: int
    end: int
    case_insensitive: bool = False


def normalize_file_path(path: str) -> str:
    p = str(path or "").strip().replace("\\", "/")
    p = p.replace("//", "/")
    p = re.sub(r"^\./", "", p)
    p = p.lstrip("/")
    if not p:
        raise WorkspaceError("path is required")
    if any(part in {"", ".", ".."} for part in p.split("/")):
        raise WorkspaceError(f"Invalid path: {path}")
    return p


def find_replacement(content: str, old_str: str, *, fuzzy_min_chars: int | None = None) -> ReplaceMatch | None:
    """
    Locate the span ``str_replace`` should rewrite.

    Exact substring first. Only when ``old_str`` is longer than ``fuzzy_min_chars`` is a
    case-insensitive search tried, and the returned span then points at the text as it is
    cased in ``content``. Only the first occurrence is ever reported.
    """
    if not old_str:
        return None
    threshold = settings.STR_REPLACE_FUZZY_MIN_CHARS if fuzzy_min_chars is None else int(fuzzy_min_chars)
    idx = content.find(old_str)
    if idx != -1:
        return ReplaceMatch(start=idx, end=idx + len(old_str))
    if len(old_str) <= threshold:
        return None
    # re.IGNORECASE keeps offsets in the original string even where lower() would change lengths.
    m = re.search(re.escape(old_str), content, flags=re.IGNORECASE)
    if m is None:
        return None
    return ReplaceMatch(start=m.start(), end=m.end(), case_insensitive=True)


def apply_replacement(content: str, match: ReplaceMatch, new_str: str) -> str:
    return content[: match.start] + new_str + content[match.end :]


def replace_first(
    content: str,
    old_str: str,
    new_str: str,
    *,
    fuzzy_min_chars: int | None = None,
) -> tuple[str, ReplaceMatch]:
    match = find_replacement(content, old_str, fuzzy_min_chars=fuzzy_min_chars)
    if match is None:
        raise NoMatch("String not found in file. No replacement made.")
    return apply_replacement(content, match, new_str), match


def replacement_context(content: str, match: ReplaceMatch, *, chars: int | None = None) -> tuple[str, str]:
    width = settings.STR_REPLACE_CONTEXT_CHARS if chars is None else int(chars)
    before = content[max(0, match.start - width) : match.start]
    after = content[match.end : match.end + width]
    return before, after


class FileMutationBackend(Protocol):
    async def view(self, workspace_id: str, path: str) -> EditorResult: ...

    async def create(self, workspace_id: str, path: str, content: str) -> EditorResult: ...

    async def str_replace(self, workspace_id: str, path: str, old_str: str, new_str: str) -> EditorResult: ...


class LocalMutationBackend:
    """Runs editor commands directly against the workspace file store."""

    def __init__(
        self,
        repos: RepositoryFactory | None = None,
        *,
        publisher: EventPublisher | None = None,
        fuzzy_min_chars: int | None = None,
        context_chars: int | None = None,
    ):
        self._repos = repos or repository_factory()
        self._publisher = publisher
        self._fuzzy_min_chars = fuzzy_min_chars
        self._context_chars = context_chars

    async def view(self, workspace_id: str, path: str) -> EditorResult:
        try:
            safe_path = normalize_file_path(path)
            row = await self._repos.files.get(workspace_id, safe_path)
        except FileNotFound as err:
            logger.warning("editor.view.not_found workspace=%s path=%s", workspace_id, path)
            return EditorResult(success=False, error=str(err), code="not_found")
        except WorkspaceError as err:
            return EditorResult(success=False, error=str(err), code="invalid_request")
        return EditorResult(success=True, content=row.content, message=f"File viewed successfully: {safe_path}")

    async def create(self, workspace_id: str, path: str, content: str) -> EditorResult:
        if content is None:
            return EditorResult(success=False, error="content is required for create", code="invalid_request")
        try:
            safe_path = normalize_file_path(path)
            revision = await self._repos.workspaces.current_revision(workspace_id)
            row = await self._repos.files.insert(
                workspace_id=workspace_id,
                file_path=safe_path,
                content=content,
                revision_number=revision,
            )
        except FileAlreadyExists as err:
            logger.warning("editor.create.exists workspace=%s path=%s", workspace_id, path)
            return EditorResult(success=False, error=str(err), code="already_exists")
        except WorkspaceError as err:
            return EditorResult(success=False, error=str(err), code="invalid_request")
        logger.info(
            "editor.create.ok workspace=%s path=%s revision=%s chars=%s",
            workspace_id,
            safe_path,
            revision,
            len(content),
        )
        await self._notify(workspace_id, row.id, safe_path)
        return EditorResult(success=True, content=content, message=f"File created successfully: {safe_path}")

    async def str_replace(self, workspace_id: str, path: str, old_str: str, new_str: str) -> EditorResult:
        if old_str is None or new_str is None:
            return EditorResult(success=False, error="old_str and new_str are required", code="invalid_request")
        try:
            safe_path = normalize_file_path(path)
            row = await self._repos.files.get(workspace_id, safe_path)
        except FileNotFound:
            logger.warning("editor.str_replace.not_found workspace=%s path=%s", workspace_id, path)
            return EditorResult(
                success=False,
                error=f"File not found: {path}. Use create command instead.",
                code="not_found",
            )
        except WorkspaceError as err:
            return EditorResult(success=False, error=str(err), code="invalid_request")

        old_content = row.content
        try:
            new_content, match = replace_first(old_content, old_str, new_str, fuzzy_min_chars=self._fuzzy_min_chars)
        except NoMatch as err:
            await self._repos.replace_log.insert(
                ReplaceLogEntry(
                    workspace_id=workspace_id,
                    file_path=safe_path,
                    found=False,
                    old_str=old_str,
                    new_str=new_str,
                    updated_content=old_content,
                    old_str_len=len(old_str),
                    new_str_len=len(new_str),
                    error_message=NO_MATCH_ERROR,
                )
            )
            logger.info(
                "editor.str_replace.no_match workspace=%s path=%s old_len=%s",
                workspace_id,
                safe_path,
                len(old_str),
            )
            return EditorResult(success=False, error=str(err), code="no_match")

        await self._repos.files.update(row.id, row.revision_number, new_content, clear_pending=True)
        before, after = replacement_context(old_content, match, chars=self._context_chars)
        await self._repos.replace_log.insert(
            ReplaceLogEntry(
                workspace_id=workspace_id,
                file_path=safe_path,
                found=True,
                old_str=old_str,
                new_str=new_str,
                updated_content=new_content,
                old_str_len=len(old_str),
                new_str_len=len(new_str),
                context_before=before,
                context_after=after,
            )
        )
        logger.info(
            "editor.str_replace.ok workspace=%s path=%s at=%s case_insensitive=%s",
            workspace_id,
            safe_path,
            match.start,
            match.case_insensitive,
        )
        await self._notify(workspace_id, row.id, safe_path)
        return EditorResult(
            success=True,
            content=new_content,
            message=f"Successfully replaced 1 occurrence(s) in {safe_path}",
        )

    async def _notify(self, workspace_id: str, file_id: str, path: str) -> None:
        if self._publisher is not None:
            await self._publisher.publish_artifact_update(workspace_id, file_id, path)


def _retryable_http_status(code: int) -> bool:
    return int(code) in {429, 500, 502, 503, 504}


def remote_error_detail(body: str) -> str:
    raw = str(body or "").strip()
    if not raw:
        return ""
    try:
        parsed = json.loads(raw)
    except Exception:
        return raw[:500]
    if isinstance(parsed, dict):
        for key in ("detail", "error", "message"):
            msg = str(parsed.get(key) or "").strip()
            if msg:
                return msg
    return raw[:500]


class RemoteMutationBackend:
    """
    Sends editor commands to another service exposing ``POST /workspaces/{id}/editor``.

    Expected failures come back as unsuccessful results in a 200 response. Transport
    errors and non-2xx responses raise ``WorkspaceError`` after retries, which the plan
    executor treats as fatal for the run.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        user_id: str | None = None,
        retries: int | None = None,
        timeout_sec: float = 45.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or settings.MUTATION_BACKEND_URL).rstrip("/")
        self._user_id = user_id or settings.MUTATION_BACKEND_USER
        self._retries = max(1, int(retries if retries is not None else settings.REMOTE_HTTP_RETRIES))
        self._timeout_sec = timeout_sec
        self._transport = transport

    async def view(self, workspace_id: str, path: str) -> EditorResult:
        return await self._call(workspace_id, {"command": "view", "path": path})

    async def create(self, workspace_id: str, path: str, content: str) -> EditorResult:
        return await self._call(workspace_id, {"command": "create", "path": path, "content": content})

    async def str_replace(self, workspace_id: str, path: str, old_str: str, new_str: str) -> EditorResult:
        return await self._call(
            workspace_id,
            {"command": "str_replace", "path": path, "old_str": old_str, "new_str": new_str},
        )

    async def _call(self, workspace_id: str, body: dict[str, Any]) -> EditorResult:
        url = f"{self._base_url}/workspaces/{workspace_id}/editor"
        headers = {"X-Dev-User": self._user_id}
        last_err: Exception | None = None
        for attempt in range(1, self._retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self._timeout_sec, transport=self._transport) as client:
                    resp = await client.post(url, json=body, headers=headers)
            except httpx.HTTPError as err:
                last_err = err
                if attempt < self._retries:
                    await asyncio.sleep(0.35 * attempt)
                    continue
                raise WorkspaceError(f"editor {body.get('command')} failed: {err}") from err

            if resp.status_code < 400:
                return EditorResult(**(resp.json() or {}))
            detail = remote_error_detail(resp.text)
            if _retryable_http_status(resp.status_code) and attempt < self._retries:
                await asyncio.sleep(0.35 * attempt)
                continue
            raise WorkspaceError(
                f"editor {body.get('command')} failed ({resp.status_code})" + (f": {detail}" if detail else "")
            )

        raise WorkspaceError(f"editor {body.get('command')} failed: {last_err}")


def build_mutation_backend(
    repos: RepositoryFactory | None = None,
    *,
    publisher: EventPublisher | None = None,
) -> FileMutationBackend:
    mode = str(settings.MUTATION_BACKEND or "local").strip().lower()
    if mode == "remote":
        return RemoteMutationBackend()
    if mode != "local":
        raise WorkspaceError(f"Unknown MUTATION_BACKEND: {settings.MUTATION_BACKEND}")
    return LocalMutationBackend(repos, publisher=publisher)


async def run_editor_command(
    backend: FileMutationBackend,
    workspace_id: str,
    request: TextEditorRequest,
) -> EditorResult:
    if request.command == "view":
        return await backend.view(workspace_id, request.path)
    if request.command == "create":
        return await backend.create(workspace_id, request.path, request.content)
    if request.command == "str_replace":
        return await backend.str_replace(workspace_id, request.path, request.old_str, request.new_str)
    return EditorResult(success=False, error=f"Unknown command: {request.command}", code="invalid_request")


async def execute_editor_command(
    workspace_id: str,
    request: TextEditorRequest,
    *,
    repos: RepositoryFactory | None = None,
    publisher: EventPublisher | None = None,
) -> EditorResult:
    # The HTTP editor surface always writes locally; it is what RemoteMutationBackend calls.
    return await run_editor_command(LocalMutationBackend(repos, publisher=publisher), workspace_id, request)
