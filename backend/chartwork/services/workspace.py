from __future__ import annotations

import logging

from ..errors import WorkspaceError, WorkspaceNotFound
from ..models.workspace import ReplaceLogEntry, Workspace, WorkspaceFile
from ..repositories.factory import RepositoryFactory, repository_factory

logger = logging.getLogger(__name__)


async def get_workspace(
    workspace_id: str,
    revision: int | None = None,
    *,
    repos: RepositoryFactory | None = None,
) -> Workspace:
    """
    Charts and files of one revision, each file with its staged ``content_pending``.

    ``revision`` defaults to the workspace's current revision. Files whose chart is not
    part of that revision are returned as loose files.
    """
    r = repos or repository_factory()
    ws = await r.workspaces.find(workspace_id)
    if ws is None:
        raise WorkspaceNotFound(f"Workspace not found: {workspace_id}")
    rev = ws.current_revision_number if revision is None else int(revision)
    if rev < 0 or rev > ws.current_revision_number:
        raise WorkspaceError(f"Invalid revision {rev} (current: {ws.current_revision_number})")

    charts = await r.workspaces.list_charts(workspace_id, rev)
    by_chart: dict[str, list[WorkspaceFile]] = {chart.id: [] for chart in charts}
    loose: list[WorkspaceFile] = []
    for row in await r.files.list_revision(workspace_id, rev):
        if row.chart_id and row.chart_id in by_chart:
            by_chart[row.chart_id].append(row)
        else:
            loose.append(row)

    logger.debug(
        "workspace.read workspace=%s revision=%s charts=%s loose_files=%s",
        workspace_id,
        rev,
        len(charts),
        len(loose),
    )
    return ws.model_copy(
        update={
            "revision_number": rev,
            "charts": [chart.model_copy(update={"files": by_chart[chart.id]}) for chart in charts],
            "files": loose,
        }
    )


async def list_replace_log(
    workspace_id: str,
    *,
    file_path: str | None = None,
    found_only: bool = False,
    limit: int = 50,
    repos: RepositoryFactory | None = None,
) -> list[ReplaceLogEntry]:
    r = repos or repository_factory()
    return await r.replace_log.list_entries(
        workspace_id=workspace_id,
        file_path=file_path,
        found_only=found_only,
        limit=limit,
    )
