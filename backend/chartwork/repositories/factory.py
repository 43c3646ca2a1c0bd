from __future__ import annotations

from dataclasses import dataclass

from ..db import get_db
from .interfaces import PlanRepository, ReplaceLogRepository, WorkspaceFileRepository, WorkspaceRepository
from .mongo_files import MongoWorkspaceFileRepository, MongoWorkspaceRepository
from .mongo_plans import MongoPlanRepository
from .mongo_replace_log import MongoReplaceLogRepository


@dataclass(frozen=True)
class RepositoryFactory:
    files: WorkspaceFileRepository
    workspaces: WorkspaceRepository
    plans: PlanRepository
    replace_log: ReplaceLogRepository


def repository_factory(db=None) -> RepositoryFactory:
    target_db = db if db is not None else get_db()
    return RepositoryFactory(
        files=MongoWorkspaceFileRepository(target_db),
        workspaces=MongoWorkspaceRepository(target_db),
        plans=MongoPlanRepository(target_db),
        replace_log=MongoReplaceLogRepository(target_db),
    )
