from __future__ import annotations


class WorkspaceError(RuntimeError):
    pass


class FileNotFound(WorkspaceError):
    pass


class FileAlreadyExists(WorkspaceError):
    pass


class NoMatch(WorkspaceError):
    pass


class Unauthorized(WorkspaceError):
    pass


class ClassificationTimeout(WorkspaceError):
    pass


class PublishFailure(WorkspaceError):
    pass


class WorkspaceNotFound(WorkspaceError):
    pass


class PlanNotFound(WorkspaceError):
    pass


class PlanStateError(WorkspaceError):
    pass


class PatchError(WorkspaceError):
    pass
