from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterable, Iterable, Protocol, Union

from ..core.request_context import reset_plan_id, set_plan_id
from ..errors import PlanStateError, Unauthorized, WorkspaceError
from ..models.plans import Plan, ToolStep
from ..models.workspace import EditorResult, TextEditorRequest
from ..repositories.factory import RepositoryFactory, repository_factory
from ..settings import settings
from .action_files import ActiveFileTracker
from .plan_files import PlanFileClassifier, classify_plan_files
from .plans import get_plan, transition_plan
from .realtime import EventPublisher
from .text_editor import FileMutationBackend, build_mutation_backend, normalize_file_path, run_editor_command

logger = logging.getLogger(__name__)


class ToolStepSource(Protocol):
    async def next_step(self, results: list[EditorResult] | None) -> ToolStep | None:
        """Returns the next step given the previous step's results, or None when the stream is done."""
        ...


class IterableStepSource:
    """Adapts a list, generator or async iterator of steps; keeps the results handed back."""

    def __init__(self, steps: Union[Iterable[ToolStep], AsyncIterable[ToolStep]]):
        self._steps = steps
        self._it = None
        self.results: list[list[EditorResult]] = []

    async def next_step(self, results: list[EditorResult] | None) -> ToolStep | None:
        if results is not None:
            self.results.append(results)
        if hasattr(self._steps, "__aiter__"):
            if self._it is None:
                self._it = self._steps.__aiter__()
            try:
                return await self._it.__anext__()
            except StopAsyncIteration:
                return None
        if self._it is None:
            self._it = iter(self._steps)
        return next(self._it, None)


def _tracker_path(path: str) -> str:
    try:
        return normalize_file_path(path)
    except WorkspaceError:
        return str(path or "").strip()


class PlanExecutor:
    def __init__(
        self,
        *,
        repos: RepositoryFactory | None = None,
        backend: FileMutationBackend | None = None,
        publisher: EventPublisher | None = None,
        classifier: PlanFileClassifier | None = None,
        classify_timeout_sec: float | None = None,
        max_steps: int | None = None,
    ):
        self._repos = repos or repository_factory()
        self._publisher = publisher
        self._backend = backend or build_mutation_backend(self._repos, publisher=publisher)
        self._classifier = classifier
        self._classify_timeout_sec = classify_timeout_sec
        self._max_steps = max(1, int(max_steps if max_steps is not None else settings.PLAN_MAX_TOOL_STEPS))

    @property
    def repos(self) -> RepositoryFactory:
        return self._repos

    async def execute(
        self,
        *,
        user_id: str | None,
        workspace_id: str,
        plan_id: str,
        steps: ToolStepSource,
        expected_files: list[str] | None = None,
    ) -> Plan:
        """
        Runs one plan to ``applied`` or ``review``.

        Entering ``applying`` is the per-plan mutex: a second concurrent run fails with
        ``PlanStateError`` before touching anything. Once the plan is ``applying`` any error,
        cancellation included, moves it to ``review`` and is re-raised.
        """
        if not str(user_id or "").strip():
            raise Unauthorized("Unauthorized")

        token = set_plan_id(plan_id)
        try:
            plan = await get_plan(workspace_id, plan_id, repos=self._repos)
            plan = await transition_plan(plan_id, "applying", repos=self._repos, publisher=self._publisher)
            logger.info("plan.execute.start workspace=%s plan=%s user=%s", workspace_id, plan_id, user_id)
            tracker = ActiveFileTracker(plan=plan, repos=self._repos, publisher=self._publisher)
            try:
                await self._run(tracker, steps, expected_files)
                done = await transition_plan(plan_id, "applied", repos=self._repos, publisher=self._publisher)
            except (Exception, asyncio.CancelledError) as err:
                logger.warning(
                    "plan.execute.failed workspace=%s plan=%s error=%s: %s",
                    workspace_id,
                    plan_id,
                    type(err).__name__,
                    err,
                )
                await asyncio.shield(self._abandon(tracker))
                raise
            logger.info("plan.execute.done workspace=%s plan=%s", workspace_id, plan_id)
            return done
        finally:
            reset_plan_id(token)

    async def _abandon(self, tracker: ActiveFileTracker) -> None:
        try:
            await tracker.release()
        except Exception:
            logger.exception("plan.execute.release_failed plan=%s", tracker.plan.id)
        await self._mark_review(tracker.plan.id)

    async def _mark_review(self, plan_id: str) -> None:
        try:
            await transition_plan(plan_id, "review", repos=self._repos, publisher=self._publisher)
        except PlanStateError as err:
            logger.info("plan.execute.review_skipped plan=%s reason=%s", plan_id, err)
        except Exception:
            logger.exception("plan.execute.review_failed plan=%s", plan_id)

    async def _run(self, tracker: ActiveFileTracker, steps: ToolStepSource, expected_files: list[str] | None) -> None:
        plan = tracker.plan
        if expected_files is None:
            expected_files = await classify_plan_files(
                plan.description,
                classifier=self._classifier,
                timeout_sec=self._classify_timeout_sec,
            )
        await tracker.seed([_tracker_path(p) for p in expected_files])

        results: list[EditorResult] | None = None
        step_no = 0
        while True:
            # The last step's results are always handed back, even when the cap is reached.
            step = await steps.next_step(results)
            if step is None:
                break
            if step_no >= self._max_steps:
                logger.warning("plan.execute.step_cap plan=%s max_steps=%s", plan.id, self._max_steps)
                break
            step_no += 1
            results = []
            for call in step.tool_calls:
                req = call.text_editor_request()
                if req is None:
                    logger.debug("plan.execute.skip_tool plan=%s tool=%s", plan.id, call.tool_name)
                    continue
                results.append(await self._apply(tracker, plan.workspace_id, req))
            logger.debug("plan.execute.step plan=%s step=%s calls=%s", plan.id, step_no, len(results))

    async def _apply(self, tracker: ActiveFileTracker, workspace_id: str, req: TextEditorRequest) -> EditorResult:
        path = _tracker_path(req.path)
        if req.command == "view":
            await tracker.begin_view(path)
            return await run_editor_command(self._backend, workspace_id, req)

        action = "create" if req.command == "create" else "update"
        await tracker.begin_edit(path, action)
        result = await run_editor_command(self._backend, workspace_id, req)
        if not result.success:
            logger.warning(
                "plan.execute.tool_unsuccessful plan=%s command=%s path=%s code=%s",
                tracker.plan.id,
                req.command,
                path,
                result.code,
            )
        await tracker.finish_edit(path, action)
        return result


async def execute_plan(
    user_id: str | None,
    workspace_id: str,
    plan_id: str,
    steps: ToolStepSource,
    *,
    executor: PlanExecutor | None = None,
    expected_files: list[str] | None = None,
) -> Plan:
    runner = executor or PlanExecutor()
    return await runner.execute(
        user_id=user_id,
        workspace_id=workspace_id,
        plan_id=plan_id,
        steps=steps,
        expected_files=expected_files,
    )


async def proceed_plan(
    user_id: str | None,
    workspace_id: str,
    plan_id: str,
    *,
    executor: PlanExecutor | None = None,
    repos: RepositoryFactory | None = None,
) -> Plan:
    """Replays a plan's buffered tool calls as a single step."""
    if not str(user_id or "").strip():
        raise Unauthorized("Unauthorized")
    runner = executor or PlanExecutor(repos=repos)
    plan = await get_plan(workspace_id, plan_id, repos=runner.repos)
    if plan.status != "review":
        raise PlanStateError(f"Plan is not in review status (current: {plan.status})")
    if not plan.buffered_tool_calls:
        raise PlanStateError("No buffered tool calls to execute")
    source = IterableStepSource([ToolStep(tool_calls=plan.buffered_tool_calls)])
    return await runner.execute(
        user_id=user_id,
        workspace_id=workspace_id,
        plan_id=plan_id,
        steps=source,
        expected_files=[row.path for row in plan.action_files],
    )
