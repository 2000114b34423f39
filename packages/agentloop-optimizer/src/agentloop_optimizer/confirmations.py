"""Human confirmation of side-effecting tool calls held back by safe mode.

An approved action is executed through the gate's tool registry and its
outcome stored on the action (``executed`` or ``failed``). A gate built
without a registry only records the approval, leaving execution to the
caller.
"""
from __future__ import annotations

import dataclasses
import time
from typing import TYPE_CHECKING, Any

from agentloop_core.errors import PendingActionStateError, TraceNotFoundError
from agentloop_core.logging import get_logger
from agentloop_core.types import (
    FeedbackRecord,
    FeedbackType,
    PendingAction,
    PendingActionStatus,
)

from agentloop_optimizer.feedback import FeedbackCollector

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from agentloop_runtime.records import RecordStore

    ToolFn = Callable[[dict[str, Any]], Awaitable[Any]]

logger = get_logger("optimizer.confirmations")


class ConfirmationGate:
    """Resolves pending actions. Rejections count as negative feedback."""

    def __init__(
        self,
        records: RecordStore,
        collector: FeedbackCollector | None = None,
        *,
        tools: Mapping[str, ToolFn] | None = None,
    ) -> None:
        self._records = records
        self._collector = collector or FeedbackCollector(records)
        self._tools = dict(tools) if tools is not None else None

    async def resolve(
        self, action_id: str, approved: bool, user_id: str | None = None
    ) -> PendingAction:
        """Approve or reject a pending action; resolution is terminal.

        With a tool registry, approval runs the held call and the returned
        action is ``executed`` or ``failed``. A failed execution is recorded
        as rejection feedback.

        Raises:
            PendingActionNotFoundError: If the action does not exist.
            PendingActionStateError: If the action was already resolved.
        """
        target = PendingActionStatus.APPROVED if approved else PendingActionStatus.REJECTED

        def _resolve(action: PendingAction) -> PendingAction:
            if action.status is not PendingActionStatus.PENDING:
                msg = f"Pending action {action_id!r} already {action.status.value}"
                raise PendingActionStateError(msg)
            return dataclasses.replace(
                action, status=target, resolved_at=time.time(), resolved_by=user_id
            )

        action = await self._records.update_pending_action(action_id, _resolve)
        logger.info(
            "Pending action %s (%s) %s", action.id, action.tool_name, target.value
        )
        if not approved:
            await self._record_rejection(action)
            return action
        if self._tools is None:
            return action
        return await self._execute(action)

    async def _execute(self, action: PendingAction) -> PendingAction:
        tool = self._tools.get(action.tool_name) if self._tools else None
        result: str | None = None
        error: str | None = None
        if tool is None:
            error = f"No tool registered for {action.tool_name!r}"
        else:
            try:
                result = str(await tool(dict(action.tool_input)))
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"

        status = PendingActionStatus.FAILED if error else PendingActionStatus.EXECUTED

        def _record(current: PendingAction) -> PendingAction:
            return dataclasses.replace(current, status=status, result=result, error=error)

        action = await self._records.update_pending_action(action.id, _record)
        if error:
            logger.warning(
                "Approved action %s (%s) failed: %s", action.id, action.tool_name, error
            )
            await self._record_rejection(action)
        else:
            logger.info("Approved action %s (%s) executed", action.id, action.tool_name)
        return action

    async def _record_rejection(self, action: PendingAction) -> None:
        metadata: dict[str, Any] = {"pending_action_id": action.id, "tool": action.tool_name}
        if action.error:
            metadata["execution_error"] = action.error
        record = FeedbackRecord(
            agent_id=action.agent_id,
            trace_id=action.trace_id,
            type=FeedbackType.APPROVAL_REJECT,
            conversation_id=action.conversation_id,
            user_id=action.resolved_by or action.user_id,
            original_output=f"{action.tool_name}: {action.tool_input}",
            metadata=metadata,
        )
        try:
            await self._collector.record_feedback(record)
        except TraceNotFoundError:
            logger.warning(
                "Trace %s for action %s is gone; feedback not recorded",
                action.trace_id, action.id,
            )

    async def list_pending(self, agent_id: str) -> list[PendingAction]:
        """Unresolved actions of an agent, oldest first."""
        actions = await self._records.list_pending_actions(agent_id)
        return [a for a in actions if a.status is PendingActionStatus.PENDING]
