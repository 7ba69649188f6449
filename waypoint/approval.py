"""Approval and human-task service.

Tasks move ``pending -> completed`` or ``pending -> rejected`` exactly once.
Delegation and escalation are independent audit trails that may be applied
any number of times while a task is pending; neither touches
``assigned_to``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .contracts import ApprovalChain, TaskStatus, WorkflowTask, as_utc, utcnow
from .errors import InvalidTaskStateError, TaskNotFoundError
from .persistence.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class ApprovalService:
    """Manage the lifecycle of human tasks through a repository."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self.repository = repository

    @staticmethod
    def build_task(
        name: str,
        assigned_to: Optional[str] = None,
        instance_id: Optional[str] = None,
        description: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        due_date: Optional[datetime] = None,
        auto_escalate: bool = False,
        escalation_target: Optional[str] = None,
    ) -> WorkflowTask:
        """Construct a new ``pending`` task without storing it."""
        return WorkflowTask(
            instance_id=instance_id,
            name=name,
            description=description,
            assigned_to=assigned_to,
            data=dict(data or {}),
            due_date=due_date,
            auto_escalate=auto_escalate,
            escalation_target=escalation_target,
        )

    async def create_task(
        self,
        name: str,
        assigned_to: Optional[str] = None,
        instance_id: Optional[str] = None,
        description: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        due_date: Optional[datetime] = None,
        auto_escalate: bool = False,
        escalation_target: Optional[str] = None,
    ) -> WorkflowTask:
        """Create and store a new ``pending`` task."""
        task = self.build_task(
            name,
            assigned_to=assigned_to,
            instance_id=instance_id,
            description=description,
            data=data,
            due_date=due_date,
            auto_escalate=auto_escalate,
            escalation_target=escalation_target,
        )
        await self.repository.save_task(task)
        logger.debug(f"Created task {task.id} '{name}' for {assigned_to}")
        return task

    async def complete_task(
        self, task_id: str, result: Optional[Dict[str, Any]] = None
    ) -> WorkflowTask:
        return await self._resolve(task_id, TaskStatus.COMPLETED, result)

    async def reject_task(
        self, task_id: str, result: Optional[Dict[str, Any]] = None
    ) -> WorkflowTask:
        return await self._resolve(task_id, TaskStatus.REJECTED, result)

    async def delegate_task(
        self,
        task_id: str,
        delegate_to: str,
        delegated_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> WorkflowTask:
        """Hand a pending task to someone else.

        ``original_assignee`` is recorded on the first delegation only, so
        re-delegating keeps the first owner for audit.
        """
        task = await self._pending(task_id, "delegate")
        if task.original_assignee is None:
            task.original_assignee = task.assigned_to
        task.delegated_to = delegate_to
        task.delegated_by = delegated_by
        task.delegated_at = utcnow()
        task.delegation_reason = reason
        await self.repository.update_task(task)
        logger.info(f"Task {task.id} delegated to {delegate_to} by {delegated_by}")
        return task

    async def escalate_task(
        self,
        task_id: str,
        escalate_to: str,
        reason: Optional[str] = None,
        escalated_by: Optional[str] = None,
    ) -> WorkflowTask:
        task = await self._pending(task_id, "escalate")
        task.escalated_to = escalate_to
        task.escalated_by = escalated_by
        task.escalated_at = utcnow()
        task.escalation_reason = reason
        await self.repository.update_task(task)
        logger.info(f"Task {task.id} escalated to {escalate_to}: {reason}")
        return task

    async def check_auto_escalation(
        self, now: Optional[datetime] = None
    ) -> List[WorkflowTask]:
        """Escalate overdue pending tasks that opted into auto-escalation.

        Intended to be called from a scheduler; ``now`` defaults to the
        current UTC time. Tasks already escalated to their target are left
        alone so repeated sweeps are harmless.
        """
        now = as_utc(now) if now is not None else utcnow()
        escalated: List[WorkflowTask] = []
        for task in await self.repository.list_tasks(status=TaskStatus.PENDING):
            if not task.auto_escalate or not task.due_date or not task.escalation_target:
                continue
            if task.escalated_to == task.escalation_target:
                continue
            if now <= task.due_date:
                continue
            escalated.append(
                await self.escalate_task(
                    task.id,
                    task.escalation_target,
                    reason=(
                        "Automatic escalation - task overdue since "
                        f"{task.due_date.isoformat()}"
                    ),
                    escalated_by="system",
                )
            )
        if escalated:
            logger.info(f"Auto-escalated {len(escalated)} overdue task(s)")
        return escalated

    # ------------------------------------------------------------------
    # Approval chains
    async def create_approval_chain(
        self, instance_id: str, chain: ApprovalChain, workflow_name: str
    ) -> List[WorkflowTask]:
        """Create one pending task per approval level."""
        now = utcnow()
        tasks: List[WorkflowTask] = []
        for level in chain.levels:
            due_date = None
            if level.escalation_timeout is not None:
                due_date = now + timedelta(seconds=level.escalation_timeout)
            task = self.build_task(
                f"{workflow_name}_approval_level_{level.level}",
                instance_id=instance_id,
                description=level.description
                or f"Approval required at level {level.level}",
                assigned_to=level.approver,
                data={"approval_level": level.level, "required": level.required},
                auto_escalate=level.escalation_target is not None,
                escalation_target=level.escalation_target,
                due_date=due_date,
            )
            await self.repository.save_task(task)
            tasks.append(task)
        return tasks

    async def is_approval_chain_complete(self, instance_id: str) -> bool:
        tasks = await self.repository.get_instance_tasks(instance_id)
        required = [t for t in tasks if t.data.get("required", True) is not False]
        return all(t.status == TaskStatus.COMPLETED for t in required)

    async def has_rejected_approval(self, instance_id: str) -> bool:
        tasks = await self.repository.get_instance_tasks(instance_id)
        return any(t.status == TaskStatus.REJECTED for t in tasks)

    async def get_approval_history(self, instance_id: str) -> List[WorkflowTask]:
        """Tasks ordered by completion time; open tasks last."""
        tasks = await self.repository.get_instance_tasks(instance_id)
        done = sorted((t for t in tasks if t.completed_at), key=lambda t: t.completed_at)
        return done + [t for t in tasks if not t.completed_at]

    # ------------------------------------------------------------------
    async def _get(self, task_id: str) -> WorkflowTask:
        task = await self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def _pending(self, task_id: str, operation: str) -> WorkflowTask:
        task = await self._get(task_id)
        if task.status != TaskStatus.PENDING:
            raise InvalidTaskStateError(
                f"Cannot {operation} task in status: {task.status.value}",
                status=task.status.value,
            )
        return task

    async def _resolve(
        self,
        task_id: str,
        status: TaskStatus,
        result: Optional[Dict[str, Any]],
    ) -> WorkflowTask:
        verb = "complete" if status == TaskStatus.COMPLETED else "reject"
        task = await self._pending(task_id, verb)
        task.status = status
        task.completed_at = utcnow()
        task.result = dict(result) if result is not None else None
        await self.repository.update_task(task)
        logger.info(f"Task {task.id} {status.value} by {task.effective_assignee}")
        return task
