from __future__ import annotations

from datetime import datetime, timedelta
import logging

from assessor.collaborators import NotificationSink, TaskCreator, TaskRequest
from assessor.errors import AssessmentError, NoAssignees
from assessor.framework import Category, Question, Section

logger = logging.getLogger("assessor.tasks")


def build_task_requests(
    *,
    assessment_id: str,
    section: Section,
    category: Category,
    question: Question,
    assignees: list[str],
    assigned_by: str,
    now: datetime,
    due_days: int,
    estimated_hours: int,
) -> list[TaskRequest]:
    if not assignees:
        raise NoAssignees(question.id)
    label = question.text or question.id
    return [
        TaskRequest(
            assessment_id=assessment_id,
            question_id=question.id,
            title=f"Complete {label}",
            description=f"Answer and provide evidence for: {label}",
            priority="high" if question.priority == "high" else "medium",
            assigned_to=[user_id],
            assigned_by=assigned_by,
            due_date=now + timedelta(days=due_days),
            estimated_hours=estimated_hours,
            section_name=section.name,
            category_name=category.name,
            tags=["assessment", "auto-generated"],
        )
        for user_id in assignees
    ]


def create_tasks_for_question(
    creator: TaskCreator,
    notifications: NotificationSink,
    *,
    assessment_id: str,
    section: Section,
    category: Category,
    question: Question,
    assignees: list[str],
    assigned_by: str,
    now: datetime,
    due_days: int,
    estimated_hours: int,
) -> list[dict[str, object]]:
    """Create one task per assignee; precondition and collaborator failures become notifications."""
    try:
        requests = build_task_requests(
            assessment_id=assessment_id,
            section=section,
            category=category,
            question=question,
            assignees=assignees,
            assigned_by=assigned_by,
            now=now,
            due_days=due_days,
            estimated_hours=estimated_hours,
        )
    except NoAssignees:
        notifications.notify("warning", "Please assign team members to this question first")
        return []

    created: list[dict[str, object]] = []
    try:
        for request in requests:
            created.append(creator.create_task(request))
    except (AssessmentError, OSError) as exc:
        logger.warning(
            "task_creation_failed",
            extra={
                "event": "task_creation_failed",
                "question_id": requests[0].question_id,
                "created_before_failure": len(created),
                "error": str(exc),
            },
        )
        notifications.notify("error", f"Failed to create tasks: {exc}")
        return created

    notifications.notify("success", f"Created {len(created)} task(s) for this question")
    return created
