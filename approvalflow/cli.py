"""Command line interface for managing approval workflows."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Awaitable, List, Optional, TypeVar

import typer
from pydantic import ValidationError as PydanticValidationError

from .collaborators import InMemoryDocumentStore
from .config import load_config
from .engine import ApprovalEngine
from .exceptions import ApprovalflowError
from .notifications import get_dispatcher
from .persistence import get_repository
from .persistence.models import ApprovalInstance
from .queries import StatsPeriod
from .templates import build_from_template, list_templates

app = typer.Typer(help="CLI for approval workflows")

workflow_app = typer.Typer(help="Commands for managing workflow definitions")
approval_app = typer.Typer(help="Commands for submitting and deciding approvals")

app.add_typer(workflow_app, name="workflow")
app.add_typer(approval_app, name="approval")

T = TypeVar("T")


@app.callback()
def main() -> None:
    """Approvalflow CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _engine(documents: Optional[InMemoryDocumentStore] = None) -> ApprovalEngine:
    config = load_config()
    return ApprovalEngine(
        documents=documents or InMemoryDocumentStore(),
        repository=get_repository(),
        notifier=get_dispatcher(config=config),
        config=config,
    )


def _run(coro: Awaitable[T]) -> T:
    try:
        return asyncio.run(coro)
    except ApprovalflowError as exc:
        typer.secho(f"{exc.error_code}: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _parse_step(raw: str) -> dict:
    name, sep, approvers = raw.partition(":")
    if not sep:
        raise typer.BadParameter(f"Step {raw!r} must look like 'Name:alice,bob'")
    return {
        "name": name.strip(),
        "approvers": [a.strip() for a in approvers.split(",") if a.strip()],
    }


def _echo_instance(instance: ApprovalInstance) -> None:
    snapshot = instance.workflow_snapshot
    typer.echo(
        f"Approval {instance.id}: {instance.status.value} "
        f"(document {instance.document_id}, version {instance.version})"
    )
    typer.echo(f"Workflow: {snapshot.name} revision {snapshot.revision}")
    if instance.current_step is not None:
        step = instance.current_step
        typer.echo(
            f"Step {instance.current_step_index + 1}/{snapshot.step_count}: "
            f"{step.name} ({', '.join(sorted(step.approvers))})"
        )
    if instance.decided_by:
        typer.echo(f"Decided by {instance.decided_by} at {instance.decided_at}")


@workflow_app.command("create")
def workflow_create(
    name: str,
    step: List[str] = typer.Option(
        [], "--step", help="Step as 'Name:alice,bob'; repeat for each step"
    ),
    template: Optional[str] = typer.Option(
        None, help="Build from a template; each --approvers fills one step"
    ),
    approvers: List[str] = typer.Option(
        [], "--approvers", help="Comma separated approvers for a template step"
    ),
    require_all: Optional[bool] = typer.Option(
        None,
        "--require-all/--any-approver",
        help="Every approver of a step must approve; overrides the template rule",
    ),
    threshold: Optional[str] = typer.Option(
        None, help="Auto-approve at or below this amount; overrides the template threshold"
    ),
    tenant: str = "default",
    description: str = "",
) -> None:
    """
    Create a workflow definition.

    Example:
        approvalflow workflow create "Invoices" --step "Manager:mgr" --step "Finance:cfo"
        approvalflow workflow create "Small spend" --template amount_based \\
            --approvers mgr --approvers cfo
    """
    if template:
        if step:
            raise typer.BadParameter("--step cannot be combined with --template", param_hint="--step")
        definition = _build_template(template, name, approvers, tenant, description).model_dump()
        if require_all is not None:
            definition["require_all_approvers"] = require_all
        if threshold is not None:
            definition["auto_approve_threshold"] = threshold
    else:
        definition = {
            "tenant_id": tenant,
            "name": name,
            "description": description,
            "steps": [_parse_step(raw) for raw in step],
            "require_all_approvers": bool(require_all),
            "auto_approve_threshold": threshold,
        }
    workflow = _run(_engine().create_workflow(definition))
    typer.echo(f"Created workflow {workflow.id}")


def _build_template(
    template: str, name: str, approvers: List[str], tenant: str, description: str
):
    try:
        return build_from_template(
            template,
            name,
            [[a.strip() for a in raw.split(",") if a.strip()] for raw in approvers],
            tenant_id=tenant,
            description=description or None,
        )
    except ApprovalflowError as exc:
        typer.secho(f"{exc.error_code}: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("list")
def workflow_list(tenant: Optional[str] = None, active_only: bool = False) -> None:
    """List workflow definitions, newest first."""
    engine = _engine()
    if active_only:
        workflows = _run(engine.list_active_workflows(tenant))
    else:
        workflows = _run(engine.workflows.list(tenant))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        state = "active" if wf.is_active else "inactive"
        typer.echo(f"{wf.id}\t{wf.name}\t{state}\t{len(wf.steps)} steps")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show a workflow definition with its steps."""
    wf = _run(_engine().get_workflow(workflow_id))
    typer.echo(f"Workflow {wf.id}: {wf.name} (revision {wf.revision})")
    if wf.auto_approve_threshold is not None:
        typer.echo(f"Auto-approve at or below: {wf.auto_approve_threshold}")
    if wf.require_all_approvers:
        typer.echo("All approvers of a step must approve")
    for index, step in enumerate(wf.steps, start=1):
        typer.echo(f"{index}. {step.name}: {', '.join(sorted(step.approvers))}")


@workflow_app.command("deactivate")
def workflow_deactivate(workflow_id: str) -> None:
    """Stop new submissions against a workflow."""
    wf = _run(_engine().deactivate_workflow(workflow_id))
    typer.echo(f"Deactivated workflow {wf.id}")


@workflow_app.command("delete")
def workflow_delete(workflow_id: str) -> None:
    """Delete a workflow that has no pending approvals."""
    _run(_engine().delete_workflow(workflow_id))
    typer.echo(f"Deleted workflow {workflow_id}")


@workflow_app.command("templates")
def workflow_templates() -> None:
    """List the built-in workflow templates."""
    for template in list_templates():
        steps = " -> ".join(step.name for step in template.steps)
        typer.echo(f"{template.id}\t{template.name}\t{steps}")


@approval_app.command("submit")
def approval_submit(
    document_id: str,
    workflow_id: str,
    submitted_by: str = typer.Option(..., "--by", help="Submitting principal"),
    amount: str = typer.Option(..., help="Document total"),
    notes: str = "",
) -> None:
    """Submit a document for approval under a workflow."""
    try:
        total = Decimal(amount)
    except InvalidOperation:
        raise typer.BadParameter(f"Amount {amount!r} is not a number", param_hint="--amount")
    documents = InMemoryDocumentStore({document_id: total})
    instance = _run(
        _engine(documents).submit_for_approval(document_id, workflow_id, submitted_by, notes)
    )
    _echo_instance(instance)


@approval_app.command("act")
def approval_act(
    instance_id: str,
    decision: str,
    actor: str = typer.Option(..., "--by", help="Deciding principal"),
    comments: str = "",
    expected_version: Optional[int] = typer.Option(
        None, "--version", help="Version last seen; stale versions are refused"
    ),
) -> None:
    """
    Approve or reject the current step of an approval.

    Example:
        approvalflow approval act 3f2c... approve --by mgr --version 0
    """
    instance = _run(
        _engine().act(instance_id, actor, decision.lower(), comments, expected_version)
    )
    _echo_instance(instance)


@approval_app.command("cancel")
def approval_cancel(
    instance_id: str,
    actor: str = typer.Option(..., "--by", help="Submitting principal"),
    reason: str = "",
) -> None:
    """Withdraw a pending approval."""
    instance = _run(_engine().cancel(instance_id, actor, reason))
    _echo_instance(instance)


@approval_app.command("pending")
def approval_pending(actor: str, tenant: Optional[str] = None) -> None:
    """List approvals waiting on ``actor``."""
    instances = _run(_engine().list_pending_for(actor, tenant))
    if not instances:
        typer.echo("No pending approvals")
        return
    for instance in instances:
        step = instance.current_step
        typer.echo(f"{instance.id}\t{instance.document_id}\t{step.name}\tv{instance.version}")


@approval_app.command("show")
def approval_show(instance_id: str) -> None:
    """Show an approval and its recorded actions."""
    engine = _engine()
    instance = _run(engine.get_instance(instance_id))
    _echo_instance(instance)
    for action in _run(engine.list_actions(instance_id)):
        typer.echo(
            f"- step {action.step_index + 1}: {action.actor_id} {action.decision.value}"
            + (f" ({action.comments})" if action.comments else "")
        )


@approval_app.command("history")
def approval_history(document_id: str) -> None:
    """Show every approval a document went through, newest first."""
    history = _run(_engine().get_history(document_id))
    if not history:
        typer.echo("No approval history")
        return
    for entry in history:
        instance = entry.instance
        typer.echo(
            f"{instance.id}\t{instance.status.value}\t{instance.submitted_by}\t"
            f"{instance.submitted_at.isoformat()}\t{len(entry.actions)} actions"
        )


@app.command("stats")
def stats(
    tenant: Optional[str] = None,
    start: Optional[datetime] = typer.Option(
        None, help="Only count approvals submitted at or after this time (UTC)"
    ),
    end: Optional[datetime] = typer.Option(
        None, help="Only count approvals submitted at or before this time (UTC)"
    ),
) -> None:
    """Show approval counts and average decision time."""
    try:
        period = StatsPeriod(start=start, end=end)
    except PydanticValidationError:
        raise typer.BadParameter("--start must not be after --end", param_hint="--start")
    result = _run(_engine().get_stats(tenant, period))
    typer.echo(f"Total: {result.total_count}")
    typer.echo(f"Pending: {result.pending_count}")
    typer.echo(f"Approved: {result.approved_count} ({result.auto_approved_count} automatic)")
    typer.echo(f"Rejected: {result.rejected_count}")
    typer.echo(f"Cancelled: {result.cancelled_count}")
    if result.average_decision_latency is not None:
        typer.echo(f"Average decision time: {result.average_decision_latency}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
