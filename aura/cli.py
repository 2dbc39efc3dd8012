"""Command line interface for inspecting tickets and workflow checkpoints."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from aura.checkpoint import get_checkpoint_store
from aura.config import configure_logging, load_config
from aura.contracts import WorkflowState
from aura.db import SQLTicketStore, open_ticket_service
from aura.errors import TicketNotFoundError
from aura.tickets import Ticket, TicketService

app = typer.Typer(help="CLI for Aura tickets and workflow state")

tickets_app = typer.Typer(help="Inspect tickets")
checkpoints_app = typer.Typer(help="Inspect workflow checkpoints")

app.add_typer(tickets_app, name="tickets")
app.add_typer(checkpoints_app, name="checkpoints")

T = TypeVar("T")


@app.callback()
def main() -> None:
    """Aura CLI entry point."""
    configure_logging(load_config())


def _with_tickets(fn: Callable[[TicketService], Awaitable[T]]) -> T:
    async def runner() -> T:
        service = await open_ticket_service()
        try:
            return await fn(service)
        finally:
            if isinstance(service.store, SQLTicketStore):
                await service.store.db.dispose()

    return asyncio.run(runner())


@tickets_app.command("list")
def tickets_list(
    status: Optional[str] = typer.Option(None, help="Only show tickets with this status"),
) -> None:
    """
    List tickets with their status.

    Example:
        aura tickets list
        aura tickets list --status awaiting_input
    """
    tickets = _with_tickets(lambda service: service.list(status))
    if not tickets:
        typer.echo("No tickets found")
        return
    for ticket in tickets:
        typer.echo(f"{ticket.id}\t{ticket.status}\t{ticket.title}")


def _fetch_ticket(ticket_id: str) -> Optional[Ticket]:
    async def fetch(service: TicketService) -> Optional[Ticket]:
        try:
            return await service.get(ticket_id)
        except TicketNotFoundError:
            return None

    return _with_tickets(fetch)


@tickets_app.command("show")
def tickets_show(ticket_id: str) -> None:
    """
    Show a ticket with its plan, budget and pending human input.

    Example:
        aura tickets show 3f2c...
    """
    ticket = _fetch_ticket(ticket_id)
    if ticket is None:
        typer.echo("Ticket not found")
        raise typer.Exit(code=1)

    typer.echo(f"Ticket {ticket.id}: {ticket.status}")
    typer.echo(f"Title: {ticket.title}")
    typer.echo(f"Priority: {ticket.priority}")
    typer.echo(f"Turns: {ticket.current_turn}/{ticket.max_turns}")
    usage = ticket.token_usage
    typer.echo(
        f"Tokens: {usage.total_tokens} (input {usage.input_tokens}, output {usage.output_tokens})"
    )
    if ticket.plan is not None:
        approval = (
            f"approved by {ticket.plan.approved_by}"
            if ticket.plan.is_approved
            else "not approved"
        )
        typer.echo(f"Plan ({approval}): {ticket.plan.summary}")
        for step in ticket.plan.steps:
            typer.echo(f"- {step.index + 1}. {step.title}: {step.status}")
    if ticket.pending_approval is not None:
        typer.echo(f"Pending approval: {ticket.pending_approval.description}")
    if ticket.pending_question is not None:
        typer.echo(f"Pending question: {ticket.pending_question.question}")


@checkpoints_app.command("list")
def checkpoints_list(
    ticket_id: str,
    limit: Optional[int] = typer.Option(None, help="Maximum number of checkpoints"),
) -> None:
    """
    List stored checkpoints of a ticket, newest first.

    Example:
        aura checkpoints list 3f2c... --limit 5
    """
    store = get_checkpoint_store()
    checkpoints = asyncio.run(store.list(ticket_id, limit=limit))
    if not checkpoints:
        typer.echo("No checkpoints found")
        return
    for cp in checkpoints:
        source = cp.metadata.get("source", "")
        phase = cp.snapshot.get("phase", "")
        typer.echo(f"{cp.checkpoint_id}\t{source}\t{phase}\t{cp.created_at.isoformat()}")


@checkpoints_app.command("show")
def checkpoints_show(
    ticket_id: str,
    checkpoint: Optional[str] = typer.Option(
        None, help="Checkpoint id (default: the latest)"
    ),
) -> None:
    """
    Show the workflow state stored in a checkpoint.

    Example:
        aura checkpoints show 3f2c...
        aura checkpoints show 3f2c... --checkpoint 9ab1...
    """
    store = get_checkpoint_store()
    cp = asyncio.run(store.get_latest(ticket_id, checkpoint))
    if cp is None:
        typer.echo("Checkpoint not found")
        raise typer.Exit(code=1)

    state = WorkflowState.from_snapshot(cp.snapshot)
    typer.echo(f"Checkpoint {cp.checkpoint_id} (parent {cp.parent_checkpoint_id})")
    typer.echo(f"Phase: {state.phase}")
    if state.waiting_for:
        typer.echo(f"Waiting for: {state.waiting_for}")
    typer.echo(f"Current step: {state.current_step_index}")
    typer.echo(f"Messages: {len(state.messages)}")
    typer.echo(f"Tokens: {state.token_usage.total_tokens}")
    if state.error:
        typer.echo(f"Error: {state.error}")
    if cp.pending_writes:
        typer.echo(f"Pending writes: {len(cp.pending_writes)}")


@checkpoints_app.command("purge")
def checkpoints_purge(
    ticket_id: str,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """
    Delete every checkpoint of a ticket. This cannot be undone.

    Example:
        aura checkpoints purge 3f2c... --yes
    """
    if not yes:
        typer.confirm(f"Delete all checkpoints for {ticket_id}?", abort=True)
    store = get_checkpoint_store()
    asyncio.run(store.delete_all(ticket_id))
    typer.echo(f"Deleted checkpoints for {ticket_id}")


if __name__ == "__main__":
    app()
