"""Operator CLI.

Each command builds its own engine and orchestrator, runs one async action
and disposes of everything before exiting. Commands that schedule
provisioning wait for the runner to drain, since the process would
otherwise exit with the run still in flight.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
import json
from typing import Any

from rich.console import Console
from rich.table import Table
import typer

from labplatform.config import Settings, get_settings
from labplatform.database import create_engine, create_session_maker, init_models
from labplatform.errors import LabPlatformError
from labplatform.ipam import IPAllocator
from labplatform.logging_config import setup_logging
from labplatform.orchestrator import RequestOrchestrator
from labplatform.schemas import IPAllocationDTO, ResourceDTO, ResourceRequestDTO

app = typer.Typer(help="Resource request provisioning")
request_app = typer.Typer(help="Inspect and act on resource requests")
ipam_app = typer.Typer(help="IP pool allocations")
app.add_typer(request_app, name="request")
app.add_typer(ipam_app, name="ipam")

console = Console()


@app.callback()
def callback():
    """
    labplatform operator CLI
    """
    setup_logging()


@asynccontextmanager
async def orchestrator_context(settings: Settings | None = None):
    """Yield a RequestOrchestrator bound to a fresh engine."""
    settings = settings or get_settings()
    engine = create_engine(settings.database_url)
    orchestrator = RequestOrchestrator(create_session_maker(engine), settings)
    try:
        yield orchestrator
    finally:
        await orchestrator.runner.shutdown()
        await engine.dispose()


def _run(action: Callable[[], Awaitable[Any]]) -> Any:
    try:
        return asyncio.run(action())
    except LabPlatformError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from None


def _print_request(data: dict[str, Any], json_output: bool) -> None:
    if json_output:
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    for key in (
        "id",
        "title",
        "provider",
        "environment",
        "status",
        "requester_id",
        "approver_id",
        "reason",
        "failed_stage",
        "error_message",
        "resource_id",
    ):
        if data.get(key) is not None:
            table.add_row(key, str(data[key]))
    console.print(table)


# request commands


async def show_request_command(request_id: str) -> dict[str, Any]:
    async with orchestrator_context() as orchestrator:
        request = await orchestrator.get_request(request_id)
        data = ResourceRequestDTO.model_validate(request).model_dump(mode="json")
        if request.resource:
            data["resource"] = ResourceDTO.model_validate(request.resource).model_dump(mode="json")
        return data


async def approve_request_command(
    request_id: str, approver_id: str, reason: str | None
) -> dict[str, Any]:
    async with orchestrator_context() as orchestrator:
        await orchestrator.approve(request_id, approver_id, reason)
        await orchestrator.runner.drain()
        request = await orchestrator.get_request(request_id)
        return ResourceRequestDTO.model_validate(request).model_dump(mode="json")


async def reject_request_command(request_id: str, approver_id: str, reason: str) -> dict[str, Any]:
    async with orchestrator_context() as orchestrator:
        request = await orchestrator.reject(request_id, approver_id, reason)
        return ResourceRequestDTO.model_validate(request).model_dump(mode="json")


async def retry_request_command(request_id: str, user_id: str) -> dict[str, Any]:
    async with orchestrator_context() as orchestrator:
        await orchestrator.retry(request_id, user_id)
        await orchestrator.runner.drain()
        request = await orchestrator.get_request(request_id)
        return ResourceRequestDTO.model_validate(request).model_dump(mode="json")


async def delete_request_command(request_id: str, user_id: str) -> None:
    async with orchestrator_context() as orchestrator:
        await orchestrator.delete_request(request_id, user_id)


async def destroy_resource_command(request_id: str, user_id: str) -> dict[str, Any]:
    async with orchestrator_context() as orchestrator:
        resource = await orchestrator.destroy_resource(request_id, user_id)
        return ResourceDTO.model_validate(resource).model_dump(mode="json")


@request_app.command("show")
def show(
    request_id: str,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show a resource request"""
    data = _run(lambda: show_request_command(request_id))
    _print_request(data, json_output)
    if not json_output and data.get("resource"):
        resource = data["resource"]
        console.print(
            f"Resource: [cyan]{resource['name']}[/cyan] "
            f"({resource['status']}) ip=[magenta]{resource['ip_address'] or '-'}[/magenta]"
        )


@request_app.command("approve")
def approve(
    request_id: str,
    approver: str = typer.Option(..., "--approver", "-a"),
    reason: str | None = typer.Option(None, "--reason", "-r"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Approve a pending request and run provisioning"""
    data = _run(lambda: approve_request_command(request_id, approver, reason))
    if not json_output:
        console.print(f"[bold green]✓ Request approved[/bold green] -> {data['status']}")
    _print_request(data, json_output)


@request_app.command("reject")
def reject(
    request_id: str,
    approver: str = typer.Option(..., "--approver", "-a"),
    reason: str = typer.Option(..., "--reason", "-r"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Reject a pending request"""
    data = _run(lambda: reject_request_command(request_id, approver, reason))
    if not json_output:
        console.print("[bold yellow]Request rejected[/bold yellow]")
    _print_request(data, json_output)


@request_app.command("retry")
def retry(
    request_id: str,
    user: str = typer.Option(..., "--user", "-u"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Retry a failed request"""
    data = _run(lambda: retry_request_command(request_id, user))
    if not json_output:
        console.print(f"[bold green]✓ Retry finished[/bold green] -> {data['status']}")
    _print_request(data, json_output)


@request_app.command("delete")
def delete(
    request_id: str,
    user: str = typer.Option(..., "--user", "-u"),
):
    """Delete a pending, rejected or failed request"""
    _run(lambda: delete_request_command(request_id, user))
    console.print(f"[bold green]✓ Request {request_id} deleted[/bold green]")


@request_app.command("destroy")
def destroy(
    request_id: str,
    user: str = typer.Option(..., "--user", "-u"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Destroy the resource of a completed request"""
    data = _run(lambda: destroy_resource_command(request_id, user))
    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return
    console.print(f"[bold green]✓ Resource {data['name']} destroyed[/bold green]")


# ipam commands


async def available_command(pool_id: str) -> int:
    engine = create_engine()
    try:
        return await IPAllocator(create_session_maker(engine)).get_available_count(pool_id)
    finally:
        await engine.dispose()


async def allocate_command(pool_id: str, address: str | None, hostname: str | None) -> dict:
    engine = create_engine()
    try:
        allocator = IPAllocator(create_session_maker(engine))
        if address:
            allocation = await allocator.allocate_specific(pool_id, address, hostname=hostname)
        else:
            allocation = await allocator.allocate_next_available(pool_id, hostname=hostname)
        return IPAllocationDTO.model_validate(allocation).model_dump(mode="json")
    finally:
        await engine.dispose()


async def release_command(allocation_id: str) -> dict:
    engine = create_engine()
    try:
        allocation = await IPAllocator(create_session_maker(engine)).release(allocation_id)
        return IPAllocationDTO.model_validate(allocation).model_dump(mode="json")
    finally:
        await engine.dispose()


@ipam_app.command("available")
def available(pool_id: str):
    """Count free addresses in a pool"""
    count = _run(lambda: available_command(pool_id))
    typer.echo(count)


@ipam_app.command("allocate")
def allocate(
    pool_id: str,
    address: str | None = typer.Option(None, "--address", help="Reserve this exact address"),
    hostname: str | None = typer.Option(None, "--hostname"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Reserve the next free (or a specific) address"""
    data = _run(lambda: allocate_command(pool_id, address, hostname))
    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return
    console.print(
        f"[bold green]✓ Reserved[/bold green] [cyan]{data['ip_address']}[/cyan] (id {data['id']})"
    )


@ipam_app.command("release")
def release(allocation_id: str):
    """Return an address to its pool"""
    data = _run(lambda: release_command(allocation_id))
    console.print(f"[bold green]✓ Released[/bold green] [cyan]{data['ip_address']}[/cyan]")


# schema


async def init_db_command() -> None:
    engine = create_engine()
    try:
        await init_models(engine)
    finally:
        await engine.dispose()


@app.command("init-db")
def init_db():
    """Create database tables"""
    _run(init_db_command)
    console.print("[bold green]✓ Database initialised[/bold green]")
