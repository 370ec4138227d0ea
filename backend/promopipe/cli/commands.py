"""CLI commands for promopipe using Typer and Rich.

Implements the CLI commands:
- generate: Run a generation from a URL or description, printing events
- continue: Render from an approved script file
- create-user: Create a local user with a credit balance (for the API)
- create-project: Create an empty project to checkpoint runs into
- status: Show detailed project information
- list: List all projects in a table
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import select

from promopipe import configure_logging
from promopipe.db import async_session, init_database
from promopipe.db.models import PipelineRun, Project, User
from promopipe.errors import PipelineInputError
from promopipe.orchestrator.checkpoint import ProjectLocks
from promopipe.orchestrator.events import EventChannel, GenerationEvent
from promopipe.orchestrator.pipeline import (
    PipelineOrchestrator,
    build_continue_state,
    build_generate_state,
)
from promopipe.orchestrator.state import PipelineState, Preferences
from promopipe.pipeline.defaults import default_stages
from promopipe.schemas.script import VideoScript

app = typer.Typer(name="promopipe", help="Product description or URL to short-form promo video")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    configure_logging(logging.DEBUG if verbose else logging.WARNING)


@app.command()
def generate(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Product page URL"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Product description"),
    style: str = typer.Option("professional", "--style", "-s", help="professional | playful | minimal | bold"),
    duration: Optional[int] = typer.Option(None, "--duration", help="Target duration in seconds"),
    project_id: Optional[str] = typer.Option(None, "--project", "-p", help="Project UUID to checkpoint into"),
):
    """Generate a promo video from a URL or description.

    Runs analysis, scripting, code generation, translation and the render
    loop, printing each event as it arrives.
    """
    try:
        state = build_generate_state(
            url=url,
            description=description,
            preferences=Preferences(style=style, duration=duration),
            project_id=project_id,
        )
    except (PipelineInputError, ValueError) as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    success = asyncio.run(_run_async(state, "generate"))
    if not success:
        raise typer.Exit(code=1)


@app.command(name="continue")
def continue_(
    script_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="VideoScript JSON file"),
    product_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="ProductData JSON file"),
    style: str = typer.Option("professional", "--style", "-s", help="professional | playful | minimal | bold"),
    project_id: Optional[str] = typer.Option(None, "--project", "-p", help="Project UUID to checkpoint into"),
):
    """Render a video from an approved script, skipping analysis and scripting."""
    try:
        script = VideoScript.model_validate(json.loads(script_file.read_text()))
        product_data = json.loads(product_file.read_text())
        state = build_continue_state(
            video_script=script,
            product_data=product_data,
            preferences=Preferences(style=style),
            project_id=project_id,
        )
    except (PipelineInputError, ValueError) as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    success = asyncio.run(_run_async(state, "continue"))
    if not success:
        raise typer.Exit(code=1)


async def _run_async(state: PipelineState, kind: str) -> bool:
    """Run the orchestrator in-process and render its events."""
    await init_database()

    if state.project_id:
        async with async_session() as session:
            project = await session.get(Project, _parse_uuid(state.project_id))
            if project is None:
                console.print(f"[red]Error:[/red] Project not found: {state.project_id}")
                raise typer.Exit(code=1)

    channel = EventChannel()
    orchestrator = PipelineOrchestrator(default_stages(), locks=ProjectLocks())
    runner = orchestrator.run_generate if kind == "generate" else orchestrator.run_continue
    task = asyncio.create_task(runner(state, channel))

    success = False
    with console.status("[bold green]Starting pipeline...") as status:
        async for event in channel.events():
            success = _print_event(event, status) or success

    await task
    if success:
        console.print(f"[green]✓[/green] Video generation complete!")
    else:
        console.print(f"[red]✗ Pipeline failed[/red]")
        if state.project_id:
            console.print(f"[yellow]Project {state.project_id} was rolled back to DRAFT[/yellow]")
    return success


def _print_event(event: GenerationEvent, status) -> bool:
    """Print one event; returns True for a successful ``complete``."""
    data = event.data
    if event.type == "status":
        attempts = f" (attempt {data['attempts']})" if data.get("attempts") else ""
        status.update(f"[bold green]{data['message']}{attempts}...")
        console.print(f"[dim]→ {data['step']}{attempts}[/dim]")
    elif event.type == "productData":
        console.print(f"[green]Product:[/green] {data.get('name')} - {data.get('tagline')}")
    elif event.type == "videoScript":
        scenes = data.get("scenes", [])
        console.print(
            f"[green]Script:[/green] {len(scenes)} scenes, "
            f"{data.get('totalDurationFrames')} frames"
        )
    elif event.type in ("reactPageCode", "remotionCode"):
        console.print(f"[green]{event.type}:[/green] {len(data)} chars")
    elif event.type == "videoUrl":
        console.print(f"[green]Video:[/green] {data}")
    elif event.type == "error":
        for message in data.get("errors", []):
            console.print(f"[red]Error:[/red] {message}")
    elif event.type == "complete":
        return bool(data.get("success"))
    return False


@app.command(name="create-user")
def create_user(
    email: str = typer.Argument(..., help="User email"),
    credits: int = typer.Option(20, "--credits", "-c", help="Initial credit balance"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name"),
):
    """Create a user; pass the printed id as X-User-Id to the API."""
    asyncio.run(_create_user_async(email, credits, name))


async def _create_user_async(email: str, credits: int, name: Optional[str]):
    await init_database()
    async with async_session() as session:
        existing = await session.execute(select(User).where(User.email == email))
        if existing.scalar_one_or_none():
            console.print(f"[red]Error:[/red] User already exists: {email}")
            raise typer.Exit(code=1)
        user = User(email=email, name=name, credit_balance=credits)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        console.print(f"[green]Created user:[/green] {user.id} ({credits} credits)")


@app.command(name="create-project")
def create_project(
    user_id: str = typer.Argument(..., help="Owner user UUID"),
    name: str = typer.Option("Untitled project", "--name", "-n", help="Project name"),
):
    """Create an empty DRAFT project."""
    asyncio.run(_create_project_async(user_id, name))


async def _create_project_async(user_id_str: str, name: str):
    await init_database()
    async with async_session() as session:
        user = await session.get(User, _parse_uuid(user_id_str))
        if user is None:
            console.print(f"[red]Error:[/red] User not found: {user_id_str}")
            raise typer.Exit(code=1)
        project = Project(user_id=user.id, name=name, status="DRAFT")
        session.add(project)
        await session.commit()
        await session.refresh(project)
        console.print(f"[green]Created project:[/green] {project.id}")


@app.command()
def status(
    project_id: str = typer.Argument(..., help="Project UUID"),
):
    """Show detailed project status and information."""
    asyncio.run(_status_async(project_id))


async def _status_async(project_id_str: str):
    """Async implementation of status command."""
    project_uuid = _parse_uuid(project_id_str)

    await init_database()

    async with async_session() as session:
        project = await session.get(Project, project_uuid)
        if not project:
            console.print(f"[red]Error:[/red] Project not found: {project_uuid}")
            raise typer.Exit(code=1)

        run_result = await session.execute(
            select(PipelineRun)
            .where(PipelineRun.project_id == project.id)
            .order_by(PipelineRun.started_at.desc())
            .limit(1)
        )
        latest_run = run_result.scalar_one_or_none()

        status_color = _get_status_color(project.status)
        info_lines = [
            f"[bold]ID:[/bold] {project.id}",
            f"[bold]Name:[/bold] {project.name}",
            f"[bold]Status:[/bold] [{status_color}]{project.status}[/{status_color}]",
            f"[bold]Created:[/bold] {project.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
            f"[bold]Updated:[/bold] {project.updated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        ]
        if project.source_url:
            info_lines.append(f"[bold]Source:[/bold] {project.source_url}")
        if project.script:
            scenes = json.loads(project.script).get("scenes", [])
            info_lines.append(f"[bold]Scenes:[/bold] {len(scenes)}")
        if project.video_url:
            info_lines.append(f"[bold]Video:[/bold] [green]{project.video_url}[/green]")

        if latest_run:
            info_lines.append(
                f"[bold]Last Run:[/bold] {latest_run.kind} -> {latest_run.outcome}, "
                f"{latest_run.render_attempts} render attempt(s)"
            )
            if latest_run.total_duration_seconds:
                info_lines.append(
                    f"[bold]Last Run Duration:[/bold] {_format_duration(latest_run.total_duration_seconds)}"
                )

        console.print(Panel(
            "\n".join(info_lines),
            title="[bold]Project Status[/bold]",
            border_style="blue",
        ))


@app.command(name="list")
def list_projects():
    """List all projects."""
    asyncio.run(_list_async())


async def _list_async():
    """Async implementation of list command."""
    await init_database()

    async with async_session() as session:
        result = await session.execute(
            select(Project).order_by(Project.created_at.desc())
        )
        projects = result.scalars().all()

        if not projects:
            console.print("[yellow]No projects found[/yellow]")
            return

        table = Table(show_header=True, header_style="bold blue")
        table.add_column("ID", style="dim")
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("Created")

        for project in projects:
            name = project.name if len(project.name) <= 50 else project.name[:47] + "..."
            status_color = _get_status_color(project.status)
            table.add_row(
                str(project.id)[:8] + "...",
                name,
                f"[{status_color}]{project.status}[/{status_color}]",
                project.created_at.strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)


def _parse_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid UUID: {value}")
        raise typer.Exit(code=1)


def _format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    return f"{int(seconds // 60)}m {seconds % 60:.1f}s"


def _get_status_color(status: str) -> str:
    """Get Rich color for a project status.

    READY green, GENERATING yellow, DRAFT dim.
    """
    if status == "READY":
        return "green"
    elif status == "GENERATING":
        return "yellow"
    elif status == "DRAFT":
        return "dim"
    return "white"
