"""
Command Line Interface for Fleet Deployments.
"""

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..client.workflows import WorkflowsClient
from ..config import get_settings
from ..core.orchestrator import ArtifactOrchestrator
from ..db.base import init_database, session_scope
from ..db.services import ArtifactService
from ..errors import CompensationFailedError, DeploymentsError
from ..log import configure_logging
from ..schemas.artifact import GenerateArtifactRequest
from ..storage.base import create_file_storage

app = typer.Typer(help="Fleet Deployments - artifact generation for device fleets")
console = Console()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run in development mode (auto reload)"),
):
    """Run the HTTP API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"Starting Fleet Deployments on http://{host}:{port}", style="bold blue"))
    uvicorn.run(
        "fleet_deployments.api:app",
        host=host,
        port=port,
        reload=dev,
        workers=1 if dev else settings.api_workers,
    )


@app.command("init-db")
def init_db():
    """Create the database tables."""
    configure_logging()
    asyncio.run(init_database())
    console.print(f"✅ Database ready: {get_settings().database_url}")


@app.command()
def generate(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    name: str = typer.Option(..., help="Artifact name"),
    device_type: List[str] = typer.Option(
        ..., "--device-type", help="Compatible device type (repeatable)"
    ),
    description: str = typer.Option("", help="Artifact description"),
    type: str = typer.Option("single_file", help="Update module type"),
    args: str = typer.Option("", help="Arguments passed to the update module"),
    tenant: Optional[str] = typer.Option(None, help="Tenant owning the artifact"),
    token: str = typer.Option("", help="Token forwarded to the workflow engine"),
):
    """Upload FILE and start generating an artifact from it."""
    configure_logging()
    settings = get_settings()

    async def run() -> str:
        await init_database()
        storage = create_file_storage(
            settings.storage_uri,
            public_url=settings.storage_public_url,
            secret_key=settings.secret_key,
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
        )
        workflows = WorkflowsClient(
            settings.workflows_url, timeout=settings.workflows_timeout_seconds
        )
        try:
            with session_scope() as db, open(file, "rb") as payload:
                request = GenerateArtifactRequest.build(
                    name=name,
                    description=description,
                    device_types_compatible=device_type,
                    type=type,
                    args=args,
                    size=file.stat().st_size,
                    payload=payload,
                    tenant_id=tenant,
                    token=token,
                )
                orchestrator = ArtifactOrchestrator(
                    ArtifactService(db), storage, workflows, settings
                )
                return await asyncio.wait_for(
                    orchestrator.generate_artifact(request),
                    timeout=settings.generate_timeout_seconds,
                )
        finally:
            await workflows.close()

    try:
        artifact_id = asyncio.run(run())
    except DeploymentsError as e:
        table = Table(title="Artifact generation failed", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Code", e.code)
        table.add_row("Stage", e.stage)
        table.add_row("Message", e.message)
        if isinstance(e, CompensationFailedError) and e.orphaned_key:
            table.add_row("Orphaned object", e.orphaned_key)
        console.print(table)
        raise typer.Exit(code=1)
    except asyncio.TimeoutError:
        console.print("❌ Artifact generation timed out", style="red")
        raise typer.Exit(code=1)

    console.print(f"✅ Artifact generation started: [bold]{artifact_id}[/bold]")


if __name__ == "__main__":
    app()
