"""Alert work item receiver CLI commands - entrypoint."""

import json
import os
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from pydantic import ValidationError
from rich.table import Table

from alert_workitem_receiver import console
from alert_workitem_receiver.config import Config
from alert_workitem_receiver.document import build_document
from alert_workitem_receiver.exceptions import ConfigError, RenderError
from alert_workitem_receiver.models import AlertGroup, AlertStatus
from alert_workitem_receiver.template import FieldRenderer

app = typer.Typer(help="Alert Work Item Receiver - Alertmanager to Azure DevOps work items")


def _load_config(config_path: str) -> Config:
    try:
        return Config.from_yaml(config_path)
    except (FileNotFoundError, ConfigError) as e:
        console.print_error(f"Invalid configuration: {e}")
        raise typer.Exit(code=1)


@app.command()
def serve(
    config: str = typer.Option(
        "config.yaml",
        "--config",
        "-c",
        help="Path to the receiver configuration file",
    ),
    host: str = typer.Option(
        "0.0.0.0",
        "--host",
        help="Address to listen on",
    ),
    port: int = typer.Option(
        9097,
        "--port",
        "-p",
        help="Port to listen on",
    ),
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    ),
):
    """Run the webhook server.

    Point an Alertmanager webhook receiver at http://<host>:<port>/alert.
    The Azure DevOps personal access token is read from the environment
    variable named by azure_devops.token_env (default AZURE_DEVOPS_TOKEN).
    """
    os.environ["ALERT_RECEIVER_CONFIG"] = config
    os.environ["LOG_LEVEL"] = log_level
    uvicorn.run(
        "alert_workitem_receiver.app:app",
        host=host,
        port=port,
        log_level=log_level.lower(),
    )


@app.command()
def check_config(
    config: str = typer.Option(
        "config.yaml",
        "--config",
        "-c",
        help="Path to the receiver configuration file",
    ),
):
    """Validate the configuration file and compile every template."""
    loaded = _load_config(config)

    table = Table(title=f"Receivers ({loaded.azure_devops.organization_url})")
    for column in ("Name", "Project", "Type", "Fields", "Resolved state", "Reopen state", "On duplicate"):
        table.add_column(column)

    failed = False
    for receiver in loaded.receivers:
        try:
            FieldRenderer(receiver).validate()
        except RenderError as e:
            console.print_error(f"Receiver {receiver.name}: {e}")
            failed = True
        table.add_row(
            receiver.name,
            receiver.project,
            receiver.item_type,
            str(len(receiver.fields)),
            receiver.resolved_state or "-",
            receiver.reopen_state or "-",
            receiver.on_duplicate,
        )

    console.print_table(table)
    if failed:
        raise typer.Exit(code=1)
    console.print_success("Configuration is valid")


@app.command()
def render(
    payload: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="Alertmanager webhook payload (JSON)",
    ),
    config: str = typer.Option(
        "config.yaml",
        "--config",
        "-c",
        help="Path to the receiver configuration file",
    ),
    receiver: Optional[str] = typer.Option(
        None,
        "--receiver",
        "-r",
        help="Receiver name (default: the payload's receiver)",
    ),
):
    """Print the create document a payload would produce, without calling Azure DevOps.

    Examples:

      # Dry run a saved webhook payload
      alert-workitem-receiver render payload.json -c config.yaml

      # Render with a different receiver's templates
      alert-workitem-receiver render payload.json -r team-b
    """
    loaded = _load_config(config)

    try:
        group = AlertGroup.model_validate(json.loads(payload.read_text()))
    except (json.JSONDecodeError, ValidationError) as e:
        console.print_error(f"Invalid payload: {e}")
        raise typer.Exit(code=1)

    name = receiver or group.receiver
    receiver_config = loaded.get_receiver(name)
    if receiver_config is None:
        console.print_error(f"Receiver {name!r} is not configured (known: {loaded.list_receivers()})")
        raise typer.Exit(code=1)

    try:
        rendered = FieldRenderer(receiver_config).render(group)
    except RenderError as e:
        console.print_error(str(e))
        raise typer.Exit(code=1)

    document = build_document(
        rendered,
        group.fingerprint,
        include_fingerprint=True,
        resolved=group.status == AlertStatus.RESOLVED,
        tags=receiver_config.tags,
    )

    console.print_header(
        f"{receiver_config.item_type} in {receiver_config.project} (fingerprint {group.fingerprint})"
    )
    console.print_json([op.model_dump() for op in document])
