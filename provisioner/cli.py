import asyncio
import json as json_lib
from pathlib import Path

from rich.console import Console
from rich.table import Table
import typer

from shared.clients.robot import RobotClient
from shared.logging import new_correlation_id, setup_logging

from .bootstrap import FileBootstrapDataProvider
from .config import ProvisionerSettings, get_settings
from .devices import parse_block_devices, select_install_device
from .engine import BareMetalEngine, ReconcileResult, release_machine
from .models import MachineStatus, ProvisioningRequest, SSHCredentials

app = typer.Typer(
    name="baremetal-provisioner",
    help="Claim, provision and release Hetzner dedicated servers",
    add_completion=False,
)
console = Console()


def _setup(settings: ProvisionerSettings) -> None:
    setup_logging(
        service_name=settings.service_name,
        log_format=settings.log_format,
        log_level=settings.log_level,
    )


def _robot(settings: ProvisionerSettings) -> RobotClient:
    return RobotClient(
        username=settings.robot_user,
        password=settings.robot_password,
        base_url=settings.robot_base_url,
    )


def _print_result(result: ReconcileResult, status: MachineStatus | None, json_output: bool) -> None:
    if json_output:
        payload = {"requeue_after": result.requeue_after}
        if status is not None:
            payload["status"] = status.model_dump()
        typer.echo(json_lib.dumps(payload, indent=2))
        return

    if result.requeue_after is not None:
        console.print(f"[yellow]Requeue after {result.requeue_after:g}s[/yellow]")
    else:
        console.print("[green]✓[/green] Done")

    if status is None:
        return
    table = Table(title="Machine status")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field_name, value in status.model_dump().items():
        if value is not None:
            table.add_row(field_name, str(value))
    console.print(table)


@app.command()
def reconcile(
    cluster: str = typer.Option(..., help="Cluster name"),
    machine: str = typer.Option(..., help="Logical machine name"),
    server_type: str = typer.Option(..., "--server-type", help="Server type to claim"),
    image: str = typer.Option(..., help="Image path passed to installimage"),
    ssh_key_name: str = typer.Option(..., "--ssh-key-name", help="Key name stored in Robot"),
    ssh_private_key: Path = typer.Option(
        ..., "--ssh-private-key", exists=True, dir_okay=False, help="Private key file"
    ),
    bootstrap_data: Path = typer.Option(
        ..., "--bootstrap-data", dir_okay=False, help="cloud-init user-data file"
    ),
    partition_file: Path | None = typer.Option(
        None, "--partition-file", exists=True, dir_okay=False, help="installimage PART lines"
    ),
    ssh_port: int = typer.Option(22, "--ssh-port"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Run one provisioning pass for a machine."""
    settings = get_settings()
    _setup(settings)
    try:
        request = ProvisioningRequest(
            cluster_name=cluster,
            machine_name=machine,
            server_type=server_type,
            image_path=image,
            partition=partition_file.read_text() if partition_file else None,
            ssh=SSHCredentials(
                key_name=ssh_key_name,
                private_key=ssh_private_key.read_text(),
                port=ssh_port,
            ),
        )
        status = MachineStatus()

        async def _run() -> ReconcileResult:
            robot = _robot(settings)
            try:
                engine = BareMetalEngine(
                    request,
                    robot,
                    bootstrap=FileBootstrapDataProvider(bootstrap_data),
                    settings=settings,
                    status=status,
                )
                return await engine.reconcile()
            finally:
                await robot.close()

        result = asyncio.run(_run())
        _print_result(result, status, json_output)

    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def delete(
    cluster: str = typer.Option(..., help="Cluster name"),
    machine: str = typer.Option(..., help="Logical machine name"),
    server_type: str = typer.Option(..., "--server-type", help="Server type of the machine"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Release the server attached to a machine."""
    settings = get_settings()
    _setup(settings)
    try:

        async def _run() -> ReconcileResult:
            new_correlation_id()
            robot = _robot(settings)
            try:
                return await release_machine(
                    robot, cluster, server_type, machine, settings=settings
                )
            finally:
                await robot.close()

        result = asyncio.run(_run())
        _print_result(result, None, json_output)

    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e


@app.command("select-device")
def select_device(
    lsblk_json: Path = typer.Argument(..., exists=True, dir_okay=False, help="lsblk --json dump"),
):
    """Show which drive would be chosen for installation."""
    try:
        devices = parse_block_devices(lsblk_json.read_text())
        drive = select_install_device(devices)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(f"Install device: [cyan]/dev/{drive}[/cyan]")


if __name__ == "__main__":
    app()
