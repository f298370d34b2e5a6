# Maintenance commands - retention cleanup and health report

from typing import Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


def format_bytes(num_bytes: float) -> str:
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if num_bytes < 1024:
            return f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024
    return f"{num_bytes:.1f} PB"


def run_cleanup(server_url: str, days: Optional[float] = None):
    params = {} if days is None else {"older_than_days": days}
    try:
        with httpx.Client(timeout=120.0) as client:
            response = client.post(f"{server_url}/api/v1/videos/cleanup", params=params)
    except httpx.HTTPError as e:
        console.print(f"[red]Error: {e}[/red]")
        return

    body = response.json()
    if response.status_code == 200:
        console.print(f"[green]🧹 {body['message']}: {body['deleted']} directory(ies) removed[/green]")
    else:
        console.print(f"[red]❌ {body.get('code', response.status_code)}: {body.get('error')}[/red]")


def show_health(server_url: str) -> bool:
    """
    Print the server health report

    Returns:
        bool: True if the server reports healthy
    """
    try:
        with httpx.Client(timeout=15.0) as client:
            response = client.get(f"{server_url}/health")
            response.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[bold red]❌ Connection Failed:[/bold red] {e}")
        return False

    data = response.json()
    healthy = data["status"] == "healthy"
    colour = "green" if healthy else "yellow"

    tools = Table(title="Tools")
    tools.add_column("Tool", style="cyan")
    tools.add_column("Available")
    tools.add_column("Version / Error", style="dim")
    for name, tool in data["tools"].items():
        tools.add_row(
            name,
            "[green]yes[/green]" if tool["available"] else "[red]no[/red]",
            tool.get("version") or tool.get("error") or "",
        )

    scheduler = data["scheduler"]
    lines = [
        f"Status: [{colour}]{data['status']}[/{colour}]",
        f"Accepting uploads: {'yes' if data['accepting_uploads'] else 'no'}",
        f"Slots: {scheduler['in_flight']}/{scheduler['capacity']} in use (peak {scheduler['peak_in_flight']})",
        f"Queued: {scheduler['queued']}",
        f"Job store: {data['job_store']}",
    ]
    disk = data["storage"].get("disk")
    if disk:
        lines.append(f"Disk: {format_bytes(disk['used'])} / {format_bytes(disk['total'])} ({disk['percent']}%)")
    if data.get("issues"):
        lines.extend(f"[yellow]⚠️  {issue}[/yellow]" for issue in data["issues"])

    console.print(Panel("\n".join(lines), title="vidingest health"))
    console.print(tools)
    return healthy
