# Job commands - upload videos, check status, list jobs

import os
import time
import mimetypes
from typing import Optional

import httpx
from rich.console import Console
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "queued": "yellow",
    "processing": "cyan",
    "completed": "green",
    "failed": "red",
}


def _print_job(job: dict):
    style = STATUS_STYLES.get(job.get("status"), "white")
    console.print(f"[bold]{job.get('video_id')}[/bold]: [{style}]{job.get('status')}[/{style}]")
    if job.get("strategy"):
        console.print(f"[dim]Strategy: {job['strategy']}[/dim]")
    if job.get("cdn_url"):
        console.print(f"Playlist: [link]{job['cdn_url']}[/link]")
    if job.get("error"):
        console.print(f"[red]Error: {job['error']}[/red]")


def upload_video(server_url: str, file_path: str, video_id: str, background: bool = False):
    """
    Upload a video file

    Args:
        server_url: Base URL of the ingestion API
        file_path: Local video path
        video_id: Identifier to register the video under
        background: Use the queued endpoint instead of waiting for processing
    """
    if not os.path.isfile(file_path):
        console.print(f"[red]Error: File not found: {file_path}[/red]")
        return

    endpoint = "upload-async" if background else "upload"
    content_type = mimetypes.guess_type(file_path)[0] or "application/octet-stream"
    size_mb = os.path.getsize(file_path) / (1024 * 1024)
    console.print(f"[yellow]📤 Uploading {os.path.basename(file_path)} ({size_mb:.1f} MB) as {video_id}...[/yellow]")

    try:
        # Inline processing can take as long as the transcode itself
        timeout = httpx.Timeout(30.0, read=300.0 if background else None)
        with open(file_path, "rb") as f, httpx.Client(timeout=timeout) as client:
            response = client.post(
                f"{server_url}/api/v1/videos/{endpoint}",
                data={"video_id": video_id},
                files={"video_file": (os.path.basename(file_path), f, content_type)},
            )
    except httpx.ConnectError:
        console.print(f"[red]Error: Cannot connect to server at {server_url}[/red]")
        return
    except httpx.HTTPError as e:
        console.print(f"[red]Error: {e}[/red]")
        return

    body = response.json()
    if response.status_code in (200, 202):
        console.print(f"[green]✅ {body.get('message', 'Upload accepted')}[/green]")
        _print_job(body["data"])
        if background:
            console.print(f"\n[dim]Use 'vidingest status {video_id} --watch' to follow progress[/dim]")
    else:
        console.print(f"[red]❌ {body.get('code', response.status_code)}: {body.get('error')}[/red]")
        if body.get("data"):
            _print_job(body["data"])


def show_status(server_url: str, video_id: str, watch: bool = False, interval: float = 2.0):
    """
    Show a job's status, optionally polling until it reaches a terminal state
    """
    with httpx.Client(timeout=10.0) as client:
        while True:
            try:
                response = client.get(f"{server_url}/api/v1/videos/status/{video_id}")
            except httpx.HTTPError as e:
                console.print(f"[red]Error: {e}[/red]")
                return

            job = response.json()
            if response.status_code == 404:
                console.print(f"[yellow]Video {video_id} not found[/yellow]")
                return

            if not watch or job.get("status") in ("completed", "failed"):
                _print_job(job)
                return

            console.print(f"[dim]{time.strftime('%H:%M:%S')} {video_id}: {job.get('status')}[/dim]")
            time.sleep(interval)


def list_jobs(server_url: str, status: Optional[str] = None, limit: int = 20):
    """
    List recent jobs in a table
    """
    params = {"limit": limit}
    if status:
        params["status"] = status

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(f"{server_url}/api/v1/videos/jobs", params=params)
            response.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]Error: {e}[/red]")
        return

    data = response.json()
    if not data["jobs"]:
        console.print("[yellow]No jobs found.[/yellow]")
        return

    table = Table(title=f"Jobs ({data['total']} total)")
    table.add_column("Video ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Strategy", style="magenta")
    table.add_column("Created", style="dim")
    table.add_column("Completed", style="dim")

    for job in data["jobs"]:
        style = STATUS_STYLES.get(job["status"], "white")
        table.add_row(
            job["video_id"],
            f"[{style}]{job['status']}[/{style}]",
            job.get("strategy") or "-",
            job["created_at"][:19].replace("T", " "),
            (job.get("completed_at") or "-")[:19].replace("T", " "),
        )

    console.print(table)
