import os
import typer
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Load a .env next to the working directory, if any
load_dotenv(Path.cwd() / ".env")

app = typer.Typer(help="vidingest admin CLI", no_args_is_help=True)


def get_server_url() -> str:
    return os.getenv("VIDINGEST_SERVER_URL", "http://localhost:8000").rstrip("/")


from .commands.jobs import upload_video, show_status, list_jobs
from .commands.maintenance import run_cleanup, show_health


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
):
    """
    Run the ingestion API server.
    """
    import uvicorn

    uvicorn.run("vidingest.main:app", host=host, port=port)


@app.command()
def upload(
    file_path: str = typer.Argument(..., help="Path to the video to upload"),
    video_id: str = typer.Option(..., "--id", help="Video id (letters, digits, '_' and '-')"),
    background: bool = typer.Option(False, "--async", help="Queue the job and return immediately"),
):
    """
    Upload a video for HLS packaging.
    """
    upload_video(get_server_url(), file_path, video_id, background=background)


@app.command()
def status(
    video_id: str = typer.Argument(..., help="Video id to check"),
    watch: bool = typer.Option(False, "--watch", "-w", help="Poll until the job finishes"),
):
    """
    Show the processing status of a video.
    """
    show_status(get_server_url(), video_id, watch=watch)


@app.command()
def jobs(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status: queued, processing, completed, failed"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum number of jobs to display"),
):
    """
    List recent jobs.
    """
    list_jobs(get_server_url(), status=status, limit=limit)


@app.command()
def cleanup(
    days: Optional[float] = typer.Option(None, "--days", "-d", help="Delete videos older than this many days (server default if omitted)"),
):
    """
    Delete old video directories on the server.
    """
    run_cleanup(get_server_url(), days=days)


@app.command()
def health():
    """
    Show tool availability, scheduler load and disk usage.
    """
    if not show_health(get_server_url()):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
