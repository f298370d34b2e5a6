# System health API - tool reachability, scheduler load, storage disk usage

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends
import psutil

from vidingest.core.pipeline import Pipeline, get_pipeline

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health_check(pipeline: Pipeline = Depends(get_pipeline)):
    """
    Pipeline health: are FFmpeg/FFprobe executable, is the dispatcher running,
    how loaded is the scheduler, how full is the storage disk.
    """
    tools = pipeline.refresh_tools()
    scheduler = pipeline.scheduler

    status = "healthy"
    issues = []

    if not tools.healthy:
        status = "degraded"
        for name, tool in tools.tools.items():
            if not tool.available:
                issues.append(f"{name} unavailable: {tool.error}")

    if not scheduler.running:
        status = "degraded"
        issues.append("Dispatch loop not running")

    disk_info = None
    try:
        disk = psutil.disk_usage(str(pipeline.layout.root))
        disk_info = {
            "total": disk.total,
            "used": disk.used,
            "free": disk.free,
            "percent": disk.percent,
        }
        if disk.percent > 95:
            status = "degraded"
            issues.append("Low disk space")
    except OSError as e:
        logger.warning(f"Cannot read disk usage for {pipeline.layout.root}: {e}")
        status = "degraded"
        issues.append(f"Storage path unreadable: {e}")

    return {
        "status": status,
        "accepting_uploads": pipeline.accepting,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "issues": issues if issues else None,
        "tools": tools.to_dict(),
        "scheduler": scheduler.stats(),
        "storage": {
            "path": str(pipeline.layout.root),
            "disk": disk_info,
        },
        "job_store": pipeline.settings.job_store_backend,
    }
