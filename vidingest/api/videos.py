# Video ingestion API - uploads (inline or queued), job status, directory info, job admin, retention cleanup

import os
import shutil
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from vidingest.core.errors import DuplicateJob, InvalidJobId, InvalidTransition, StorageError, ValidationError
from vidingest.core.pipeline import Pipeline, get_pipeline
from vidingest.services.job_store import JobStatus, JobView

router = APIRouter()
logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB
SECONDS_PER_DAY = 86400


class UploadTooLarge(ValidationError):
    code = "FILE_TOO_LARGE"


def error_response(status_code: int, message: str, code: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "code": code,
            "success": False,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **extra,
        },
    )


def _job_payload(view: JobView) -> dict:
    return view.to_dict()


def _stage_upload(pipeline: Pipeline, video_id: str, upload: UploadFile) -> Path:
    """Stream an upload into the job directory, enforcing the size limit"""
    max_size = pipeline.settings.max_upload_size
    pipeline.layout.ensure_job_dir(video_id)
    staged = pipeline.layout.staging_path(video_id, upload.filename)

    written = 0
    try:
        with open(staged, "wb") as out:
            while chunk := upload.file.read(CHUNK_SIZE):
                written += len(chunk)
                if written > max_size:
                    raise UploadTooLarge(f"File size exceeds limit of {max_size} bytes")
                out.write(chunk)
    except BaseException:
        _discard(staged)
        raise

    if written == 0:
        _discard(staged)
        raise ValidationError("VideoFile is empty")

    logger.info(f"[{video_id}] 📥 STAGED UPLOAD - {staged.name} ({written:,} bytes)")
    return staged


def _discard(path: Path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to delete staged file {path}: {e}")


def _validate_request(pipeline: Pipeline, video_id: Optional[str], video_file: Optional[UploadFile]):
    """Returns an error response, or None when the request may proceed"""
    if not video_id or not video_id.strip():
        return error_response(400, "VideoId is required", "MISSING_VIDEO_ID")

    try:
        pipeline.layout.validate_job_id(video_id)
    except InvalidJobId as e:
        return error_response(400, str(e), e.code)

    if video_file is None or not video_file.filename or video_file.size == 0:
        return error_response(400, "VideoFile is required", "MISSING_VIDEO_FILE")

    allowed = [ext.lower() for ext in pipeline.settings.allowed_extensions]
    extension = os.path.splitext(video_file.filename)[1].lower()
    if extension not in allowed:
        return error_response(400, "Unsupported video format", "INVALID_FORMAT", supported_formats=allowed)

    max_size = pipeline.settings.max_upload_size
    if video_file.size is not None and video_file.size > max_size:
        return error_response(
            400,
            "File size exceeds limit",
            "FILE_TOO_LARGE",
            max_size_bytes=max_size,
            max_size_mb=max_size // (1024 * 1024),
        )

    if not pipeline.accepting:
        return error_response(503, "Transcoding tools are not available", "TOOLS_UNAVAILABLE")

    existing = pipeline.store.get(video_id)
    if existing is not None and not existing.status.terminal:
        return error_response(409, f"Video {video_id} is already {existing.status.value}", "DUPLICATE_JOB",
                              data=_job_payload(existing))
    return None


async def _accept_upload(pipeline: Pipeline, video_id: str, video_file: UploadFile, inline: bool):
    try:
        staged = await run_in_threadpool(_stage_upload, pipeline, video_id, video_file)
    except UploadTooLarge as e:
        max_size = pipeline.settings.max_upload_size
        return error_response(400, str(e), e.code, max_size_bytes=max_size, max_size_mb=max_size // (1024 * 1024))
    except ValidationError as e:
        return error_response(400, str(e), "MISSING_VIDEO_FILE")
    except (StorageError, OSError) as e:
        logger.error(f"[{video_id}] ❌ STAGING FAILED - {e}", exc_info=True)
        return error_response(500, "Internal server error occurred while uploading video", "UPLOAD_ERROR")

    scheduler = pipeline.scheduler
    try:
        if inline:
            view = await run_in_threadpool(scheduler.run_inline, video_id, str(staged))
        else:
            view = await run_in_threadpool(scheduler.submit, video_id, str(staged))
    except DuplicateJob as e:
        _discard(staged)
        return error_response(409, str(e), e.code, data=_job_payload(e.job))
    except ValidationError as e:
        _discard(staged)
        return error_response(400, str(e), e.code)

    return view


@router.post("/upload")
async def upload_video(
    video_id: Optional[str] = Form(None),
    video_file: Optional[UploadFile] = File(None),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    Upload a video and process it before responding.

    - **video_id**: Caller supplied identifier (letters, digits, '_' and '-')
    - **video_file**: The video to package (.mp4, .mov, .avi, .mkv, .webm)
    """
    invalid = await run_in_threadpool(_validate_request, pipeline, video_id, video_file)
    if invalid is not None:
        return invalid

    logger.info(f"[{video_id}] 🚀 STARTING UPLOAD - {video_file.filename}")
    try:
        result = await _accept_upload(pipeline, video_id, video_file, inline=True)
    except Exception:
        logger.error(f"[{video_id}] 💥 PROCESSING FAILED", exc_info=True)
        return error_response(500, "Internal server error occurred while processing video", "PROCESSING_ERROR")

    if isinstance(result, JSONResponse):
        return result

    if result.status == JobStatus.FAILED:
        return error_response(422, result.error or "Processing failed", "PROCESSING_ERROR", data=_job_payload(result))

    logger.info(f"[{video_id}] ✅ UPLOAD COMPLETE - {result.output_manifest_url}")
    return {
        "data": _job_payload(result),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "success": True,
        "processing": "completed",
    }


@router.post("/upload-async", status_code=202)
async def upload_video_async(
    video_id: Optional[str] = Form(None),
    video_file: Optional[UploadFile] = File(None),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    Upload a video and queue it for background processing.

    Returns immediately; poll `/status/{video_id}` for the outcome.
    """
    invalid = await run_in_threadpool(_validate_request, pipeline, video_id, video_file)
    if invalid is not None:
        return invalid

    logger.info(f"[{video_id}] 🚀 STARTING ASYNC UPLOAD - {video_file.filename}")
    try:
        result = await _accept_upload(pipeline, video_id, video_file, inline=False)
    except Exception:
        logger.error(f"[{video_id}] 💥 UPLOAD FAILED", exc_info=True)
        return error_response(500, "Internal server error occurred while uploading video", "UPLOAD_ERROR")

    if isinstance(result, JSONResponse):
        return result

    payload = _job_payload(result)
    payload["cdn_url"] = pipeline.layout.manifest_url(video_id)
    return JSONResponse(
        status_code=202,
        content={
            "data": payload,
            "message": "Video uploaded successfully. Processing in background.",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "success": True,
            "processing": "queued",
        },
    )


@router.get("/status/{video_id}")
def get_video_status(video_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    """
    Current status of a job. Unknown ids answer 404 with status "not_found".
    """
    view = pipeline.scheduler.get_status(video_id)
    if view is None:
        return JSONResponse(status_code=404, content={"video_id": video_id, "status": "not_found"})
    return _job_payload(view)


@router.get("/info/{video_id}")
def get_video_info(video_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    """
    Files on disk for a completed video
    """
    try:
        info = pipeline.layout.describe(video_id)
    except InvalidJobId as e:
        return error_response(400, str(e), e.code)

    if info is None or not info["has_manifest"]:
        return error_response(404, "Video not found", "VIDEO_NOT_FOUND", video_id=video_id)

    view = pipeline.store.get(video_id)
    return {
        "video_id": video_id,
        "status": view.status.value if view else JobStatus.COMPLETED.value,
        "cdn_url": pipeline.layout.manifest_url(video_id),
        "info": {
            **info,
            "created_at": info["created_at"].isoformat(),
            "last_modified": info["last_modified"].isoformat(),
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/jobs")
def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by status: queued, processing, completed, failed"),
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    List jobs, newest first
    """
    jobs = pipeline.store.list(status=status, limit=limit, offset=skip)
    return {
        "total": pipeline.store.count(status),
        "jobs": [_job_payload(view) for view in jobs],
        "limit": limit,
        "skip": skip,
    }


@router.delete("/jobs/{video_id}")
def delete_job(
    video_id: str,
    purge_files: bool = Query(False, description="Also delete the job directory"),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    Remove a finished job's record (administrative garbage collection)
    """
    try:
        deleted = pipeline.store.delete(video_id)
    except InvalidTransition as e:
        return error_response(400, str(e), e.code)

    if not deleted:
        return error_response(404, f"Job {video_id} not found", "JOB_NOT_FOUND")

    if purge_files:
        try:
            shutil.rmtree(pipeline.layout.job_dir(video_id))
        except FileNotFoundError:
            pass
        except (OSError, InvalidJobId) as e:
            logger.warning(f"Failed to delete directory for {video_id}: {e}")

    return {"message": f"Job {video_id} deleted", "success": True}


@router.post("/cleanup")
def cleanup_old_videos(
    older_than_days: Optional[float] = Query(None, ge=0),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    Delete video directories older than the given number of days.
    Directories of queued or processing jobs are kept.
    """
    days = pipeline.settings.retention_days if older_than_days is None else older_than_days
    try:
        deleted = pipeline.sweeper.sweep(
            days * SECONDS_PER_DAY,
            exclude=pipeline.store.active_ids(),
        )
    except Exception:
        logger.error("Error during cleanup operation", exc_info=True)
        return error_response(500, "Cleanup operation failed", "CLEANUP_ERROR")

    return {
        "success": True,
        "deleted": deleted,
        "message": f"Cleanup completed for videos older than {days:g} days",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
