# Pipeline exception hierarchy - validation, duplicate submissions, state machine and storage failures


class PipelineError(Exception):
    """Base class for all ingestion pipeline errors"""

    code = "PIPELINE_ERROR"


class ValidationError(PipelineError):
    """Rejected before a job is ever queued"""

    code = "VALIDATION_ERROR"


class InvalidJobId(ValidationError):
    code = "INVALID_VIDEO_ID"


class InvalidSource(ValidationError):
    code = "INVALID_SOURCE"


class DuplicateJob(PipelineError):
    """Raised when a job id is already queued or processing"""

    code = "DUPLICATE_JOB"

    def __init__(self, job):
        self.job = job
        super().__init__(f"Job {job.job_id} already exists with status {job.status.value}")


class JobNotFound(PipelineError):
    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class InvalidTransition(PipelineError):
    code = "INVALID_TRANSITION"


class StorageError(PipelineError):
    """Filesystem failure (cannot create or clean a job directory)"""

    code = "STORAGE_ERROR"


class TranscodeError(PipelineError):
    code = "TRANSCODE_ERROR"
