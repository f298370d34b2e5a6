# Job model - tracks ingestion jobs (status, staged source, manifest URL, errors, timestamps)

from sqlalchemy import Column, String, DateTime, Text
from vidingest.core.database import Base


class TranscodeJob(Base):
    """Persistent record for one submitted video"""

    __tablename__ = "transcode_jobs"

    # Caller supplied identifier, also the job directory name
    job_id = Column(String(128), primary_key=True)

    # Job status: queued, processing, completed, failed
    status = Column(String(20), nullable=False, default="queued", index=True)

    # Staged upload owned by the pipeline until processing ends
    source_path = Column(String(1024), nullable=False)

    # Strategy chosen by the format inspector: remux, reencode
    strategy = Column(String(20), nullable=True)

    # Public playlist URL (set when complete)
    output_manifest_url = Column(String(1024), nullable=True)

    # Error message if failed
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<TranscodeJob(job_id={self.job_id!r}, status={self.status})>"
