# SQLAlchemy database models

from .job import TranscodeJob
