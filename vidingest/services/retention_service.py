# Retention sweeper - removes job directories older than a threshold

import math
import shutil
import time
import logging
from datetime import timedelta
from typing import Callable, Iterable, Optional, Union

from vidingest.services.storage_service import StorageLayout, directory_created_at

logger = logging.getLogger(__name__)

MaxAge = Union[timedelta, float, int, None]


def _max_age_seconds(max_age: MaxAge) -> float:
    if max_age is None:
        return math.inf
    if isinstance(max_age, timedelta):
        if max_age == timedelta.max:
            return math.inf
        return max_age.total_seconds()
    return float(max_age)


class RetentionSweeper:
    """Deletes job directories whose creation time is at or before now - max_age"""

    def __init__(self, layout: StorageLayout, clock: Callable[[], float] = time.time):
        self.layout = layout
        self.clock = clock

    def sweep(self, max_age: MaxAge, now: Optional[float] = None, exclude: Iterable[str] = ()) -> int:
        """
        Delete old job directories

        Args:
            max_age: timedelta or seconds; None or infinity removes nothing
            now: reference timestamp (defaults to the clock)
            exclude: job ids whose directories must be kept

        Returns:
            int: number of directories confirmed deleted
        """
        age = _max_age_seconds(max_age)
        if age < 0:
            raise ValueError("max_age must not be negative")
        if math.isinf(age):
            return 0

        cutoff = (self.clock() if now is None else now) - age
        protected = set(exclude)
        deleted = 0

        for job_dir in self.layout.list_job_dirs():
            if job_dir.name in protected:
                continue
            try:
                created = directory_created_at(job_dir)
            except OSError as e:
                logger.warning(f"Cannot stat {job_dir}, skipping: {e}")
                continue

            if created > cutoff:
                continue

            try:
                shutil.rmtree(job_dir)
            except OSError as e:
                logger.warning(f"Failed to delete directory {job_dir}: {e}")
                continue

            deleted += 1
            logger.info(f"Deleted old video directory: {job_dir.name}")

        logger.info(f"Retention sweep finished: {deleted} directory(ies) removed")
        return deleted
