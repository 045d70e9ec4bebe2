from __future__ import annotations

import logging
from typing import Sequence

from book_catalog.core.models import ItemFailure

DEFAULT_FAILURE_LOG_CAP = 20


def log_failures(
    logger: logging.Logger,
    job: str,
    failures: Sequence[ItemFailure],
    cap: int = DEFAULT_FAILURE_LOG_CAP,
) -> None:
    limit = len(failures) if cap <= 0 else min(cap, len(failures))
    for f in failures[:limit]:
        logger.error("%s | couldn't process %s due to %s", job, f.object_id, f.reason)
    if len(failures) > limit:
        logger.error("%s | ... and %s more failures", job, len(failures) - limit)
