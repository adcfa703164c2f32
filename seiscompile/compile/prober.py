# seiscompile/compile/prober.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from seiscompile.core.sacio import event_folders, iter_obs_files, read_period_band

logger = logging.getLogger(__name__)

DEFAULT_PROBE_LIMIT = 20


def probe_period_ranges(obs_path, limit: Optional[int] = DEFAULT_PROBE_LIMIT,
                        components=None) -> List[Tuple[float, float]]:
    """
    Distinct (min, max) pass bands stamped in USER0/USER1 of observed traces.

    Event folders and files are visited in sorted order and only the headers
    of the first `limit` observed files are read (every file if limit is
    None). Bands present only in files beyond the limit are not found; a
    record using one is later refused by the dataset writers.

    Returns
    -------
    list of (min_period, max_period), sorted.
    """
    ranges = set()
    seen = 0
    for event_dir in event_folders(Path(obs_path)):
        for path, _ in iter_obs_files(event_dir, components):
            if limit is not None and seen >= limit:
                break
            ranges.add(read_period_band(path))
            seen += 1
        if limit is not None and seen >= limit:
            break
    logger.info(f"Found {len(ranges)} period ranges in {seen} observed files")
    return sorted(ranges)
