"""Upload progress reporting for blob uploads."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from tqdm import tqdm

from .multipart import ProgressObserver


@contextmanager
def upload_progress_bar(desc: str = "Uploading", *, disable: bool = False) -> Iterator[ProgressObserver]:
    """Yield an observer that drives a tqdm byte counter.

    The total is taken from the first report. A retried upload starts again
    from zero, so the bar is rewound when the count goes backwards.
    """
    bar = tqdm(desc=desc, unit="B", unit_scale=True, unit_divisor=1024, disable=disable)

    def observe(sent: int, total: int) -> None:
        if bar.total != total:
            bar.total = total
        if sent < bar.n:
            bar.reset(total=total)
        bar.update(sent - bar.n)

    try:
        yield observe
    finally:
        bar.close()
