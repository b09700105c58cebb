"""
Batch planning for ingestion requests.
"""

from typing import List, Sequence, TypeVar

from .exceptions import ValidationError

T = TypeVar("T")


def split_into_batches(records: Sequence[T], max_batch_size: int) -> List[List[T]]:
    """
    Split records into consecutive batches of at most max_batch_size.

    Order is preserved and only the last batch may be smaller.
    An empty input yields no batches.

    Raises:
        ValidationError: If max_batch_size is not a positive integer

    Example:
        >>> split_into_batches([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    if isinstance(max_batch_size, bool) or not isinstance(max_batch_size, int) or max_batch_size <= 0:
        raise ValidationError(
            f"max_batch_size must be a positive integer, got {max_batch_size!r}",
            details={"provided": max_batch_size}
        )

    records = list(records)
    return [
        records[start:start + max_batch_size]
        for start in range(0, len(records), max_batch_size)
    ]
