"""
Size-balanced grouping of files into buckets and buckets into partitions.

Everything here is pure: no storage access, no logging side effects that
influence results. Given the same input order the output is identical.
"""
import math
from typing import Dict, List, Sequence

from crush.models import Bucket, Partition, SourceFile, bucket_id


def balance(sizes: Sequence[int], count: int) -> List[List[int]]:
    """
    Distribute sized items into at most ``count`` bins of roughly equal total.

    Items are taken largest first (stable for equal sizes) and each goes to
    the bin with the smallest running total, lowest bin index on ties.
    Members of each bin are returned in input order. Empty bins are dropped.

    Args:
        sizes: Item sizes, indexed by input position
        count: Number of bins

    Returns:
        List of bins, each a list of input indices
    """
    if count < 1 or not sizes:
        return []

    totals = [0] * count
    bins: List[List[int]] = [[] for _ in range(count)]

    order = sorted(range(len(sizes)), key=lambda i: -sizes[i])
    for i in order:
        target = min(range(count), key=lambda b: totals[b])
        bins[target].append(i)
        totals[target] += sizes[i]

    return [sorted(members) for members in bins if members]


def bucket_count(total_bytes: int, block_size: int, max_file_blocks: int) -> int:
    """Number of output files for a directory holding ``total_bytes`` crushable bytes."""
    blocks = math.ceil(total_bytes / block_size)
    return math.ceil(blocks / max_file_blocks)


def bucket_directory(
    directory: str,
    files: Sequence[SourceFile],
    block_size: int,
    max_file_blocks: int,
    exclude_single_file_dirs: bool = True,
) -> List[Bucket]:
    """
    Group one directory's crushable files into buckets.

    Returns no buckets when there are no crushable bytes, or when the
    directory holds a single crushable file and single-file exclusion is on.
    The bucket count never exceeds the number of files.
    """
    total = sum(f.size for f in files)
    count = min(bucket_count(total, block_size, max_file_blocks), len(files))

    if count == 0:
        return []
    if exclude_single_file_dirs and len(files) == 1:
        return []

    bins = balance([f.size for f in files], count)

    buckets = []
    for seq, members in enumerate(bins):
        bucket_files = tuple(files[i] for i in members)
        buckets.append(Bucket(
            id=bucket_id(directory, seq),
            files=bucket_files,
            size=sum(f.size for f in bucket_files),
        ))
    return buckets


def assign_partitions(buckets: Sequence[Bucket], max_tasks: int) -> List[Partition]:
    """
    Spread buckets over at most ``max_tasks`` partitions, balancing bytes.

    Partitions are numbered 0..P-1 with no empty partitions.
    """
    bins = balance([b.size for b in buckets], max_tasks)

    partitions = []
    for pid, members in enumerate(bins):
        partitions.append(Partition(
            id=pid,
            bucket_ids=[buckets[i].id for i in members],
            size=sum(buckets[i].size for i in members),
        ))
    return partitions


def partition_index(partitions: Sequence[Partition]) -> Dict[str, int]:
    """Bucket id -> partition id."""
    return {bid: p.id for p in partitions for bid in p.bucket_ids}
