"""
Buckets component - tile time ranges with local-time buckets.
"""

from .component import (
    BucketSequence,
    bucket_label,
    bucketize,
    calculate_bucket_end,
    calculate_bucket_start,
    get_zone,
    parse_granularity,
    resolve_range,
    run_bucketize,
    validate_range,
)
from .models import (
    PRESETS,
    Bucket,
    BucketizeInput,
    Granularity,
    PastMinutesRange,
    RangeSpec,
    RelativeRange,
    TimeRange,
)

__all__ = [
    # Entry points
    "bucketize",
    "resolve_range",
    "run_bucketize",
    # Helpers
    "bucket_label",
    "calculate_bucket_end",
    "calculate_bucket_start",
    "get_zone",
    "parse_granularity",
    "validate_range",
    # Models
    "Bucket",
    "BucketSequence",
    "BucketizeInput",
    "Granularity",
    "PRESETS",
    "PastMinutesRange",
    "RangeSpec",
    "RelativeRange",
    "TimeRange",
]
