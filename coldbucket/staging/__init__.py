"""Tree enumeration, bucket packing and the staging pipeline."""

from coldbucket.staging.enumerator import TreeEnumerator
from coldbucket.staging.packer import Bucket, BucketPacker, BucketSealedError
from coldbucket.staging.pipeline import StagingPipeline

__all__ = [
    "Bucket",
    "BucketPacker",
    "BucketSealedError",
    "StagingPipeline",
    "TreeEnumerator",
]
