"""
Test utilities and helpers for dicomgate tests.
"""

from .archive import (
    SOURCE,
    TARGET,
    FakeArchiveClient,
    image_record,
    make_dataset,
    stored,
    write_instance,
)

__all__ = [
    "SOURCE",
    "TARGET",
    "FakeArchiveClient",
    "image_record",
    "make_dataset",
    "stored",
    "write_instance",
]
