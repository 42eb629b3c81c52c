"""
Process record model and the pure merge rules applied to it

Nothing here does I/O. process_store.py reads a record, calls one of the
functions below against that fresh copy, and writes the result back with
a conditional put.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProcessStatus(str, Enum):
    QUEUED = 'Queued'
    PROCESSING = 'Processing'
    FINISHED = 'Finished'


def utcnow():
    return datetime.now(timezone.utc)


class ProcessRecord(BaseModel):
    """Shared state for one submitted process"""

    model_config = ConfigDict(populate_by_name=True)

    process_id: str = Field(alias='processId')
    created_at: datetime = Field(default_factory=utcnow, alias='createdAt')
    status: ProcessStatus = ProcessStatus.QUEUED
    expected_count: int = Field(default=0, alias='expectedCount', ge=0)
    dispatched_at: Optional[datetime] = Field(default=None, alias='dispatchedAt')
    images: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = Field(default=None, alias='updatedAt')

    def to_json(self):
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, text):
        return cls.model_validate_json(text)

    @property
    def dispatched(self):
        return self.dispatched_at is not None


_IMAGE_STATION = re.compile(r'_station_(\d+)\.png$')
_ERROR_STATION = re.compile(r'^Station (\d+):')


def reported_stations(images, errors):
    """
    Stations that have reported at least once

    Images are matched by their asset key and errors by their
    "Station {n}: ..." prefix, so a station that failed twice or failed
    and then succeeded counts once. Entries without a station number
    count as one station each.

    Returns:
        set: Station numbers, plus the unparsed entries themselves
    """
    stations = set()
    for pattern, entries in ((_IMAGE_STATION, images), (_ERROR_STATION, errors)):
        for entry in entries:
            match = pattern.search(entry)
            stations.add(int(match.group(1)) if match else entry)
    return stations


def derive_status(images, errors, expected_count, dispatched, policy='images'):
    """
    Work out the status a record should carry

    Args:
        images: Stored asset keys
        errors: Recorded failures
        expected_count: Number of jobs reporting into the record
        dispatched: Whether expected_count is known (set by the dispatcher,
                    or carried in from a job message)
        policy: 'images' finishes when every job produced an image;
                'reported' finishes when every station produced an image
                or an error

    Returns:
        ProcessStatus
    """
    if not images and not errors:
        if dispatched and expected_count == 0:
            return ProcessStatus.FINISHED
        return ProcessStatus.QUEUED

    if policy == 'reported':
        reported = len(reported_stations(images, errors))
    else:
        reported = len(images)

    if dispatched and expected_count > 0 and reported >= expected_count:
        return ProcessStatus.FINISHED
    return ProcessStatus.PROCESSING


def new_record(process_id, now=None):
    now = now or utcnow()
    return ProcessRecord(process_id=process_id, created_at=now, updated_at=now)


def apply_dispatch(record, expected_count, policy='images', now=None):
    """
    Fix expected_count on a record, once

    A record that was already dispatched keeps its stored count, so a
    redelivered start message cannot change the size of the fan-out.

    Returns:
        ProcessRecord: The updated copy (the input is left untouched)
    """
    if record.dispatched:
        return record

    now = now or utcnow()
    count = max(record.expected_count, expected_count)
    updated = record.model_copy(update={
        'expected_count': count,
        'dispatched_at': now,
        'updated_at': now,
    })
    updated.status = derive_status(updated.images, updated.errors, count, True, policy)
    return updated


def apply_outcome(record, image=None, error=None, expected_count=0, policy='images', now=None):
    """
    Merge one worker outcome into a record

    Exactly one of image / error should be given. Images have set
    semantics; errors are appended once per call. expected_count only
    ever grows.

    Returns:
        ProcessRecord: The updated copy, or the same object when the
                       outcome is already present (nothing to write)
    """
    if (image is None) == (error is None):
        raise ValueError('apply_outcome needs exactly one of image or error')

    images = list(record.images)
    errors = list(record.errors)
    if image is not None and image not in images:
        images.append(image)
    if error is not None:
        errors.append(error)

    count = max(record.expected_count, expected_count)
    dispatched = record.dispatched or count > 0
    status = derive_status(images, errors, count, dispatched, policy)

    if images == record.images and errors == record.errors \
            and count == record.expected_count and status == record.status:
        return record

    return record.model_copy(update={
        'images': images,
        'errors': errors,
        'expected_count': count,
        'status': status,
        'updated_at': now or utcnow(),
    })
