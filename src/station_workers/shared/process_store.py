"""
Process record storage for Station Snapshot workers

One JSON object per process, key "{process_id}.json" in the METADATA
bucket. After creation every write is a compare-and-swap on the etag read
just before it: read, apply a merge rule to the fresh copy, write only if
nobody else wrote in between, otherwise start over from a new read.
"""

import asyncio
import logging
import random

from pydantic import ValidationError

from .errors import (
    MergeConflictError,
    PreconditionFailed,
    ProcessNotFound,
    StoreError,
    StoreUnavailable
)
from .records import ProcessRecord, apply_dispatch, apply_outcome, new_record
from .tracing import log_with_trace


RECORD_CONTENT_TYPE = 'application/json'


def record_key(process_id):
    return f"{process_id}.json"


async def create_process(env, process_id, now=None):
    """
    Write the initial record for a new process

    Args:
        env: Worker environment (METADATA bucket binding)
        process_id: Fresh process ID

    Returns:
        ProcessRecord: The stored record

    Raises:
        PreconditionFailed: If a record already exists under this ID
    """
    record = new_record(process_id, now)
    await env.METADATA.put(
        record_key(process_id),
        record.to_json(),
        content_type=RECORD_CONTENT_TYPE,
        only_if_absent=True
    )
    return record


async def read_process(env, process_id):
    """
    Read a record together with its version token

    Returns:
        tuple: (ProcessRecord, etag), or (None, None) if there is no record

    Raises:
        StoreError: If the stored document is not a valid record
    """
    stored = await env.METADATA.get(record_key(process_id))
    if stored is None:
        return None, None

    try:
        record = ProcessRecord.from_json(stored.text())
    except (ValidationError, UnicodeDecodeError) as e:
        raise StoreError(f"Corrupt record for process {process_id}: {e}") from e
    return record, stored.etag


async def write_process(env, record, etag):
    """Conditionally replace a record. Raises PreconditionFailed on a stale etag."""
    return await env.METADATA.put(
        record_key(record.process_id),
        record.to_json(),
        content_type=RECORD_CONTENT_TYPE,
        etag_matches=etag
    )


def backoff_delay(config, attempt):
    """Capped exponential backoff with jitter, in seconds"""
    ceiling = min(config.MERGE_RETRY_DELAY * (2 ** (attempt - 1)), config.MERGE_MAX_DELAY)
    return ceiling / 2 + random.uniform(0, ceiling / 2)


async def update_process(env, config, process_id, mutate, trace_context=None, action='merge'):
    """
    Apply mutate() to the current record with optimistic concurrency

    mutate receives the freshly read record and returns the new one, or
    the same object when there is nothing to change. It is called again
    on every retry, always against the latest stored state.

    Args:
        env: Worker environment
        config: WorkerConfig (attempt budget and backoff)
        process_id: Process to update
        mutate: Callable(ProcessRecord) -> ProcessRecord
        trace_context: Trace context for log correlation
        action: Label used in log lines

    Returns:
        ProcessRecord: The record as written (or as found, if unchanged)

    Raises:
        ProcessNotFound: If there is no record
        MergeConflictError: If every attempt hit a conflict
        StoreUnavailable: If the store stayed unavailable for the whole budget
        StoreError: On any other store failure (not retried)
    """
    last_error = None
    for attempt in range(1, config.MERGE_MAX_ATTEMPTS + 1):
        try:
            record, etag = await read_process(env, process_id)
            if record is None:
                raise ProcessNotFound(process_id)

            updated = mutate(record)
            if updated is record:
                return record

            await write_process(env, updated, etag)
            if attempt > 1:
                log_with_trace(
                    f"Merged into process {process_id} after {attempt} attempts",
                    trace_context=trace_context,
                    process_id=process_id,
                    attempts=attempt,
                    action=action
                )
            return updated

        except PreconditionFailed as e:
            last_error = e
            log_with_trace(
                f"Version conflict on process {process_id}, retrying",
                trace_context=trace_context,
                level=logging.DEBUG,
                process_id=process_id,
                attempt=attempt,
                action=f"{action}_conflict"
            )
        except StoreUnavailable as e:
            last_error = e
            log_with_trace(
                f"Store unavailable while updating process {process_id}: {e}",
                trace_context=trace_context,
                level=logging.WARNING,
                process_id=process_id,
                attempt=attempt,
                action=f"{action}_unavailable"
            )

        if attempt < config.MERGE_MAX_ATTEMPTS:
            await asyncio.sleep(backoff_delay(config, attempt))

    if isinstance(last_error, StoreUnavailable):
        raise last_error
    raise MergeConflictError(process_id, config.MERGE_MAX_ATTEMPTS)


async def merge_outcome(env, config, process_id, expected_count, image=None, error=None,
                        trace_context=None):
    """
    Record one job outcome (an image key or an error) into a process

    Returns:
        ProcessRecord: The merged record
    """
    return await update_process(
        env,
        config,
        process_id,
        lambda record: apply_outcome(
            record,
            image=image,
            error=error,
            expected_count=expected_count,
            policy=config.COMPLETION_POLICY
        ),
        trace_context=trace_context,
        action='merge_outcome'
    )


async def record_dispatch(env, config, process_id, expected_count, trace_context=None):
    """
    Fix the number of jobs reporting into a process

    Returns:
        ProcessRecord: The record after dispatch. Its expected_count is the
                       authoritative fan-out size; on redelivery it is the
                       value stored by the first dispatch.
    """
    return await update_process(
        env,
        config,
        process_id,
        lambda record: apply_dispatch(record, expected_count, policy=config.COMPLETION_POLICY),
        trace_context=trace_context,
        action='record_dispatch'
    )
