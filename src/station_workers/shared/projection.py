"""
Client-facing view of a process
"""

from .asset_utils import image_links
from .process_store import read_process


async def build_process_view(env, config, process_id):
    """
    Snapshot of a process for status polling

    Images are returned as signed links valid for LINK_TTL_SECONDS rather
    than raw object keys. Reads only; safe to call while workers merge.

    Args:
        env: Worker environment
        config: WorkerConfig
        process_id: Process to describe

    Returns:
        dict: The view, or None if the process does not exist
    """
    record, _ = await read_process(env, process_id)
    if record is None:
        return None

    return {
        'processId': record.process_id,
        'createdAt': record.created_at.isoformat(),
        'status': record.status.value,
        'expectedCount': record.expected_count,
        'images': image_links(env, record.images, config.LINK_TTL_SECONDS),
        'errors': list(record.errors),
    }
