"""
Image storage utilities for Station Snapshot workers
"""

from datetime import datetime, timezone

from .tracing import log_with_trace


IMAGE_MIME_TYPE = 'image/png'


def asset_key(process_id, station_number):
    """
    Deterministic key for one station image

    The same job always maps to the same key, so a redelivered job
    overwrites its earlier upload instead of adding a second image.
    """
    return f"{process_id}_station_{station_number}.png"


async def upload_image(env, image_bytes, process_id, station_number, station_name=None,
                       trace_context=None):
    """
    Upload a rendered station image to the IMAGES bucket

    Args:
        env: Worker environment
        image_bytes: PNG bytes
        process_id: Process the image belongs to
        station_number: Station index within the process (1-based)
        station_name: Optional station name for object metadata

    Returns:
        str: Object key of the stored image
    """
    key = asset_key(process_id, station_number)

    custom_metadata = {
        'generated-at': datetime.now(timezone.utc).isoformat(),
        'process-id': process_id,
        'station-number': str(station_number),
        'file-size': str(len(image_bytes)),
    }
    if station_name:
        custom_metadata['station-name'] = station_name

    await env.IMAGES.put(
        key,
        image_bytes,
        content_type=IMAGE_MIME_TYPE,
        custom_metadata=custom_metadata
    )

    log_with_trace(
        f"Uploaded {key} ({len(image_bytes)} bytes)",
        trace_context=trace_context,
        process_id=process_id,
        station_number=station_number,
        action='upload_image'
    )
    return key


def image_links(env, keys, expires_in):
    """Signed, read-only links for a list of image keys"""
    return [env.IMAGES.signed_url(key, expires_in) for key in keys]
