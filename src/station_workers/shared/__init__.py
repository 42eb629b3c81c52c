"""
Shared utilities for Station Snapshot workers
"""

from .errors import (
    StationWorkersError,
    ConfigurationError,
    StoreError,
    StoreUnavailable,
    PreconditionFailed,
    ProcessNotFound,
    MergeConflictError,
    FetchError,
    QueueUnavailable,
    MalformedMessage
)

from .config import WorkerConfig

from .tracing import (
    configure_logging,
    generate_trace_id,
    add_trace_context,
    extract_trace_context,
    log_with_trace,
    get_trace_id,
    child_span
)

from .buckets import MemoryBucket, S3Bucket, StoredObject

from .queues import MemoryQueue, SqsQueue, QueueConsumer, QueueMessage, MessageBatch

from .messages import (
    StartMessage,
    StationJobMessage,
    TraceContext,
    encode_message,
    decode_message
)

from .records import (
    ProcessRecord,
    ProcessStatus,
    derive_status,
    apply_dispatch,
    apply_outcome
)

from .process_store import (
    record_key,
    create_process,
    read_process,
    write_process,
    update_process,
    merge_outcome,
    record_dispatch
)

from .asset_utils import asset_key, upload_image, image_links

from .projection import build_process_view

from .providers import (
    Station,
    parse_stations,
    fetch_weather_stations,
    resolve_stations,
    UnsplashPhotoSource,
    PlaceholderPhotoSource,
    build_photo_source
)

from .image_utils import add_text_to_image, render_station_image

__all__ = [
    # Errors
    'StationWorkersError',
    'ConfigurationError',
    'StoreError',
    'StoreUnavailable',
    'PreconditionFailed',
    'ProcessNotFound',
    'MergeConflictError',
    'FetchError',
    'QueueUnavailable',
    'MalformedMessage',
    # Config
    'WorkerConfig',
    # Tracing
    'configure_logging',
    'generate_trace_id',
    'add_trace_context',
    'extract_trace_context',
    'log_with_trace',
    'get_trace_id',
    'child_span',
    # Bindings
    'MemoryBucket',
    'S3Bucket',
    'StoredObject',
    'MemoryQueue',
    'SqsQueue',
    'QueueConsumer',
    'QueueMessage',
    'MessageBatch',
    # Messages
    'StartMessage',
    'StationJobMessage',
    'TraceContext',
    'encode_message',
    'decode_message',
    # Records
    'ProcessRecord',
    'ProcessStatus',
    'derive_status',
    'apply_dispatch',
    'apply_outcome',
    'record_key',
    'create_process',
    'read_process',
    'write_process',
    'update_process',
    'merge_outcome',
    'record_dispatch',
    # Assets
    'asset_key',
    'upload_image',
    'image_links',
    'build_process_view',
    # Providers
    'Station',
    'parse_stations',
    'fetch_weather_stations',
    'resolve_stations',
    'UnsplashPhotoSource',
    'PlaceholderPhotoSource',
    'build_photo_source',
    # Image utils
    'add_text_to_image',
    'render_station_image'
]
