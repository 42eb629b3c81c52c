"""
Configuration for Station Snapshot workers
"""

from .errors import ConfigurationError


# Completion accounting policies
COMPLETION_POLICIES = ('images', 'reported')

# Photo sources the image processor can use
PHOTO_SOURCES = ('unsplash', 'placeholder')

STORAGE_BACKENDS = ('memory', 'aws')

DEFAULT_IMAGE_FEED_URL = 'https://api.unsplash.com/photos/random'


def _read(env, name, default=None):
    value = getattr(env, name, None)
    if value is None or value == '':
        return default
    return value


def _read_int(env, name, default, minimum=None):
    raw = _read(env, name, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _read_float(env, name, default, minimum=0.0):
    raw = _read(env, name, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _read_choice(env, name, default, choices):
    value = str(_read(env, name, default)).strip().lower()
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


class WorkerConfig:
    """
    Configuration loaded from the worker environment

    The environment object carries both the bindings (queues, buckets) and
    plain settings as attributes. Values are validated here so a bad
    setting stops a handler before it consumes any message.
    """

    def __init__(self, env):
        self.STORAGE_BACKEND = _read_choice(env, 'STORAGE_BACKEND', 'memory', STORAGE_BACKENDS)
        self.METADATA_CONTAINER = _read(env, 'METADATA_CONTAINER', 'metadata')
        self.IMAGES_CONTAINER = _read(env, 'IMAGES_CONTAINER', 'images')
        self.START_QUEUE_NAME = _read(env, 'START_QUEUE_NAME', 'start-queue')
        self.IMAGE_QUEUE_NAME = _read(env, 'IMAGE_QUEUE_NAME', 'image-queue')

        self.PHOTO_SOURCE = _read_choice(env, 'PHOTO_SOURCE', 'unsplash', PHOTO_SOURCES)
        self.UNSPLASH_ACCESS_KEY = _read(env, 'UNSPLASH_ACCESS_KEY')
        self.IMAGE_FEED_URL = _read(env, 'IMAGE_FEED_URL', DEFAULT_IMAGE_FEED_URL)

        self.WEATHER_FEED_URL = _read(env, 'WEATHER_FEED_URL')
        self.STATION_COUNT = _read_int(env, 'STATION_COUNT', 1, minimum=0)
        self.MAX_STATIONS = _read_int(env, 'MAX_STATIONS', 10, minimum=0)
        self.FETCH_TIMEOUT = _read_float(env, 'FETCH_TIMEOUT', 30.0, minimum=0.1)

        self.MERGE_MAX_ATTEMPTS = _read_int(env, 'MERGE_MAX_ATTEMPTS', 8, minimum=1)
        self.MERGE_RETRY_DELAY = _read_float(env, 'MERGE_RETRY_DELAY', 0.05)
        self.MERGE_MAX_DELAY = _read_float(env, 'MERGE_MAX_DELAY', 1.0)
        self.COMPLETION_POLICY = _read_choice(env, 'COMPLETION_POLICY', 'images', COMPLETION_POLICIES)

        self.LINK_TTL_SECONDS = _read_int(env, 'LINK_TTL_SECONDS', 3600, minimum=1)
        self.PUBLIC_BASE_URL = _read(env, 'PUBLIC_BASE_URL')

        self.QUEUE_BATCH_SIZE = _read_int(env, 'QUEUE_BATCH_SIZE', 10, minimum=1)
        self.QUEUE_MAX_RETRIES = _read_int(env, 'QUEUE_MAX_RETRIES', 5, minimum=1)
        self.QUEUE_RETRY_DELAY = _read_float(env, 'QUEUE_RETRY_DELAY', 1.0)
        self.WORKER_CONCURRENCY = _read_int(env, 'WORKER_CONCURRENCY', 4, minimum=1)

        self.HOST = _read(env, 'HOST', '0.0.0.0')
        self.PORT = _read_int(env, 'PORT', 8080, minimum=0)
        self.LOG_LEVEL = str(_read(env, 'LOG_LEVEL', 'INFO')).upper()

    def require(self, name):
        """
        Return a setting that must be present

        Raises:
            ConfigurationError: If the setting is unset or empty
        """
        value = getattr(self, name, None)
        if value in (None, ''):
            raise ConfigurationError(f"{name} is missing from configuration.")
        return value

    def station_limit(self, available):
        """Number of jobs to dispatch for `available` stations."""
        return max(0, min(available, self.MAX_STATIONS))
