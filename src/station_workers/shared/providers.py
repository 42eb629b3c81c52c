"""
External providers for Station Snapshot workers

- Weather station feed: sizes the fan-out (one job per station)
- Photo sources: Unsplash random photos, or locally generated
  placeholders for offline runs

Every provider failure surfaces as FetchError.
"""

import asyncio
import io
from dataclasses import dataclass
from typing import Optional

import aiohttp

from .errors import ConfigurationError, FetchError


USER_AGENT = 'station-snapshots/1.0'


@dataclass
class Station:
    number: int
    station_id: Optional[str] = None
    name: Optional[str] = None
    temperature: Optional[float] = None

    @property
    def label(self):
        """Text drawn onto the station image"""
        parts = [f"Station {self.number}"]
        if self.name:
            parts.append(self.name)
        if self.temperature is not None:
            parts.append(f"{self.temperature:.1f}°C")
        return '\n'.join(parts)


async def _get(session, url, headers=None, as_json=True):
    try:
        async with session.get(url, headers=headers) as response:
            if response.status != 200:
                raise FetchError(f"GET {url} returned status {response.status}")
            if as_json:
                return await response.json(content_type=None)
            return await response.read()
    except asyncio.TimeoutError as e:
        raise FetchError(f"GET {url} timed out") from e
    except aiohttp.ClientError as e:
        raise FetchError(f"GET {url} failed: {e}") from e
    except ValueError as e:
        raise FetchError(f"GET {url} returned invalid JSON: {e}") from e


def _first(entry, *names):
    for name in names:
        if entry.get(name) not in (None, ''):
            return entry[name]
    return None


def parse_stations(data):
    """
    Parse a weather feed into stations, numbered from 1 in feed order

    Accepts the Buienradar layout (actual.stationmeasurements), an object
    with a "stations" list, or a bare list.

    Raises:
        FetchError: If the document has no station list
    """
    if isinstance(data, dict):
        entries = (data.get('actual') or {}).get('stationmeasurements')
        if entries is None:
            entries = data.get('stations')
    else:
        entries = data

    if not isinstance(entries, list):
        raise FetchError('Weather feed has no station list')

    stations = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        temperature = _first(entry, 'temperature', 'temp')
        try:
            temperature = float(temperature) if temperature is not None else None
        except (TypeError, ValueError):
            temperature = None
        station_id = _first(entry, 'stationid', 'stationId', 'id')
        stations.append(Station(
            number=len(stations) + 1,
            station_id=str(station_id) if station_id is not None else None,
            name=_first(entry, 'stationname', 'stationName', 'name'),
            temperature=temperature
        ))
    return stations


async def fetch_weather_stations(feed_url, timeout=30.0, session=None):
    """
    Fetch the station list from a weather feed

    Args:
        feed_url: JSON feed URL
        timeout: Total request timeout in seconds
        session: Optional aiohttp.ClientSession to reuse

    Returns:
        list[Station]
    """
    if session is not None:
        return parse_stations(await _get(session, feed_url))

    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as own:
        return parse_stations(await _get(own, feed_url))


async def resolve_stations(config, session=None):
    """
    Decide which stations a process fans out to

    Uses the weather feed when WEATHER_FEED_URL is set, otherwise
    STATION_COUNT generic stations. Capped at MAX_STATIONS.
    """
    if config.WEATHER_FEED_URL:
        stations = await fetch_weather_stations(config.WEATHER_FEED_URL, config.FETCH_TIMEOUT, session)
    else:
        stations = [Station(number=i) for i in range(1, config.STATION_COUNT + 1)]
    return stations[:config.station_limit(len(stations))]


class UnsplashPhotoSource:
    """Random photo from the Unsplash API"""

    def __init__(self, access_key, feed_url, timeout=30.0):
        if not access_key:
            raise ConfigurationError('UNSPLASH_ACCESS_KEY is missing from configuration.')
        if not feed_url:
            raise ConfigurationError('IMAGE_FEED_URL configuration is empty.')
        self.access_key = access_key
        self.feed_url = feed_url
        self.timeout = timeout

    def _headers(self):
        return {
            'Authorization': f"Client-ID {self.access_key}",
            'Accept-Version': 'v1',
            'User-Agent': USER_AGENT
        }

    async def fetch(self, station):
        """
        Download one random photo

        Returns:
            bytes: Encoded image as served by Unsplash
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            photo = await _get(session, self.feed_url, headers=self._headers())
            links = photo.get('links') if isinstance(photo, dict) else None
            download_url = (links or {}).get('download')
            if not download_url:
                raise FetchError('No valid image found from Unsplash.')
            return await _get(session, download_url, headers=self._headers(), as_json=False)


class PlaceholderPhotoSource:
    """Generated gradient backgrounds, for running without network access"""

    def __init__(self, width=800, height=600):
        self.width = width
        self.height = height

    async def fetch(self, station):
        from PIL import Image, ImageDraw

        hue = (station.number * 47) % 256
        img = Image.new('RGB', (self.width, self.height))
        draw = ImageDraw.Draw(img)
        for y in range(self.height):
            shade = int(255 * y / max(1, self.height - 1))
            draw.line([(0, y), (self.width, y)], fill=(hue, 255 - shade // 2, shade))

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        return buffer.getvalue()


def build_photo_source(config):
    """
    Photo source selected by PHOTO_SOURCE

    Raises:
        ConfigurationError: If the Unsplash source is selected without a key
    """
    if config.PHOTO_SOURCE == 'placeholder':
        return PlaceholderPhotoSource()
    return UnsplashPhotoSource(config.UNSPLASH_ACCESS_KEY, config.IMAGE_FEED_URL, config.FETCH_TIMEOUT)
