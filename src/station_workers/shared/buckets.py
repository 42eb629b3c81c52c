"""
Object storage bindings for Station Snapshot workers

Both bindings expose the same small async surface, modelled on an R2
bucket binding:

    get(key)                      -> StoredObject or None
    put(key, body, ...)           -> etag (conditional when asked)
    delete(key)
    signed_url(key, expires_in)   -> time-bounded read-only link

MemoryBucket keeps everything in process (local runs and tests).
S3Bucket talks to S3 or any S3-compatible store (R2, MinIO) through boto3.
"""

import asyncio
import hashlib
import hmac
import secrets
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import quote, urlencode

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import PreconditionFailed, StoreError, StoreUnavailable


@dataclass
class StoredObject:
    """A bucket object together with its version token"""

    key: str
    body: bytes
    etag: str
    content_type: str | None = None
    uploaded: datetime | None = None
    custom_metadata: dict = field(default_factory=dict)

    def text(self, encoding='utf-8'):
        return self.body.decode(encoding)


def _to_bytes(body):
    if isinstance(body, str):
        return body.encode('utf-8')
    return bytes(body)


class MemoryBucket:
    """
    In-process bucket with compare-and-swap writes

    Every successful write gets a fresh opaque etag. Signed links are
    HMAC-SHA256 over bucket, key and expiry, and are served by the web
    worker under /assets/{bucket}/{key}.
    """

    def __init__(self, name, signing_key=None, public_base_url=None):
        self.name = name
        self.public_base_url = (public_base_url or '').rstrip('/')
        self._signing_key = (signing_key or secrets.token_hex(32)).encode('utf-8')
        self._objects = {}
        self._lock = threading.Lock()

    async def get(self, key):
        with self._lock:
            return self._objects.get(key)

    async def put(self, key, body, content_type=None, etag_matches=None,
                  only_if_absent=False, custom_metadata=None):
        """
        Store an object, optionally only if a precondition holds

        Args:
            key: Object key
            body: bytes or str
            content_type: MIME type to record
            etag_matches: Write only if the current etag equals this value
            only_if_absent: Write only if no object exists under key

        Returns:
            str: The new etag

        Raises:
            PreconditionFailed: If a precondition does not hold
        """
        data = _to_bytes(body)
        with self._lock:
            current = self._objects.get(key)
            if only_if_absent and current is not None:
                raise PreconditionFailed(key, current.etag)
            if etag_matches is not None and (current is None or current.etag != etag_matches):
                raise PreconditionFailed(key, etag_matches)

            etag = uuid.uuid4().hex
            self._objects[key] = StoredObject(
                key=key,
                body=data,
                etag=etag,
                content_type=content_type,
                uploaded=datetime.now(timezone.utc),
                custom_metadata=dict(custom_metadata or {})
            )
            return etag

    async def delete(self, key):
        with self._lock:
            self._objects.pop(key, None)

    def keys(self):
        with self._lock:
            return sorted(self._objects)

    def _signature(self, key, expires):
        payload = f"{self.name}/{key}:{expires}".encode('utf-8')
        return hmac.new(self._signing_key, payload, hashlib.sha256).hexdigest()

    def signed_url(self, key, expires_in, now=None):
        """Build a read-only link to key that stops working after expires_in seconds"""
        issued = int(now if now is not None else time.time())
        expires = issued + int(expires_in)
        query = urlencode({'expires': expires, 'signature': self._signature(key, expires)})
        return f"{self.public_base_url}/assets/{quote(self.name)}/{quote(key)}?{query}"

    def verify_signature(self, key, expires, signature, now=None):
        """Check a link produced by signed_url()"""
        try:
            expires = int(expires)
        except (TypeError, ValueError):
            return False
        current = now if now is not None else time.time()
        if expires < current:
            return False
        return hmac.compare_digest(self._signature(key, expires), signature or '')


# Error codes S3 (and R2) use for a rejected precondition
_PRECONDITION_CODES = {'PreconditionFailed', 'ConditionalRequestConflict', '412', '409'}
_MISSING_CODES = {'NoSuchKey', '404', 'NotFound'}
_TRANSIENT_CODES = {
    'SlowDown', 'Throttling', 'ThrottlingException', 'RequestTimeout',
    'ServiceUnavailable', 'InternalError', '500', '503'
}


def _error_code(error):
    return str(error.response.get('Error', {}).get('Code', ''))


def _http_status(error):
    return error.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0) or 0


class S3Bucket:
    """
    S3-compatible bucket binding

    Works with AWS S3, Cloudflare R2, MinIO and LocalStack. Conditional
    writes use the IfMatch / IfNoneMatch headers on PutObject. boto3 is
    blocking, so every call runs in a worker thread.
    """

    def __init__(self, bucket, client=None, endpoint_url=None, region='us-east-1'):
        self.name = bucket
        if client is None:
            client_kwargs = {
                'service_name': 's3',
                'region_name': region,
                'config': Config(signature_version='s3v4'),
            }
            if endpoint_url:
                client_kwargs['endpoint_url'] = endpoint_url
            client = boto3.client(**client_kwargs)
        self.client = client

    def _translate(self, error, key):
        if isinstance(error, BotoCoreError):
            return StoreUnavailable(f"S3 request for {self.name}/{key} failed: {error}")
        code = _error_code(error)
        if code in _PRECONDITION_CODES:
            return PreconditionFailed(key)
        if code in _TRANSIENT_CODES or _http_status(error) >= 500:
            return StoreUnavailable(f"S3 {code} for {self.name}/{key}")
        return StoreError(f"S3 {code} for {self.name}/{key}: {error}")

    def _get_object(self, key):
        try:
            response = self.client.get_object(Bucket=self.name, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return None
            raise
        return StoredObject(
            key=key,
            body=response['Body'].read(),
            etag=response['ETag'],
            content_type=response.get('ContentType'),
            uploaded=response.get('LastModified'),
            custom_metadata=response.get('Metadata', {})
        )

    async def get(self, key):
        try:
            return await asyncio.to_thread(self._get_object, key)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, key) from e

    async def put(self, key, body, content_type=None, etag_matches=None,
                  only_if_absent=False, custom_metadata=None):
        params = {'Bucket': self.name, 'Key': key, 'Body': _to_bytes(body)}
        if content_type:
            params['ContentType'] = content_type
        if custom_metadata:
            params['Metadata'] = {k: str(v) for k, v in custom_metadata.items()}
        if etag_matches is not None:
            params['IfMatch'] = etag_matches
        if only_if_absent:
            params['IfNoneMatch'] = '*'

        try:
            response = await asyncio.to_thread(self.client.put_object, **params)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, key) from e
        return response['ETag']

    async def delete(self, key):
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._translate(e, key) from e

    def signed_url(self, key, expires_in, now=None):
        return self.client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.name, 'Key': key},
            ExpiresIn=int(expires_in)
        )
