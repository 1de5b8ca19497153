"""Google Drive transport for store backups.

Uploads, lists and downloads whole store files through the Drive v3 API. The
transport treats store files as opaque bytes; it neither opens nor checks them.
Network failures surface as :class:`ETracker.status.status.ServiceUnavailableException`
and are not retried here.
"""

import dataclasses
import datetime
import io
import logging
import socket
import ssl
from typing import Any, Callable, List, Optional

import google.oauth2.credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload

from ..status import status

DEFAULT_PREFIX: str = 'expense_backup_'
MIME_TYPE: str = 'application/octet-stream'
PAGE_SIZE: int = 100
CHUNK_SIZE: int = 1024 * 1024

# Cached Drive API client to avoid repeated discovery costs
_cached_service: Any = None
_cached_token: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class RemoteBackup:
    """A backup file stored in Google Drive."""
    id: str
    name: str
    modified_time: str
    size: int


def backup_filename(prefix: str = DEFAULT_PREFIX, day: Optional[datetime.date] = None) -> str:
    """Return the Drive file name for a backup made on ``day`` (default: today, UTC)."""
    if day is None:
        day = datetime.datetime.now(datetime.timezone.utc).date()
    return f'{prefix}{day.isoformat()}.db'


def clear_service() -> None:
    """
    Clears the cached Drive API client.
    """
    global _cached_service, _cached_token

    if _cached_service is not None:
        try:
            _cached_service.close()
        except (AttributeError, OSError) as ex:
            logging.debug(f'Failed closing cached Drive service client: {ex}')

    _cached_service = None
    _cached_token = None


def get_service(creds: google.oauth2.credentials.Credentials) -> Any:
    """
    Builds (or returns cached) Google Drive service client.

    The cached client is rebuilt when called with a different access token.

    Raises:
        status.ServiceUnavailableException: If the client cannot be built.
    """
    global _cached_service, _cached_token

    token = getattr(creds, 'token', None)
    if _cached_service is not None and token == _cached_token:
        return _cached_service

    try:
        service: Any = build('drive', 'v3', credentials=creds, cache_discovery=False)
    except (HttpError, socket.timeout, ssl.SSLError, OSError) as ex:
        raise status.ServiceUnavailableException(f'Could not create the Drive client: {ex}') from ex
    logging.debug('Google Drive service client created successfully.')

    _cached_service = service
    _cached_token = token
    return service


def _describe_http_error(ex: HttpError, action: str) -> str:
    stat: Optional[int] = ex.resp.status if ex.resp else None
    if stat == 401:
        return f'{action}: the access token was rejected (HTTP 401).'
    if stat == 403:
        return f'{action}: access denied (HTTP 403).'
    if stat == 404:
        return f'{action}: file not found (HTTP 404).'
    return f'{action}: {ex}'


class DriveTransport:
    """Upload, list and download backup files in Google Drive.

    Args:
        service_factory: Callable returning a Drive v3 resource for the given
            credentials. Defaults to :func:`get_service`.
    """

    def __init__(self, service_factory: Optional[Callable[[Any], Any]] = None) -> None:
        self._service_factory = service_factory or get_service

    def _call(self, action: str, func: Callable[[], Any]) -> Any:
        try:
            return func()
        except HttpError as ex:
            raise status.ServiceUnavailableException(_describe_http_error(ex, action)) from ex
        except socket.timeout as ex:
            raise status.ServiceUnavailableException(f'{action}: timeout error: {ex}') from ex
        except ssl.SSLError as ex:
            raise status.ServiceUnavailableException(f'{action}: SSL error: {ex}') from ex
        except OSError as ex:
            raise status.ServiceUnavailableException(f'{action}: {ex}') from ex

    def upload(self, filename: str, data: bytes, creds: Any) -> str:
        """Upload ``data`` as a new Drive file and return its id.

        Raises:
            status.ServiceUnavailableException: If the request fails.
        """
        service = self._service_factory(creds)
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=MIME_TYPE, resumable=False)
        metadata = {'name': filename, 'mimeType': MIME_TYPE}

        logging.debug(f'Uploading {filename} ({len(data)} bytes) to Google Drive...')
        result = self._call(
            'Upload failed',
            lambda: service.files().create(body=metadata, media_body=media, fields='id').execute()
        )
        remote_id = result.get('id') if result else None
        if not remote_id:
            raise status.ServiceUnavailableException('Upload failed: no file id returned.')

        logging.info(f'Backup uploaded to Google Drive: {filename} ({remote_id}).')
        return remote_id

    def list(self, creds: Any, name_prefix: str = DEFAULT_PREFIX) -> List[RemoteBackup]:
        """Return backups whose name starts with ``name_prefix``, newest first.

        Raises:
            status.ServiceUnavailableException: If the request fails.
        """
        service = self._service_factory(creds)
        escaped = name_prefix.replace('\\', '\\\\').replace("'", "\\'")
        query = f"name contains '{escaped}' and trashed = false"

        backups: List[RemoteBackup] = []
        page_token: Optional[str] = None
        while True:
            result = self._call(
                'Listing backups failed',
                lambda: service.files().list(
                    q=query,
                    spaces='drive',
                    pageSize=PAGE_SIZE,
                    pageToken=page_token,
                    fields='nextPageToken, files(id, name, modifiedTime, size)',
                ).execute()
            )
            for item in result.get('files', []):
                name = item.get('name', '')
                # "contains" matches word prefixes anywhere in the name
                if not name.startswith(name_prefix):
                    continue
                backups.append(RemoteBackup(
                    id=item['id'],
                    name=name,
                    modified_time=item.get('modifiedTime', ''),
                    size=int(item.get('size', 0) or 0),
                ))
            page_token = result.get('nextPageToken')
            if not page_token:
                break

        backups.sort(key=lambda b: b.modified_time, reverse=True)
        logging.debug(f'Found {len(backups)} backups in Google Drive.')
        return backups

    def download(self, remote_id: str, creds: Any) -> bytes:
        """Return the contents of a Drive file.

        Raises:
            status.ServiceUnavailableException: If the request fails.
        """
        service = self._service_factory(creds)
        request = service.files().get_media(fileId=remote_id)
        buffer = io.BytesIO()

        def _download() -> None:
            downloader = MediaIoBaseDownload(buffer, request, chunksize=CHUNK_SIZE)
            done = False
            while not done:
                progress, done = downloader.next_chunk()
                if progress:
                    logging.debug(f'Downloaded {int(progress.progress() * 100)}% of {remote_id}.')

        self._call('Download failed', _download)
        data = buffer.getvalue()
        logging.info(f'Downloaded backup {remote_id} ({len(data)} bytes).')
        return data
