"""
Google OAuth2 authentication and credential management.

Backups are stored in the user's Google Drive with the ``drive.file`` scope, so
the application only sees the files it created. Credentials are stored as JSON
in the settings' auth directory and refreshed without user interaction where
possible. When a sign-in is needed, :class:`AuthExpiredError` is raised and the
caller decides when to run the installed-app flow.
"""

import json
import logging
import threading
from typing import Optional

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google_auth_oauthlib.flow

from . import drive
from ..settings import lib
from ..status import status

DEFAULT_SCOPES = ['https://www.googleapis.com/auth/drive.file', ]


class AuthExpiredError(Exception):
    """Raised when there are no usable credentials and an interactive sign-in is required."""
    pass


def _settings(settings: Optional[lib.SettingsAPI]) -> lib.SettingsAPI:
    return settings if settings is not None else lib.settings


def _remove_creds_file(settings: lib.SettingsAPI) -> None:
    if not settings.creds_path.exists():
        return
    try:
        settings.creds_path.unlink()
        logging.debug(f'Deleted {settings.creds_path}.')
    except OSError as ex:
        logging.warning(f'Could not delete {settings.creds_path}: {ex}')


class AuthManager:
    """Manages OAuth2 credentials with thread-safe refresh.

    Args:
        settings: Settings providing the credential and client secret paths.
            Defaults to the application settings.
    """

    def __init__(self, settings: Optional[lib.SettingsAPI] = None):
        self._lock = threading.Lock()
        self._settings = settings
        self._creds: Optional[google.oauth2.credentials.Credentials] = None

    @property
    def settings(self) -> lib.SettingsAPI:
        return _settings(self._settings)

    def get_valid_credentials(self) -> google.oauth2.credentials.Credentials:
        """
        Return valid credentials without any user interaction.

        Raises:
            AuthExpiredError: if no credentials exist or a full interactive flow is required.
            status.AuthenticationExceptionException: if an auto-refresh fails.
            status.CredsInvalidException: if stored credentials are corrupt.
        """
        with self._lock:
            if self._creds is None:
                creds_path = self.settings.creds_path
                if not creds_path.exists():
                    raise AuthExpiredError('No credentials found; interactive authentication required')
                try:
                    self._creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
                        str(creds_path), scopes=DEFAULT_SCOPES)
                except (ValueError, json.JSONDecodeError) as ex:
                    _remove_creds_file(self.settings)
                    raise status.CredsInvalidException('Failed to load credentials') from ex

            if self._creds.expired:
                if self._creds.refresh_token:
                    try:
                        self._creds.refresh(google.auth.transport.requests.Request())
                        save_creds(self._creds, settings=self.settings)
                    except google.auth.exceptions.RefreshError as ex:
                        # The refresh token was revoked or has expired
                        self._creds = None
                        _remove_creds_file(self.settings)
                        raise AuthExpiredError(f'Refresh token rejected: {ex}') from ex
                    except google.auth.exceptions.GoogleAuthError as ex:
                        raise status.AuthenticationExceptionException(
                            'Failed to auto-refresh credentials') from ex
                else:
                    self._creds = None
                    raise AuthExpiredError('Credentials expired; interactive authentication required')

            return self._creds

    def clear(self) -> None:
        """Forget cached credentials, the cached Drive client and the stored token."""
        with self._lock:
            self._creds = None
            _remove_creds_file(self.settings)
            drive.clear_service()


auth_manager = AuthManager()


def get_creds(settings: Optional[lib.SettingsAPI] = None) -> Optional[google.oauth2.credentials.Credentials]:
    """
    Load stored OAuth2 credentials.

    Returns:
        google.oauth2.credentials.Credentials: The stored credentials, or None if
        there are none or the token file is unreadable (it is then deleted).
    """
    settings = _settings(settings)
    if not settings.creds_path.exists():
        logging.debug('Credentials file not found.')
        return None

    try:
        logging.debug(f'Loading credentials from {settings.creds_path}...')
        creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
            str(settings.creds_path)
        )
        logging.debug(f'Credentials loaded successfully. Scopes={creds.scopes}')
        return creds
    except (ValueError, json.JSONDecodeError) as ex:
        logging.error(f'Failed to load credentials, a new sign-in is required: {ex}')

    _remove_creds_file(settings)
    return None


def save_creds(creds: google.oauth2.credentials.Credentials, settings: Optional[lib.SettingsAPI] = None) -> None:
    """
    Save OAuth2 credentials to the configured token file.

    Args:
        creds (google.oauth2.credentials.Credentials): Credentials to save.
        settings: Settings providing the token path.
    """
    settings = _settings(settings)
    settings.creds_path.parent.mkdir(parents=True, exist_ok=True)
    with open(settings.creds_path, 'w', encoding='utf-8') as token_file:
        token_file.write(creds.to_json())

    logging.debug(f'Credentials saved to {settings.creds_path}.')


def authenticate(settings: Optional[lib.SettingsAPI] = None) -> google.oauth2.credentials.Credentials:
    """
    Return usable credentials, running the OAuth installed-app flow if needed.

    Cached credentials are reused when their scopes match; expired ones are
    refreshed first. The flow opens the system browser and blocks until the
    local redirect server receives a response.

    Returns:
        google.oauth2.credentials.Credentials: The authenticated credentials.

    Raises:
        status.ClientSecretNotFoundException: If the client secret file is not found.
        status.AuthenticationExceptionException: If authentication fails or is cancelled.
        status.CredsInvalidException: If credentials returned are invalid.
    """
    settings = _settings(settings)
    scopes = DEFAULT_SCOPES

    creds = get_creds(settings=settings)
    if creds and not set(scopes).issubset(set(creds.scopes or [])):
        logging.debug('Cached credentials have mismatched scopes. Re-authentication required.')
        creds = None

    if creds and creds.valid:
        logging.debug('Cached credentials are valid.')
        return creds

    if creds and creds.expired and creds.refresh_token:
        logging.debug('Cached credentials expired; attempting refresh.')
        try:
            creds.refresh(google.auth.transport.requests.Request())
            logging.debug('Successfully refreshed credentials.')
            save_creds(creds, settings=settings)
            return creds
        except google.auth.exceptions.RefreshError as ex:
            logging.error(f'Refresh failed: {ex}, attempting re-authentication.')

    if not settings.client_secret_path.exists():
        raise status.ClientSecretNotFoundException
    if not settings.client_secret_data:
        settings.load_client_secret()
    settings.validate_client_secret()
    client_config = settings.get_section('client_secret')

    logging.debug('Starting new OAuth flow...')
    flow = google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(client_config, scopes=scopes)
    try:
        creds = flow.run_local_server(port=0)
    except Exception as ex:
        raise status.AuthenticationExceptionException(f'OAuth flow failed: {ex}') from ex

    if not creds:
        raise status.AuthenticationExceptionException('Authentication was cancelled or no credentials obtained.')
    if not creds.valid:
        raise status.CredsInvalidException('Invalid credentials returned from OAuth flow.')

    logging.debug('OAuth flow completed.')
    save_creds(creds, settings=settings)
    return creds


def sign_out(settings: Optional[lib.SettingsAPI] = None) -> None:
    """
    Delete stored credentials to sign out the user.
    """
    settings = _settings(settings)
    if settings.creds_path.exists():
        _remove_creds_file(settings)
        logging.debug('Successfully signed out.')
    else:
        logging.debug('No credentials file found. No action taken.')
    drive.clear_service()
    if settings is auth_manager.settings:
        auth_manager.clear()
