import json
from unittest.mock import MagicMock, patch

import google.auth.exceptions
import google.oauth2.credentials as cred_mod
import google_auth_oauthlib.flow

from ETracker.core import auth
from ETracker.status.status import (
    AuthenticationExceptionException,
    ClientSecretNotFoundException,
    CredsInvalidException,
)
from tests.base import BaseTestCase

DUMMY_SECRET = {
    'installed': {
        'client_id': 'dummy',
        'project_id': 'dummy',
        'client_secret': 'dummy',
        'auth_uri': 'https://example',
        'token_uri': 'https://example',
    }
}


class DummyCreds:
    def __init__(self, expired=False, refresh_token='rt', refresh_error=None):
        self.expired = expired
        self.refresh_token = refresh_token
        self.refresh_error = refresh_error
        self.scopes = auth.DEFAULT_SCOPES
        self.refreshed = False

    @property
    def valid(self):
        return not self.expired

    def refresh(self, request):
        if self.refresh_error:
            raise self.refresh_error
        self.expired = False
        self.refreshed = True

    def to_json(self):
        return json.dumps({'token': 'refreshed'})


def patch_loader(creds):
    return patch.object(
        cred_mod.Credentials,
        'from_authorized_user_file',
        new=classmethod(lambda cls, f, scopes=None: creds)
    )


class TestAuthManager(BaseTestCase):
    """Unit tests for the AuthManager behavior."""

    def setUp(self) -> None:
        super().setUp()
        self.manager = auth.AuthManager(settings=self.settings)

    def _write_token(self):
        self.settings.creds_path.write_text(json.dumps({'token': 't'}), encoding='utf-8')

    def test_missing_credentials_raises_AuthExpiredError(self):
        with self.assertRaises(auth.AuthExpiredError):
            self.manager.get_valid_credentials()

    def test_invalid_credentials_file_raises_CredsInvalidException(self):
        self.settings.creds_path.write_text('not a json', encoding='utf-8')
        with self.assertRaises(CredsInvalidException):
            self.manager.get_valid_credentials()
        self.assertFalse(self.settings.creds_path.exists())

    def test_valid_credentials_are_returned(self):
        dummy = DummyCreds()
        with patch_loader(dummy):
            self._write_token()
            self.assertIs(self.manager.get_valid_credentials(), dummy)
        self.assertFalse(dummy.refreshed)

    def test_auto_refresh_succeeds(self):
        dummy = DummyCreds(expired=True)
        with patch_loader(dummy):
            self._write_token()
            result = self.manager.get_valid_credentials()
        self.assertIs(result, dummy)
        self.assertTrue(dummy.refreshed)
        saved = json.loads(self.settings.creds_path.read_text(encoding='utf-8'))
        self.assertEqual(saved, {'token': 'refreshed'})

    def test_no_refresh_token_raises_AuthExpiredError(self):
        dummy = DummyCreds(expired=True, refresh_token=None)
        with patch_loader(dummy):
            self._write_token()
            with self.assertRaises(auth.AuthExpiredError):
                self.manager.get_valid_credentials()

    def test_revoked_refresh_token_requires_sign_in(self):
        dummy = DummyCreds(expired=True, refresh_error=google.auth.exceptions.RefreshError('revoked'))
        with patch_loader(dummy):
            self._write_token()
            with self.assertRaises(auth.AuthExpiredError):
                self.manager.get_valid_credentials()
        self.assertFalse(self.settings.creds_path.exists())

    def test_refresh_failure_raises_AuthenticationExceptionException(self):
        dummy = DummyCreds(expired=True, refresh_error=google.auth.exceptions.TransportError('offline'))
        with patch_loader(dummy):
            self._write_token()
            with self.assertRaises(AuthenticationExceptionException):
                self.manager.get_valid_credentials()
        self.assertTrue(self.settings.creds_path.exists())

    def test_clear(self):
        self._write_token()
        self.manager.clear()
        self.assertFalse(self.settings.creds_path.exists())
        with self.assertRaises(auth.AuthExpiredError):
            self.manager.get_valid_credentials()


class TestAuthFunctions(BaseTestCase):

    def test_get_creds_without_token(self):
        self.assertIsNone(auth.get_creds(settings=self.settings))

    def test_get_creds_with_corrupt_token(self):
        self.settings.creds_path.write_text('{', encoding='utf-8')
        self.assertIsNone(auth.get_creds(settings=self.settings))
        self.assertFalse(self.settings.creds_path.exists())

    def test_save_creds(self):
        auth.save_creds(DummyCreds(), settings=self.settings)
        self.assertEqual(
            json.loads(self.settings.creds_path.read_text(encoding='utf-8')),
            {'token': 'refreshed'}
        )

    def test_sign_out(self):
        self.settings.creds_path.write_text('{}', encoding='utf-8')
        auth.sign_out(settings=self.settings)
        self.assertFalse(self.settings.creds_path.exists())
        auth.sign_out(settings=self.settings)

    def test_sign_out_drops_cached_drive_client(self):
        with patch.object(auth.drive, 'clear_service') as clear_service:
            auth.sign_out(settings=self.settings)
        clear_service.assert_called()

    def test_authenticate_requires_client_secret(self):
        with self.assertRaises(ClientSecretNotFoundException):
            auth.authenticate(settings=self.settings)

    def test_authenticate_runs_installed_app_flow(self):
        self.settings.set_section('client_secret', DUMMY_SECRET)
        creds = DummyCreds()
        flow = MagicMock()
        flow.run_local_server.return_value = creds

        with patch.object(
                google_auth_oauthlib.flow.InstalledAppFlow, 'from_client_config', return_value=flow
        ) as from_config:
            result = auth.authenticate(settings=self.settings)

        self.assertIs(result, creds)
        from_config.assert_called_once_with(DUMMY_SECRET, scopes=auth.DEFAULT_SCOPES)
        flow.run_local_server.assert_called_once_with(port=0)
        self.assertTrue(self.settings.creds_path.exists())

    def test_authenticate_flow_failure(self):
        self.settings.set_section('client_secret', DUMMY_SECRET)
        flow = MagicMock()
        flow.run_local_server.side_effect = RuntimeError('browser closed')

        with patch.object(google_auth_oauthlib.flow.InstalledAppFlow, 'from_client_config', return_value=flow):
            with self.assertRaises(AuthenticationExceptionException):
                auth.authenticate(settings=self.settings)
        self.assertFalse(self.settings.creds_path.exists())

    def test_authenticate_reuses_valid_token(self):
        creds = DummyCreds()
        self.settings.creds_path.write_text('{}', encoding='utf-8')
        with patch_loader(creds), patch.object(
                google_auth_oauthlib.flow.InstalledAppFlow, 'from_client_config'
        ) as from_config:
            self.assertIs(auth.authenticate(settings=self.settings), creds)
        from_config.assert_not_called()
