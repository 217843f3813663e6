import logging
import unittest
from unittest.mock import MagicMock, patch

import httplib2
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions
from googleapiclient.errors import HttpError

from clients import google_api
from survey.errors import ConfigurationError, SurveyError

# Disable logging for tests
logging.disable(logging.CRITICAL)


def http_error(status, message='Something went wrong'):
  resp = MagicMock(status=status, reason=message)
  content = ('{"error": {"message": "%s"}}' % message).encode('utf-8')
  return HttpError(resp, content)


class ToApiExceptionTest(unittest.TestCase):

  def test_maps_status_codes(self):
    self.assertIsInstance(
        google_api.to_api_exception(http_error(429)),
        google_exceptions.TooManyRequests,
    )
    self.assertIsInstance(
        google_api.to_api_exception(http_error(503)),
        google_exceptions.ServiceUnavailable,
    )
    error = google_api.to_api_exception(http_error(404, 'Form not found'))
    self.assertIsInstance(error, google_exceptions.NotFound)
    self.assertEqual(error.code, 404)
    self.assertIn('Form not found', error.message)


@patch('clients.google_api.time.sleep')
class RetryingExecutorTest(unittest.TestCase):

  def test_success_on_first_attempt(self, mock_sleep):
    request = MagicMock()
    request.execute.return_value = {'ok': True}
    result = google_api.RetryingExecutor().execute(request)
    self.assertEqual(result, {'ok': True})
    mock_sleep.assert_not_called()

  def test_retries_quota_errors(self, mock_sleep):
    """Tests that a 429 is retried with backoff and then succeeds."""
    request = MagicMock()
    request.execute.side_effect = [
        http_error(429, 'Quota exceeded'),
        http_error(503, 'Backend unavailable'),
        {'ok': True},
    ]
    executor = google_api.RetryingExecutor(
        retry_attempts=4, initial_backoff_delay=2, max_backoff_delay=64
    )
    self.assertEqual(executor.execute(request), {'ok': True})
    self.assertEqual(request.execute.call_count, 3)
    self.assertEqual(mock_sleep.call_count, 2)
    first_delay = mock_sleep.call_args_list[0][0][0]
    second_delay = mock_sleep.call_args_list[1][0][0]
    self.assertTrue(2 <= first_delay <= 3)
    self.assertTrue(4 <= second_delay <= 5)

  def test_does_not_retry_client_errors(self, mock_sleep):
    request = MagicMock()
    request.execute.side_effect = http_error(404, 'Form not found')
    with self.assertRaises(google_api.GoogleApiError) as cm:
      google_api.RetryingExecutor().execute(request, 'Get form')
    self.assertEqual(cm.exception.status, 404)
    self.assertIn('Get form', str(cm.exception))
    self.assertEqual(request.execute.call_count, 1)
    mock_sleep.assert_not_called()

  def test_gives_up_after_all_attempts(self, mock_sleep):
    request = MagicMock()
    request.execute.side_effect = http_error(503)
    with self.assertRaises(google_api.GoogleApiError) as cm:
      google_api.RetryingExecutor(retry_attempts=3).execute(request)
    self.assertEqual(cm.exception.status, 503)
    self.assertEqual(request.execute.call_count, 3)
    self.assertEqual(mock_sleep.call_count, 2)


  def test_rejected_credentials(self, mock_sleep):
    request = MagicMock()
    request.execute.side_effect = google_auth_exceptions.RefreshError(
        'invalid_grant'
    )
    with self.assertRaises(ConfigurationError) as cm:
      google_api.RetryingExecutor().execute(request, 'Get form')
    self.assertIn('invalid_grant', str(cm.exception))
    self.assertEqual(request.execute.call_count, 1)
    mock_sleep.assert_not_called()

  def test_unreachable_service(self, mock_sleep):
    for error in (
        google_auth_exceptions.TransportError('dns'),
        httplib2.ServerNotFoundError('Unable to find the server'),
        ConnectionResetError('reset by peer'),
    ):
      request = MagicMock()
      request.execute.side_effect = error
      with self.assertRaises(SurveyError):
        google_api.RetryingExecutor().execute(request, 'List responses')
    mock_sleep.assert_not_called()


class LoadCredentialsTest(unittest.TestCase):

  @patch('clients.google_api.service_account.Credentials')
  def test_service_account_file(self, mock_credentials):
    google_api.load_credentials('key.json', google_api.SHEETS_SCOPES)
    mock_credentials.from_service_account_file.assert_called_once_with(
        'key.json', scopes=list(google_api.SHEETS_SCOPES)
    )

  @patch('clients.google_api.service_account.Credentials')
  def test_unreadable_file(self, mock_credentials):
    mock_credentials.from_service_account_file.side_effect = (
        FileNotFoundError('key.json')
    )
    with self.assertRaises(ConfigurationError):
      google_api.load_credentials('key.json', google_api.SHEETS_SCOPES)

  @patch('clients.google_api.google.auth.default')
  def test_application_default_credentials(self, mock_default):
    credentials = MagicMock()
    mock_default.return_value = (credentials, 'project')
    self.assertIs(
        google_api.load_credentials(None, google_api.FORMS_SCOPES), credentials
    )

  @patch('clients.google_api.google.auth.default')
  def test_no_credentials_available(self, mock_default):
    mock_default.side_effect = google_auth_exceptions.DefaultCredentialsError(
        'none'
    )
    with self.assertRaises(ConfigurationError):
      google_api.load_credentials(None, google_api.FORMS_SCOPES)


if __name__ == '__main__':
  unittest.main()
