# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Shared plumbing for the Google Sheets and Google Forms API clients.
"""

import logging
import random
import time
from typing import Any, Optional, Sequence

import google.auth
import httplib2
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions
from google.oauth2 import service_account
from googleapiclient import discovery
from googleapiclient import errors as googleapiclient_errors

from survey.errors import ConfigurationError, SurveyError


SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)
FORMS_SCOPES = (
    "https://www.googleapis.com/auth/forms.body",
    "https://www.googleapis.com/auth/forms.responses.readonly",
)

# The maximum number of times an API call is attempted.
MAX_API_RETRIES = 4
# Constants for the exponential backoff delay, in seconds.
INITIAL_BACKOFF_DELAY = 2
MAX_BACKOFF_DELAY = 64

_RETRYABLE_ERRORS = (
    google_exceptions.TooManyRequests,
    google_exceptions.ServiceUnavailable,
)


class GoogleApiError(SurveyError):
  """A Google API call failed."""

  def __init__(self, message: str, status: Optional[int] = None):
    super().__init__(message)
    self.status = status


def load_credentials(credentials_file: Optional[str], scopes: Sequence[str]):
  """Loads service account credentials, or application default ones.

  Raises:
    ConfigurationError: No usable credentials were found.
  """
  try:
    if credentials_file:
      return service_account.Credentials.from_service_account_file(
          credentials_file, scopes=list(scopes)
      )
    credentials, _ = google.auth.default(scopes=list(scopes))
    return credentials
  except (OSError, ValueError, google_auth_exceptions.GoogleAuthError) as e:
    raise ConfigurationError(f"Could not load Google credentials: {e}") from e


def build_service(api_name: str, api_version: str, credentials: Any):
  return discovery.build(
      api_name, api_version, credentials=credentials, cache_discovery=False
  )


def to_api_exception(
    error: googleapiclient_errors.HttpError,
) -> google_exceptions.GoogleAPICallError:
  """Maps a discovery-client HttpError onto the google-api-core hierarchy."""
  status = int(error.resp.status)
  reason = getattr(error, "reason", None) or str(error)
  return google_exceptions.from_http_status(status, reason)


class RetryingExecutor:
  """Executes API requests, backing off on quota and availability errors."""

  def __init__(
      self,
      retry_attempts: int = MAX_API_RETRIES,
      initial_backoff_delay: float = INITIAL_BACKOFF_DELAY,
      max_backoff_delay: float = MAX_BACKOFF_DELAY,
  ):
    self.retry_attempts = max(1, retry_attempts)
    self._initial_backoff_delay = initial_backoff_delay
    self._max_backoff_delay = max_backoff_delay

  def execute(self, request: Any, description: str = "API call") -> Any:
    """Runs request.execute(), retrying transient failures.

    Args:
      request: A googleapiclient HttpRequest.
      description: What the request does, for logging.

    Returns:
      The decoded response.

    Raises:
      ConfigurationError: The credentials were rejected.
      GoogleApiError: The call failed with a non-retryable error, kept
        failing after all attempts, or the service could not be reached.
    """
    backoff_delay = self._initial_backoff_delay
    attempt = 0
    while True:
      try:
        return request.execute()
      except googleapiclient_errors.HttpError as e:
        error = to_api_exception(e)
        attempt += 1
        if isinstance(error, _RETRYABLE_ERRORS) and attempt < self.retry_attempts:
          delay = backoff_delay + random.uniform(0, 1)
          logging.warning(
              f"{description}: {error.code} {error.message}. Retrying in"
              f" {delay:.2f} seconds (attempt {attempt + 1} of"
              f" {self.retry_attempts})..."
          )
          time.sleep(delay)
          backoff_delay = min(backoff_delay**2, self._max_backoff_delay)
          continue
        logging.error(f"{description} failed: {repr(error)}")
        raise GoogleApiError(
            f"{description} failed: {error.message}", status=error.code
        ) from e
      except (
          google_auth_exceptions.TransportError,
          httplib2.HttpLib2Error,
          OSError,
      ) as e:
        logging.error(f"{description} failed: {repr(e)}")
        raise GoogleApiError(
            f"{description} failed, the service is unreachable: {e}"
        ) from e
      except google_auth_exceptions.GoogleAuthError as e:
        logging.error(f"{description} failed: {repr(e)}")
        raise ConfigurationError(
            f"{description} failed, credentials were rejected or could not"
            f" be refreshed: {e}"
        ) from e
