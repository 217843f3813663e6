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
Errors raised by the survey tools and the structured result returned to callers.
"""

import logging
from typing import Any, Optional, TypedDict, Union


class SurveyError(Exception):
  """Base exception for errors in the survey tools."""

  pass


class ConfigurationError(SurveyError):
  """The data source or the form is missing, misconfigured or unreachable."""

  pass


class NoProvidersFound(SurveyError):
  """No provider has at least one item, so there is no form to publish."""

  pass


class PartialProviderFailure(SurveyError):
  """A single provider's page could not be built and was skipped."""

  def __init__(self, provider: str, reason: str):
    super().__init__(f"Provider '{provider}' skipped: {reason}")
    self.provider = provider
    self.reason = reason


class UnmatchedQuestion(SurveyError):
  """An answered question whose title is not recognized."""

  def __init__(self, title: str):
    super().__init__(f"Unmatched question: '{title}'")
    self.title = title


class SinkWriteFailure(SurveyError):
  """Appending a row to the output sink failed."""

  pass


class NavigationCycleError(SurveyError):
  """A navigation choice points back to a page at or before its own."""

  pass


class RunResult(TypedDict, total=False):
  """Outcome of a top-level operation, suitable for alerting decisions."""

  success: bool
  data: Any
  error: str


def success(data: Any = None) -> RunResult:
  return {"success": True, "data": data}


def failure(
    error: Union[BaseException, str], data: Optional[Any] = None
) -> RunResult:
  """Wraps an error into a failed RunResult and logs it."""
  message = error if isinstance(error, str) else repr(error)
  logging.error(f"Operation failed: {message}")
  result: RunResult = {"success": False, "error": message}
  if data is not None:
    result["data"] = data
  return result
