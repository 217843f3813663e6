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
Configuration shared by the form builder and the submission processor.

The LabelConvention holds every display string the builder writes into the
form, and is the only contract the processor relies on to recover structure
from a flat list of answered questions when no manifest tag is available.
"""

import dataclasses
import enum
import os
import re
from typing import Dict, Mapping, Optional, Tuple

from survey.errors import ConfigurationError


DEFAULT_OUTPUT_TAB = "Survey_Responses"
# Tabs whose names contain one of these (case-insensitive) are never providers.
DEFAULT_EXCLUDED_TAB_MARKERS = ("responses", "_", "sheet")
DEFAULT_RETRY_ATTEMPTS = 4

_PROVIDER_PLACEHOLDER = "{provider}"


class TagRole(str, enum.Enum):
  INTAKE = "intake"
  CHOOSE_PROVIDER = "choose_provider"
  NEXT_STEP = "next_step"
  ITEM_LIST = "item_list"
  COMMENTS = "comments"


@dataclasses.dataclass(frozen=True)
class QuestionTag:
  """Typed identity of a generated question.

  `key` is the intake field key for INTAKE questions and the provider name
  for ITEM_LIST questions. It is empty for the other roles.
  """

  role: TagRole
  key: str = ""

  def to_dict(self) -> Dict[str, str]:
    return {"role": self.role.value, "key": self.key}

  @classmethod
  def from_dict(cls, data: Mapping[str, str]) -> "QuestionTag":
    return cls(role=TagRole(data["role"]), key=data.get("key", ""))


@dataclasses.dataclass(frozen=True)
class IntakeField:
  key: str
  title: str
  help_text: str = ""


DEFAULT_INTAKE_FIELDS = (
    IntakeField("name", "Full Name", "Enter full name"),
    IntakeField("project", "Project Name", "Enter the project name"),
)


@dataclasses.dataclass(frozen=True)
class LabelConvention:
  """Titles and help texts used when generating the form."""

  intake_fields: Tuple[IntakeField, ...] = DEFAULT_INTAKE_FIELDS
  choose_provider_title: str = "Choose Your Cloud Provider"
  choose_provider_help: str = (
      "Select the cloud provider you want to be assessed on."
  )
  provider_page_title: str = "{provider} Technologies"
  provider_page_help: str = (
      "Select all {provider} technologies you have experience with."
  )
  item_list_title: str = "{provider} Technology Experience"
  item_list_help: str = (
      "Check all {provider} services and technologies you have used."
  )
  next_step_title: str = "Next step"
  next_step_help: str = (
      "Choose another cloud to evaluate, or submit the feedback."
  )
  final_page_title: str = "Feedback Complete"
  final_page_help: str = (
      "Thank you for completing the cloud technology skills questionnaire!"
  )
  comments_title: str = "Additional Comments (Optional)"
  comments_help: str = (
      "Any additional information about your cloud experience."
  )
  skip_label: str = "Go to Submit"

  def __post_init__(self):
    if self.item_list_title.count(_PROVIDER_PLACEHOLDER) != 1:
      raise ConfigurationError(
          "item_list_title must contain exactly one '{provider}' placeholder,"
          f" got '{self.item_list_title}'"
      )
    keys = [field.key for field in self.intake_fields]
    if len(set(keys)) != len(keys):
      raise ConfigurationError(f"Duplicate intake field keys: {keys}")

  def page_title_for(self, provider: str) -> str:
    return self.provider_page_title.format(provider=provider)

  def page_help_for(self, provider: str) -> str:
    return self.provider_page_help.format(provider=provider)

  def item_list_title_for(self, provider: str) -> str:
    return self.item_list_title.format(provider=provider)

  def item_list_help_for(self, provider: str) -> str:
    return self.item_list_help.format(provider=provider)

  def provider_from_item_list_title(self, title: str) -> Optional[str]:
    """Inverse of item_list_title_for, or None if the title doesn't match."""
    prefix, suffix = self.item_list_title.split(_PROVIDER_PLACEHOLDER)
    if len(title) <= len(prefix) + len(suffix):
      return None
    if not (title.startswith(prefix) and title.endswith(suffix)):
      return None
    provider = title[len(prefix) : len(title) - len(suffix)].strip()
    return provider or None

  def classify(self, title: str) -> Optional[QuestionTag]:
    """Recovers the tag of a question from its display title."""
    for field in self.intake_fields:
      if title == field.title:
        return QuestionTag(TagRole.INTAKE, field.key)
    if title == self.choose_provider_title:
      return QuestionTag(TagRole.CHOOSE_PROVIDER)
    if title == self.next_step_title:
      return QuestionTag(TagRole.NEXT_STEP)
    if title == self.comments_title:
      return QuestionTag(TagRole.COMMENTS)
    provider = self.provider_from_item_list_title(title)
    if provider:
      return QuestionTag(TagRole.ITEM_LIST, provider)
    return None


def parse_spreadsheet_id(url_or_id: str) -> str:
  """Accepts a bare spreadsheet id or a docs.google.com spreadsheet URL."""
  value = (url_or_id or "").strip()
  if "/" not in value:
    if not value:
      raise ConfigurationError("Spreadsheet id is empty.")
    return value
  match = re.search(r"/spreadsheets/d/([a-zA-Z0-9_-]+)", value)
  if not match:
    raise ConfigurationError(f"Not a spreadsheet URL: {value}")
  return match.group(1)


def parse_form_id(url_or_id: str) -> str:
  """Accepts a bare form id or a form edit URL."""
  value = (url_or_id or "").strip()
  if "/" not in value:
    if not value:
      raise ConfigurationError("Form id is empty.")
    return value
  # Responder links (/forms/d/e/<id>/viewform) carry a publish id that the
  # Forms API does not accept.
  if re.search(r"/forms/d/e/", value):
    raise ConfigurationError(
        f"'{value}' is a responder link, use the form edit URL instead."
    )
  match = re.search(r"/forms/d/([a-zA-Z0-9_-]+)", value)
  if not match:
    raise ConfigurationError(f"Not a form URL: {value}")
  return match.group(1)


@dataclasses.dataclass
class SurveyConfig:
  """Identifiers and settings passed explicitly into every component."""

  spreadsheet_id: str
  form_id: str
  output_tab: str = DEFAULT_OUTPUT_TAB
  credentials_file: Optional[str] = None
  manifest_path: Optional[str] = None
  excluded_tab_markers: Tuple[str, ...] = DEFAULT_EXCLUDED_TAB_MARKERS
  retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
  labels: LabelConvention = dataclasses.field(default_factory=LabelConvention)

  @classmethod
  def from_env(
      cls, environ: Optional[Mapping[str, str]] = None, **overrides
  ) -> "SurveyConfig":
    """Builds a config from environment variables.

    Args:
      environ: The environment to read, defaults to os.environ.
      **overrides: Values that take precedence over the environment, e.g.
        from command-line flags. None values are ignored.

    Returns:
      The config.

    Raises:
      ConfigurationError: The spreadsheet or the form is not configured.
    """
    if environ is None:
      environ = os.environ
    overrides = {k: v for k, v in overrides.items() if v is not None}

    spreadsheet = overrides.pop("spreadsheet_id", None) or environ.get(
        "SURVEY_SPREADSHEET", ""
    )
    form = overrides.pop("form_id", None) or environ.get("SURVEY_FORM", "")
    if not spreadsheet.strip():
      raise ConfigurationError(
          "Spreadsheet not provided and SURVEY_SPREADSHEET environment"
          " variable is not set."
      )
    if not form.strip():
      raise ConfigurationError(
          "Form not provided and SURVEY_FORM environment variable is not set."
      )

    values = {
        "output_tab": environ.get("SURVEY_OUTPUT_TAB") or DEFAULT_OUTPUT_TAB,
        "credentials_file": environ.get("GOOGLE_APPLICATION_CREDENTIALS"),
        "manifest_path": environ.get("SURVEY_MANIFEST"),
    }
    values.update(overrides)
    return cls(
        spreadsheet_id=parse_spreadsheet_id(spreadsheet),
        form_id=parse_form_id(form),
        **values,
    )

  def is_provider_tab(self, tab_name: str) -> bool:
    """False for the output tab and for system tabs such as form responses."""
    if tab_name == self.output_tab:
      return False
    lowered = tab_name.lower()
    return not any(marker in lowered for marker in self.excluded_tab_markers)
