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
End-to-end operations: building the form from the spreadsheet, and turning
submitted responses into rows of the output tab.

Every operation returns a RunResult instead of raising, so that a scheduler
or trigger can decide whether to alert.
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from clients.forms_client import FormsClient, to_response
from clients.google_api import RetryingExecutor
from clients.sheets_client import SheetsClient, SheetsOutputSink
from survey.catalog import CsvDirectorySource, ProviderCatalog, TabularSource
from survey.catalog import load_catalog, total_items
from survey.config import SurveyConfig, TagRole
from survey.errors import NoProvidersFound, RunResult, SurveyError
from survey.errors import failure, success
from survey.form_builder import FormBuilder
from survey.form_model import InMemoryFormSurface, ItemKind
from survey.form_model import read_manifest, write_manifest
from survey.submission_processor import Response, SubmissionProcessor
from survey.submission_processor import output_header


class SurveyWorkflow:
  """Runs the survey operations against one spreadsheet and one form."""

  def __init__(
      self,
      config: SurveyConfig,
      sheets: Optional[SheetsClient] = None,
      forms: Optional[FormsClient] = None,
      source: Optional[TabularSource] = None,
  ):
    self.config = config
    self.sheets = sheets
    self.forms = forms
    self.source = source or sheets
    self._processor: Optional[SubmissionProcessor] = None

  @classmethod
  def connect(
      cls, config: SurveyConfig, catalog_dir: Optional[str] = None
  ) -> "SurveyWorkflow":
    """Creates the API clients described by the config.

    Args:
      config: The survey configuration.
      catalog_dir: If set, providers are read from CSV files in this
        directory instead of from the spreadsheet tabs.

    Raises:
      ConfigurationError: Credentials could not be loaded.
    """
    executor = RetryingExecutor(retry_attempts=config.retry_attempts)
    sheets = SheetsClient(
        config.spreadsheet_id,
        credentials_file=config.credentials_file,
        executor=executor,
    )
    forms = FormsClient(
        config.form_id,
        credentials_file=config.credentials_file,
        executor=executor,
    )
    source = CsvDirectorySource(catalog_dir) if catalog_dir else None
    return cls(config, sheets=sheets, forms=forms, source=source)

  def load_catalog(self) -> ProviderCatalog:
    catalog = load_catalog(self.source, self.config)
    logging.info(f"Found providers: {', '.join(catalog)}")
    return catalog

  def initialize_form(self) -> RunResult:
    """Rebuilds the whole form from the current catalog."""
    logging.info("=== INITIALIZING FORM ===")
    try:
      catalog = self.load_catalog()
      if not catalog:
        raise NoProvidersFound("No valid provider tabs found in spreadsheet")

      build = FormBuilder(self.forms.surface(), self.config.labels).rebuild(
          catalog
      )
      if self.config.manifest_path:
        write_manifest(self.config.manifest_path, build.manifest())
      urls = self.forms.urls()
    except (SurveyError, OSError) as e:
      return failure(e)

    logging.info(f"Form URL: {urls['form_url']}")
    logging.info(f"Edit URL: {urls['edit_url']}")
    return success({
        **urls,
        "providers": build.providers,
        "total_items": sum(len(catalog[p]) for p in build.providers),
        "catalog": catalog,
        "failures": [str(f) for f in build.failures],
    })

  def refresh_form(self) -> RunResult:
    result = self.initialize_form()
    if result["success"]:
      logging.info("Form refreshed successfully")
      logging.info(f"Providers: {', '.join(result['data']['providers'])}")
      logging.info(f"Total items: {result['data']['total_items']}")
    else:
      logging.error(f"Form refresh failed: {result['error']}")
    return result

  def live_catalog(self) -> ProviderCatalog:
    """Reads back the provider item lists currently on the form."""
    manifest = read_manifest(self.config.manifest_path)
    live: ProviderCatalog = {}
    for question in self.forms.read_layout():
      if question.kind != ItemKind.MULTI_SELECT:
        continue
      tag = manifest.get(question.question_id) or self.config.labels.classify(
          question.title
      )
      if tag is not None and tag.role == TagRole.ITEM_LIST:
        live[tag.key] = question.options
    return live

  def smart_refresh(self) -> RunResult:
    """Rebuilds the form only if the catalog differs from what's on it."""
    try:
      catalog = self.load_catalog()
      live = self.live_catalog()
      if catalogs_match(catalog, live):
        logging.info("No changes detected, form is up to date")
        return success({"changed": False, "providers": list(catalog)})
      logging.info("Changes detected, updating form...")
    except SurveyError as e:
      logging.error(f"Error in smart refresh, doing a full refresh: {e}")

    result = self.refresh_form()
    if result["success"]:
      result["data"]["changed"] = True
    return result

  def check_setup(self) -> RunResult:
    """Checks that the spreadsheet and the form are reachable."""
    logging.info("=== CHECKING SETUP ===")
    try:
      spreadsheet_title = self.sheets.get_title()
      logging.info(f"Connected to spreadsheet: {spreadsheet_title}")
      form_title = self.forms.get_title()
      logging.info(f"Connected to form: {form_title}")
      catalog = self.load_catalog()
    except SurveyError as e:
      return failure(e)

    for provider, items in catalog.items():
      logging.info(f"  - {provider}: {len(items)} items")
    return success({
        "spreadsheet_title": spreadsheet_title,
        "form_title": form_title,
        "providers": list(catalog),
        "total_items": total_items(catalog),
        "catalog": catalog,
    })

  def complete_setup(self) -> RunResult:
    """Checks the setup, then builds the form."""
    check = self.check_setup()
    if not check["success"]:
      return failure(f"Setup check failed: {check['error']}")
    result = self.initialize_form()
    if not result["success"]:
      return failure(f"Form initialization failed: {result['error']}")
    logging.info(f"Providers found: {', '.join(result['data']['providers'])}")
    logging.info(f"Total items loaded: {result['data']['total_items']}")
    return result

  def preview_form(self) -> RunResult:
    """Builds the form in memory only and describes it."""
    try:
      catalog = self.load_catalog()
      surface = InMemoryFormSurface(title="Preview")
      build = FormBuilder(surface, self.config.labels).rebuild(catalog)
    except SurveyError as e:
      return failure(e)
    return success({
        "providers": build.providers,
        "failures": [str(f) for f in build.failures],
        "description": surface.describe(),
    })

  def processor(self) -> SubmissionProcessor:
    if self._processor is None:
      sink = None
      if self.sheets is not None:
        sink = SheetsOutputSink(
            self.sheets,
            self.config.output_tab,
            output_header(self.config.labels),
        )
      self._processor = SubmissionProcessor(
          labels=self.config.labels,
          manifest=read_manifest(self.config.manifest_path),
          sink=sink,
      )
    return self._processor

  def handle_submission(self, response: Response) -> RunResult:
    """Flattens one response and appends its rows to the output tab."""
    try:
      result = self.processor().record(response)
    except (SurveyError, OSError, ValueError) as e:
      return failure(e)

    data = {
        "response_id": response.response_id,
        "records": len(result.records),
        "written": result.written,
        "unmatched": result.unmatched,
        "sink_failures": result.sink_failures,
    }
    if not result.success:
      return failure(
          f"{len(result.sink_failures)} rows of response"
          f" {response.response_id} could not be saved",
          data,
      )
    return success(data)

  def process_new_responses(self, since: Optional[str] = None) -> RunResult:
    """Handles every response submitted after `since`, oldest first.

    The newest timestamp seen is returned so it can be passed as `since` on
    the next run. A response is attempted once per call.
    """
    try:
      layout = self.forms.read_layout()
      raw_responses = self.forms.list_responses(since)
    except SurveyError as e:
      return failure(e)

    raw_responses = sorted(raw_responses, key=_submitted_at)
    results: List[Dict[str, Any]] = []
    newest = since
    for raw in raw_responses:
      result = self.handle_submission(to_response(raw, layout))
      results.append({"response_id": raw.get("responseId", ""), **result})
      newest = _latest(newest, raw.get("lastSubmittedTime"))

    failed = sum(1 for result in results if not result["success"])
    logging.info(
        f"Processed {len(results)} responses ({failed} with errors)"
    )
    return success({
        "processed": len(results),
        "failed": failed,
        "results": results,
        "newest_timestamp": newest,
    })

  def response_stats(self) -> RunResult:
    """Summarizes the rows written to the output tab so far."""
    try:
      if self.config.output_tab not in self.sheets.list_tabs():
        return success(summarize_responses(pd.DataFrame()))
      frame = self.sheets.read_table(self.config.output_tab)
    except SurveyError as e:
      return failure(e)
    stats = summarize_responses(frame)
    logging.info(f"Response statistics: {stats}")
    return success(stats)


def catalogs_match(expected: ProviderCatalog, live: ProviderCatalog) -> bool:
  """True if both have the same providers in order and the same items.

  Item order within a provider is ignored, provider order is not, since it
  decides the navigation.
  """
  if list(expected) != list(live):
    return False
  return all(
      sorted(items) == sorted(live[provider])
      for provider, items in expected.items()
  )


def summarize_responses(frame: pd.DataFrame) -> Dict[str, Any]:
  if frame.empty:
    return {
        "total_rows": 0,
        "submissions": 0,
        "rows_with_provider": 0,
        "average_item_count": 0.0,
        "rows_per_provider": {},
    }
  providers = frame["Provider"].fillna("").astype(str)
  item_counts = pd.to_numeric(frame["Item Count"], errors="coerce").fillna(0)
  submissions = frame[["Timestamp", "Respondent Email"]].drop_duplicates()
  per_provider = providers[providers != ""].value_counts()
  return {
      "total_rows": len(frame),
      "submissions": len(submissions),
      "rows_with_provider": int((providers != "").sum()),
      "average_item_count": float(item_counts.mean()),
      "rows_per_provider": {k: int(v) for k, v in per_provider.items()},
  }


def _submitted_at(raw: Dict[str, Any]) -> pd.Timestamp:
  return pd.to_datetime(
      raw.get("lastSubmittedTime") or raw.get("createTime") or 0, utc=True
  )


def _latest(current: Optional[str], candidate: Optional[str]) -> Optional[str]:
  if not candidate:
    return current
  if not current:
    return candidate
  if pd.to_datetime(candidate, utc=True) > pd.to_datetime(current, utc=True):
    return candidate
  return current
