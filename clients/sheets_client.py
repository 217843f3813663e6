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
A Google Sheets spreadsheet used as the provider catalog source and as the
output table for flattened responses.
"""

import logging
from typing import Any, List, Optional, Sequence

import pandas as pd

from clients.google_api import GoogleApiError, RetryingExecutor
from clients.google_api import SHEETS_SCOPES, build_service, load_credentials
from survey.catalog import clean_column
from survey.errors import SinkWriteFailure


def quote_tab(tab_name: str) -> str:
  """Quotes a tab name for use in an A1 range."""
  return "'" + tab_name.replace("'", "''") + "'"


class SheetsClient:
  """Reads tabs and appends rows through the Sheets API v4."""

  def __init__(
      self,
      spreadsheet_id: str,
      service: Any = None,
      credentials_file: Optional[str] = None,
      executor: Optional[RetryingExecutor] = None,
  ):
    """Initializes the SheetsClient.

    Args:
      spreadsheet_id: The id of the spreadsheet.
      service: A Sheets API service. If not provided, one is built from
        credentials_file, or from application default credentials.
      credentials_file: Path to a service account key file.
      executor: Runs requests with retries.
    """
    if service is None:
      service = build_service(
          "sheets", "v4", load_credentials(credentials_file, SHEETS_SCOPES)
      )
    self.spreadsheet_id = spreadsheet_id
    self.service = service
    self.executor = executor or RetryingExecutor()

  def get_title(self) -> str:
    metadata = self.executor.execute(
        self.service.spreadsheets().get(
            spreadsheetId=self.spreadsheet_id, fields="properties.title"
        ),
        "Get spreadsheet title",
    )
    return metadata.get("properties", {}).get("title", "")

  def list_tabs(self) -> List[str]:
    metadata = self.executor.execute(
        self.service.spreadsheets().get(
            spreadsheetId=self.spreadsheet_id, fields="sheets.properties.title"
        ),
        "List spreadsheet tabs",
    )
    return [
        sheet["properties"]["title"] for sheet in metadata.get("sheets", [])
    ]

  def read_values(self, tab_name: str) -> List[List[Any]]:
    response = self.executor.execute(
        self.service.spreadsheets()
        .values()
        .get(spreadsheetId=self.spreadsheet_id, range=quote_tab(tab_name)),
        f"Read tab {tab_name}",
    )
    return response.get("values", [])

  def read_column(self, tab_name: str, column_index: int = 0) -> List[str]:
    """Reads one column of a tab, trimmed, with blank cells dropped."""
    values = self.read_values(tab_name)
    if not values:
      return []
    frame = pd.DataFrame(values)
    if column_index >= frame.shape[1]:
      return []
    return clean_column(frame.iloc[:, column_index])

  def read_table(self, tab_name: str) -> pd.DataFrame:
    """Reads a tab whose first row is a header into a DataFrame."""
    values = self.read_values(tab_name)
    if not values:
      return pd.DataFrame()
    header, rows = values[0], values[1:]
    # Trailing empty cells are omitted by the API, so rows may be short.
    padded = [row + [""] * (len(header) - len(row)) for row in rows]
    return pd.DataFrame([row[: len(header)] for row in padded], columns=header)

  def ensure_tab(self, tab_name: str, header: Sequence[str]) -> bool:
    """Creates the tab with a header row if it doesn't exist yet.

    Returns:
      True if the tab was created.
    """
    if tab_name in self.list_tabs():
      return False
    self.executor.execute(
        self.service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={"requests": [{"addSheet": {"properties": {"title": tab_name}}}]},
        ),
        f"Create tab {tab_name}",
    )
    self.executor.execute(
        self.service.spreadsheets()
        .values()
        .update(
            spreadsheetId=self.spreadsheet_id,
            range=f"{quote_tab(tab_name)}!A1",
            valueInputOption="RAW",
            body={"values": [list(header)]},
        ),
        f"Write header of {tab_name}",
    )
    logging.info(f"Created tab {tab_name} with {len(header)} columns")
    return True

  def append_row(self, tab_name: str, values: Sequence[Any]):
    self.executor.execute(
        self.service.spreadsheets()
        .values()
        .append(
            spreadsheetId=self.spreadsheet_id,
            range=f"{quote_tab(tab_name)}!A1",
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [list(values)]},
        ),
        f"Append row to {tab_name}",
    )


class SheetsOutputSink:
  """Appends output rows to one tab, creating it with a header if needed."""

  def __init__(self, client: SheetsClient, tab_name: str, header: Sequence[str]):
    self.client = client
    self.tab_name = tab_name
    self.header = list(header)
    self._tab_ready = False

  def append_row(self, values: Sequence[Any]):
    try:
      if not self._tab_ready:
        self.client.ensure_tab(self.tab_name, self.header)
        self._tab_ready = True
      self.client.append_row(self.tab_name, values)
    except GoogleApiError as e:
      raise SinkWriteFailure(
          f"Could not append to {self.tab_name}: {e}"
      ) from e
