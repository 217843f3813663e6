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
Loads the provider catalog (provider name -> item names) from a tabular source.

Every tab of the source is a candidate provider, and the items are the
non-empty cells of the tab's first column.
"""

import logging
import pathlib
from typing import Any, Dict, Hashable, Iterable, List, Protocol, TypeVar

import pandas as pd

from survey.config import SurveyConfig
from survey.errors import SurveyError


ProviderCatalog = Dict[str, List[str]]

T = TypeVar("T", bound=Hashable)


class TabularSource(Protocol):
  """Read-only, rows-by-tab access to a table of reference data."""

  def list_tabs(self) -> List[str]:
    ...

  def read_column(self, tab_name: str, column_index: int = 0) -> List[str]:
    ...


def dedupe(values: Iterable[T]) -> List[T]:
  """Removes duplicates, keeping the first occurrence of each value."""
  return list(dict.fromkeys(values))


def clean_column(values: Iterable[Any]) -> List[str]:
  """Stringifies and trims cells, dropping blanks."""
  column = pd.Series(list(values), dtype="object").dropna()
  column = column.astype(str).str.strip()
  return column[column != ""].tolist()


class CsvDirectorySource:
  """A directory of CSV files, one tab per file, named after the file stem."""

  def __init__(self, directory: str):
    self.directory = pathlib.Path(directory)
    if not self.directory.is_dir():
      raise SurveyError(f"Catalog directory not found: {directory}")

  def list_tabs(self) -> List[str]:
    return sorted(path.stem for path in self.directory.glob("*.csv"))

  def read_column(self, tab_name: str, column_index: int = 0) -> List[str]:
    path = self.directory / f"{tab_name}.csv"
    if not path.exists():
      logging.warning(f"No CSV file for tab '{tab_name}' in {self.directory}")
      return []
    try:
      frame = pd.read_csv(
          path, header=None, dtype=str, keep_default_na=False
      )
    except pd.errors.EmptyDataError:
      return []
    if column_index >= frame.shape[1]:
      return []
    return clean_column(frame.iloc[:, column_index])


def discover_provider_tabs(
    source: TabularSource, config: SurveyConfig
) -> List[str]:
  """Lists the tabs that may hold provider data, in source order."""
  tabs = []
  for tab_name in source.list_tabs():
    if not config.is_provider_tab(tab_name):
      logging.info(f"Skipping system tab: {tab_name}")
      continue
    tabs.append(tab_name)
  return tabs


def load_catalog(source: TabularSource, config: SurveyConfig) -> ProviderCatalog:
  """Reads every provider tab into a catalog.

  Tabs that cannot be read, or whose first column is empty, are left out.
  Duplicate items within a tab are collapsed in first-seen order. Providers are
  named after their tab, trimmed.

  Args:
    source: The tabular source to read from.
    config: Provides the tab filtering rules.

  Returns:
    The catalog, in source tab order.
  """
  catalog: ProviderCatalog = {}
  for tab_name in discover_provider_tabs(source, config):
    try:
      raw_items = source.read_column(tab_name, 0)
    except (OSError, ValueError, SurveyError) as e:
      logging.error(f"Error reading from tab {tab_name}: {repr(e)}")
      continue

    items = dedupe(raw_items)
    if len(items) < len(raw_items):
      logging.info(
          f"Collapsed {len(raw_items) - len(items)} duplicate items in"
          f" {tab_name}"
      )
    if not items:
      logging.info(f"Skipping empty tab: {tab_name}")
      continue

    # Sheets allows padded tab names; the provider name must survive a round
    # trip through the question title, which is trimmed.
    provider = tab_name.strip()
    if provider in catalog:
      logging.warning(f"Skipping tab {tab_name}: duplicate provider {provider}")
      continue
    catalog[provider] = items
    logging.info(f"Loaded {len(items)} items for {provider}")
  return catalog


def total_items(catalog: ProviderCatalog) -> int:
  return sum(len(items) for items in catalog.values())
