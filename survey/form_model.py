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
Form items, the form surface they are created on, and the navigation graph
between pages.

A form is a flat sequence of items. Page breaks split it into pages; the first
page has no page break of its own. Select questions may carry choices that
jump to a page break, which is how conditional branching is expressed.
"""

import dataclasses
import enum
import json
import logging
import pathlib
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from survey.config import QuestionTag
from survey.errors import NavigationCycleError


class ItemKind(str, enum.Enum):
  TEXT = "text"
  PARAGRAPH = "paragraph"
  SINGLE_SELECT = "single_select"
  MULTI_SELECT = "multi_select"
  PAGE_BREAK = "page_break"


SELECT_KINDS = frozenset({ItemKind.SINGLE_SELECT, ItemKind.MULTI_SELECT})


@dataclasses.dataclass(eq=False)
class FormItem:
  """A mutable handle on one item of the form.

  Choices are (label, target) pairs, where target is the page break to jump
  to, or None to continue to the next page.
  """

  kind: ItemKind
  title: str = ""
  help_text: str = ""
  required: bool = False
  choices: List[Tuple[str, Optional["FormItem"]]] = dataclasses.field(
      default_factory=list
  )
  tag: Optional[QuestionTag] = None
  item_id: Optional[str] = None
  question_id: Optional[str] = None

  def set_title(self, title: str) -> "FormItem":
    self.title = title
    return self

  def set_help_text(self, help_text: str) -> "FormItem":
    self.help_text = help_text
    return self

  def set_required(self, required: bool) -> "FormItem":
    self.required = required
    return self

  def set_tag(self, tag: QuestionTag) -> "FormItem":
    self.tag = tag
    return self

  def set_choices(
      self, choices: Sequence[Tuple[str, Optional["FormItem"]]]
  ) -> "FormItem":
    if self.kind not in SELECT_KINDS:
      raise ValueError(f"Cannot set choices on a {self.kind.value} item.")
    labels = [label for label, _ in choices]
    if len(set(labels)) != len(labels):
      raise ValueError(f"Choice labels must be unique: {labels}")
    for label, target in choices:
      if not label.strip():
        raise ValueError("Choice labels must not be blank.")
      if target is not None:
        if self.kind != ItemKind.SINGLE_SELECT:
          raise ValueError("Only single-select questions can navigate.")
        if target.kind != ItemKind.PAGE_BREAK:
          raise ValueError(f"Choice '{label}' must target a page break.")
    self.choices = list(choices)
    return self

  def set_choice_values(self, values: Sequence[str]) -> "FormItem":
    return self.set_choices([(value, None) for value in values])

  @property
  def choice_labels(self) -> List[str]:
    return [label for label, _ in self.choices]


class FormSurface(Protocol):
  """Where form items are created. Changes take effect on commit()."""

  def clear_all_items(self) -> None:
    ...

  def add_text_item(self, paragraph: bool = False) -> FormItem:
    ...

  def add_single_select_item(self) -> FormItem:
    ...

  def add_multi_select_item(self) -> FormItem:
    ...

  def add_page_break(self) -> FormItem:
    ...

  def remove_item(self, item: FormItem) -> None:
    ...

  def commit(self) -> None:
    ...


@dataclasses.dataclass
class Page:
  index: int
  header: Optional[FormItem]
  questions: List[FormItem]

  @property
  def title(self) -> str:
    return self.header.title if self.header else ""


def split_pages(items: Sequence[FormItem]) -> List[Page]:
  """Groups a flat item sequence into pages."""
  pages = [Page(index=0, header=None, questions=[])]
  for item in items:
    if item.kind == ItemKind.PAGE_BREAK:
      pages.append(Page(index=len(pages), header=item, questions=[]))
    else:
      pages[-1].questions.append(item)
  return pages


def navigation_edges(items: Sequence[FormItem]) -> List[Tuple[int, int, str]]:
  """Lists (from page, to page, choice label) for every navigation choice."""
  pages = split_pages(items)
  page_of_break = {id(page.header): page.index for page in pages if page.header}
  edges = []
  for page in pages:
    for question in page.questions:
      for label, target in question.choices:
        if target is None:
          continue
        if id(target) not in page_of_break:
          raise NavigationCycleError(
              f"Choice '{label}' on '{question.title}' targets a page that is"
              " not part of the form."
          )
        edges.append((page.index, page_of_break[id(target)], label))
  return edges


def check_forward_only(items: Sequence[FormItem]) -> List[Tuple[int, int, str]]:
  """Verifies that every navigation choice jumps strictly forward.

  With forward-only jumps the page graph is acyclic, so no respondent can be
  routed back to a page they have already passed.

  Returns:
    The navigation edges.

  Raises:
    NavigationCycleError: Some choice targets its own page or an earlier one.
  """
  edges = navigation_edges(items)
  for source, target, label in edges:
    if target <= source:
      raise NavigationCycleError(
          f"Choice '{label}' on page {source} jumps back to page {target}."
      )
  return edges


class InMemoryFormSurface:
  """A form surface kept in memory, for dry runs and tests."""

  def __init__(self, title: str = "Untitled form"):
    self.title = title
    self.items: List[FormItem] = []
    self.commit_count = 0
    self._next_id = 0

  def clear_all_items(self) -> None:
    logging.info(f"Cleared {len(self.items)} items from form")
    self.items = []

  def _add(self, kind: ItemKind) -> FormItem:
    self._next_id += 1
    item = FormItem(kind=kind, item_id=f"item-{self._next_id}")
    if kind != ItemKind.PAGE_BREAK:
      item.question_id = f"question-{self._next_id}"
    self.items.append(item)
    return item

  def add_text_item(self, paragraph: bool = False) -> FormItem:
    return self._add(ItemKind.PARAGRAPH if paragraph else ItemKind.TEXT)

  def add_single_select_item(self) -> FormItem:
    return self._add(ItemKind.SINGLE_SELECT)

  def add_multi_select_item(self) -> FormItem:
    return self._add(ItemKind.MULTI_SELECT)

  def add_page_break(self) -> FormItem:
    return self._add(ItemKind.PAGE_BREAK)

  def remove_item(self, item: FormItem) -> None:
    self.items.remove(item)

  def commit(self) -> None:
    self.commit_count += 1

  def pages(self) -> List[Page]:
    return split_pages(self.items)

  def describe(self) -> str:
    return describe_form(self.items, self.title)


def describe_form(items: Sequence[FormItem], title: str = "") -> str:
  """Renders the form as indented text, one line per item and choice."""
  pages = split_pages(items)
  page_of_break = {id(page.header): page.index for page in pages if page.header}
  lines = [title] if title else []
  for page in pages:
    header = f"[Page {page.index + 1}]"
    if page.title:
      header += f" {page.title}"
    lines.append(header)
    for question in page.questions:
      flags = [question.kind.value]
      if question.required:
        flags.append("required")
      lines.append(f"  {question.title} ({', '.join(flags)})")
      for label, target in question.choices:
        if target is None:
          lines.append(f"    - {label}")
        else:
          lines.append(f"    - {label} -> page {page_of_break[id(target)] + 1}")
  return "\n".join(lines)


def manifest_from_items(items: Sequence[FormItem]) -> Dict[str, QuestionTag]:
  """Maps question ids to tags for every tagged, committed question."""
  return {
      item.question_id: item.tag
      for item in items
      if item.tag is not None and item.question_id
  }


def write_manifest(path: str, manifest: Dict[str, QuestionTag]):
  target = pathlib.Path(path)
  target.parent.mkdir(parents=True, exist_ok=True)
  with open(target, "w") as output_file:
    json.dump(
        {qid: tag.to_dict() for qid, tag in manifest.items()},
        output_file,
        indent=2,
        sort_keys=True,
    )
  logging.info(f"Wrote {len(manifest)} question tags to {path}")


def read_manifest(path: Optional[str]) -> Dict[str, QuestionTag]:
  """Reads a manifest written by write_manifest. A missing file is empty."""
  if not path or not pathlib.Path(path).exists():
    return {}
  with open(path) as input_file:
    raw = json.load(input_file)
  return {qid: QuestionTag.from_dict(tag) for qid, tag in raw.items()}
