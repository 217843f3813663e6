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
A Google Form as the surface the questionnaire is built on, and as the source
of completed responses.
"""

import dataclasses
import logging
from typing import Any, Dict, List, Optional

from clients.google_api import FORMS_SCOPES, RetryingExecutor
from clients.google_api import build_service, load_credentials
from survey.form_model import FormItem, ItemKind
from survey.submission_processor import Answer, Response


_CHOICE_TYPES = {
    "RADIO": ItemKind.SINGLE_SELECT,
    "DROP_DOWN": ItemKind.SINGLE_SELECT,
    "CHECKBOX": ItemKind.MULTI_SELECT,
}

_OPTIONS_MASK = "questionItem.question.choiceQuestion.options"


@dataclasses.dataclass
class QuestionInfo:
  """A question as it currently exists on the live form."""

  item_id: str
  question_id: str
  title: str
  kind: ItemKind
  options: List[str]
  page_title: str = ""


class FormsClient:
  """Reads and edits one form through the Forms API v1."""

  def __init__(
      self,
      form_id: str,
      service: Any = None,
      credentials_file: Optional[str] = None,
      executor: Optional[RetryingExecutor] = None,
  ):
    if service is None:
      service = build_service(
          "forms", "v1", load_credentials(credentials_file, FORMS_SCOPES)
      )
    self.form_id = form_id
    self.service = service
    self.executor = executor or RetryingExecutor()

  def get_form(self) -> Dict[str, Any]:
    return self.executor.execute(
        self.service.forms().get(formId=self.form_id), "Get form"
    )

  def get_title(self) -> str:
    return self.get_form().get("info", {}).get("title", "")

  def urls(self) -> Dict[str, str]:
    form = self.get_form()
    return {
        "form_url": form.get("responderUri", ""),
        "edit_url": f"https://docs.google.com/forms/d/{self.form_id}/edit",
    }

  def batch_update(self, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
    return self.executor.execute(
        self.service.forms().batchUpdate(
            formId=self.form_id, body={"requests": requests}
        ),
        f"Update form ({len(requests)} requests)",
    )

  def read_layout(self) -> List[QuestionInfo]:
    """Lists the form's questions in order, with the page each is on."""
    questions = []
    page_title = ""
    for item in self.get_form().get("items", []):
      if "pageBreakItem" in item:
        page_title = item.get("title", "")
        continue
      if "questionItem" not in item:
        continue

      question = item["questionItem"]["question"]
      if "choiceQuestion" in question:
        choice = question["choiceQuestion"]
        kind = _CHOICE_TYPES.get(choice.get("type"), ItemKind.SINGLE_SELECT)
        options = [
            option.get("value", "")
            for option in choice.get("options", [])
            if not option.get("isOther")
        ]
      elif question.get("textQuestion", {}).get("paragraph"):
        kind, options = ItemKind.PARAGRAPH, []
      else:
        kind, options = ItemKind.TEXT, []

      questions.append(
          QuestionInfo(
              item_id=item.get("itemId", ""),
              question_id=question.get("questionId", ""),
              title=item.get("title", ""),
              kind=kind,
              options=options,
              page_title=page_title,
          )
      )
    return questions

  def list_responses(self, since: Optional[str] = None) -> List[Dict[str, Any]]:
    """Fetches raw responses, optionally only those submitted after `since`.

    Args:
      since: An RFC 3339 timestamp, e.g. '2025-01-31T12:00:00Z'.
    """
    responses = []
    page_token = None
    while True:
      kwargs = {"formId": self.form_id, "pageToken": page_token}
      if since:
        kwargs["filter"] = f"timestamp > {since}"
      page = self.executor.execute(
          self.service.forms().responses().list(**kwargs), "List responses"
      )
      responses.extend(page.get("responses", []) or [])
      page_token = page.get("nextPageToken")
      if not page_token:
        break
    logging.info(f"Fetched {len(responses)} responses for form {self.form_id}")
    return responses

  def surface(self) -> "GoogleFormsSurface":
    return GoogleFormsSurface(self)


def to_response(
    raw: Dict[str, Any], layout: List[QuestionInfo]
) -> Response:
  """Converts a raw API response into a Response ordered like the form."""
  raw_answers = raw.get("answers", {}) or {}
  answers = []
  known = set()
  for question in layout:
    known.add(question.question_id)
    if question.question_id not in raw_answers:
      continue
    values = _answer_values(raw_answers[question.question_id])
    if question.kind == ItemKind.MULTI_SELECT:
      value = values
    else:
      value = values[0] if values else ""
    answers.append(Answer(question.title, value, question.question_id))

  # Questions answered on an earlier version of the form.
  for question_id, raw_answer in raw_answers.items():
    if question_id in known:
      continue
    values = _answer_values(raw_answer)
    value = values if len(values) > 1 else (values[0] if values else "")
    answers.append(Answer("", value, question_id))

  return Response(
      timestamp=raw.get("lastSubmittedTime") or raw.get("createTime", ""),
      answers=answers,
      respondent=raw.get("respondentEmail", ""),
      response_id=raw.get("responseId", ""),
  )


def _answer_values(raw_answer: Dict[str, Any]) -> List[str]:
  return [
      answer.get("value", "")
      for answer in raw_answer.get("textAnswers", {}).get("answers", [])
  ]


def _option(
    label: str, target: Optional[FormItem], navigation: bool
) -> Dict[str, Any]:
  option: Dict[str, Any] = {"value": label}
  if navigation and target is not None:
    option["goToSectionId"] = target.item_id
  return option


def _item_body(item: FormItem, navigation: bool = False) -> Dict[str, Any]:
  body: Dict[str, Any] = {"title": item.title}
  if item.help_text:
    body["description"] = item.help_text
  if item.item_id:
    body["itemId"] = item.item_id

  if item.kind == ItemKind.PAGE_BREAK:
    body["pageBreakItem"] = {}
    return body

  question: Dict[str, Any] = {"required": item.required}
  if item.question_id:
    question["questionId"] = item.question_id
  if item.kind in (ItemKind.TEXT, ItemKind.PARAGRAPH):
    question["textQuestion"] = {"paragraph": item.kind == ItemKind.PARAGRAPH}
  else:
    question["choiceQuestion"] = {
        "type": "RADIO" if item.kind == ItemKind.SINGLE_SELECT else "CHECKBOX",
        "options": [
            _option(label, target, navigation) for label, target in item.choices
        ],
    }
  body["questionItem"] = {"question": question}
  return body


class GoogleFormsSurface:
  """Queues item changes and applies them to the form on commit().

  Page breaks only get their ids once created, so commit() runs in two
  phases: every item is created first, then the choices that jump to a page
  are updated with that page's id.
  """

  def __init__(self, client: FormsClient):
    self.client = client
    self._clear = False
    self._items: List[FormItem] = []

  def clear_all_items(self):
    self._clear = True
    self._items = []

  def _add(self, kind: ItemKind) -> FormItem:
    item = FormItem(kind=kind)
    self._items.append(item)
    return item

  def add_text_item(self, paragraph: bool = False) -> FormItem:
    return self._add(ItemKind.PARAGRAPH if paragraph else ItemKind.TEXT)

  def add_single_select_item(self) -> FormItem:
    return self._add(ItemKind.SINGLE_SELECT)

  def add_multi_select_item(self) -> FormItem:
    return self._add(ItemKind.MULTI_SELECT)

  def add_page_break(self) -> FormItem:
    return self._add(ItemKind.PAGE_BREAK)

  def remove_item(self, item: FormItem):
    self._items.remove(item)

  def commit(self):
    existing = self.client.get_form().get("items", [])
    requests = []
    if self._clear:
      # Delete from the end so earlier indexes stay valid.
      requests.extend(
          {"deleteItem": {"location": {"index": index}}}
          for index in reversed(range(len(existing)))
      )
      start = 0
    else:
      start = len(existing)
    requests.extend(
        {
            "createItem": {
                "item": _item_body(item),
                "location": {"index": start + offset},
            }
        }
        for offset, item in enumerate(self._items)
    )
    if not requests:
      return

    replies = self.client.batch_update(requests).get("replies", [])
    create_replies = replies[len(replies) - len(self._items) :]
    for item, reply in zip(self._items, create_replies):
      created = reply.get("createItem", {})
      item.item_id = created.get("itemId")
      question_ids = created.get("questionId", [])
      item.question_id = question_ids[0] if question_ids else None
    if self._clear:
      logging.info(f"Cleared {len(existing)} items from form")
    logging.info(f"Created {len(self._items)} items on form")

    navigation = [
        {
            "updateItem": {
                "item": _item_body(item, navigation=True),
                "location": {"index": start + offset},
                "updateMask": _OPTIONS_MASK,
            }
        }
        for offset, item in enumerate(self._items)
        if any(target is not None for _, target in item.choices)
    ]
    if navigation:
      self.client.batch_update(navigation)
      logging.info(f"Linked {len(navigation)} navigation questions to pages")

    self._clear = False
    self._items = []
