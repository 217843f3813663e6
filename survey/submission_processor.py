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
Flattens one completed response into output rows, one per visited provider.

A response is a flat list of answered questions. Each answer is classified by
its manifest tag when one is known for its question id, and otherwise by its
title according to the LabelConvention the form was built with.
"""

import dataclasses
import datetime
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from survey.catalog import dedupe
from survey.config import LabelConvention, QuestionTag, TagRole
from survey.errors import SurveyError, UnmatchedQuestion


AnswerValue = Union[str, List[str], None]

ITEM_SEPARATOR = ", "


@dataclasses.dataclass
class Answer:
  title: str
  value: AnswerValue
  question_id: Optional[str] = None


@dataclasses.dataclass
class Response:
  """One completed traversal of the form."""

  timestamp: Union[datetime.datetime, str]
  answers: List[Answer]
  respondent: str = ""
  response_id: str = ""


@dataclasses.dataclass
class OutputRecord:
  timestamp: Union[datetime.datetime, str]
  intake: Dict[str, str]
  provider: str
  items: List[str]
  comment: str
  respondent: str

  @property
  def item_count(self) -> int:
    return len(self.items)

  def to_row(self, labels: LabelConvention) -> List[Any]:
    timestamp = self.timestamp
    if isinstance(timestamp, datetime.datetime):
      timestamp = timestamp.isoformat()
    return [
        timestamp,
        *(self.intake.get(field.key, "") for field in labels.intake_fields),
        self.provider,
        self.item_count,
        ITEM_SEPARATOR.join(self.items),
        self.comment,
        self.respondent,
    ]


def output_header(labels: LabelConvention) -> List[str]:
  return [
      "Timestamp",
      *(field.title for field in labels.intake_fields),
      "Provider",
      "Item Count",
      "Items",
      "Comments",
      "Respondent Email",
  ]


class ResponseSink(Protocol):
  """Append-only destination for output rows."""

  def append_row(self, values: Sequence[Any]) -> None:
    ...


@dataclasses.dataclass
class ProcessResult:
  records: List[OutputRecord]
  unmatched: List[str]
  written: int = 0
  sink_failures: List[str] = dataclasses.field(default_factory=list)

  @property
  def success(self) -> bool:
    return not self.sink_failures


@dataclasses.dataclass
class _Submission:
  intake: Dict[str, str] = dataclasses.field(default_factory=dict)
  visited: List[str] = dataclasses.field(default_factory=list)
  items_by_provider: Dict[str, List[str]] = dataclasses.field(
      default_factory=dict
  )
  comment: str = ""
  unmatched: List[str] = dataclasses.field(default_factory=list)


def _as_text(value: AnswerValue) -> str:
  if value is None:
    return ""
  if isinstance(value, (list, tuple)):
    return ITEM_SEPARATOR.join(str(v).strip() for v in value if str(v).strip())
  return str(value).strip()


def _as_list(value: AnswerValue) -> List[str]:
  if value is None:
    return []
  if isinstance(value, (list, tuple)):
    return [str(v).strip() for v in value if str(v).strip()]
  text = str(value).strip()
  return [text] if text else []


class SubmissionProcessor:
  """Maps responses to output records and appends them to a sink."""

  def __init__(
      self,
      labels: Optional[LabelConvention] = None,
      manifest: Optional[Mapping[str, QuestionTag]] = None,
      sink: Optional[ResponseSink] = None,
  ):
    self.labels = labels or LabelConvention()
    self.manifest = dict(manifest or {})
    self.sink = sink

  def classify(self, answer: Answer) -> Optional[QuestionTag]:
    if answer.question_id and answer.question_id in self.manifest:
      return self.manifest[answer.question_id]
    return self.labels.classify(answer.title)

  def _collect(self, response: Response) -> _Submission:
    submission = _Submission(
        intake={field.key: "" for field in self.labels.intake_fields}
    )
    for answer in response.answers:
      tag = self.classify(answer)
      if tag is None:
        unmatched = UnmatchedQuestion(answer.title)
        logging.warning(str(unmatched))
        submission.unmatched.append(unmatched.title)
        continue

      if tag.role == TagRole.INTAKE:
        submission.intake[tag.key] = _as_text(answer.value)
      elif tag.role in (TagRole.CHOOSE_PROVIDER, TagRole.NEXT_STEP):
        # Both questions are equally valid signals of a provider visit.
        submission.visited.extend(
            choice
            for choice in _as_list(answer.value)
            if choice != self.labels.skip_label
        )
      elif tag.role == TagRole.ITEM_LIST:
        submission.items_by_provider[tag.key] = _as_list(answer.value)
      elif tag.role == TagRole.COMMENTS:
        submission.comment = _as_text(answer.value)

    submission.visited = dedupe(submission.visited)
    return submission

  def process(self, response: Response) -> List[OutputRecord]:
    """Returns one record per visited provider, or a single empty one.

    A response that never reached a provider page still yields exactly one
    record, with an empty provider and no items.
    """
    return self._records(response, self._collect(response))

  def _records(
      self, response: Response, submission: _Submission
  ) -> List[OutputRecord]:
    providers = submission.visited or [""]
    return [
        OutputRecord(
            timestamp=response.timestamp,
            intake=dict(submission.intake),
            provider=provider,
            items=list(submission.items_by_provider.get(provider, [])),
            comment=submission.comment,
            respondent=response.respondent or "",
        )
        for provider in providers
    ]

  def record(self, response: Response) -> ProcessResult:
    """Processes a response and appends its records to the sink.

    Each append is attempted once. A failed append is logged and reported in
    the result, and the remaining records are still attempted.
    """
    submission = self._collect(response)
    result = ProcessResult(
        records=self._records(response, submission),
        unmatched=submission.unmatched,
    )
    if self.sink is None:
      return result

    for record in result.records:
      try:
        self.sink.append_row(record.to_row(self.labels))
        result.written += 1
      except (SurveyError, OSError, ValueError) as e:
        logging.error(
            f"Error saving record for provider '{record.provider}' of"
            f" response {response.response_id or response.timestamp}:"
            f" {repr(e)}"
        )
        result.sink_failures.append(repr(e))

    logging.info(
        f"Saved {result.written} of {len(result.records)} rows for response"
        f" {response.response_id or response.timestamp}"
    )
    return result
