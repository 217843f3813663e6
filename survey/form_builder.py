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
Builds the branching questionnaire from a provider catalog.

The form has an intake page (free-text intake fields and a "choose provider"
question), one page per provider (a multi-select of the provider's items and a
"next step" question), and a final page with an optional comments question.
Navigation only ever jumps forward in catalog order, so the page graph has no
cycles.
"""

import dataclasses
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from survey.catalog import ProviderCatalog, dedupe
from survey.config import LabelConvention, QuestionTag, TagRole
from survey.errors import NoProvidersFound, PartialProviderFailure, SurveyError
from survey.form_model import FormItem, FormSurface, check_forward_only
from survey.form_model import manifest_from_items


@dataclasses.dataclass
class BuildResult:
  """References to the pages and questions created by a build."""

  provider_pages: Dict[str, FormItem]
  final_page: FormItem
  choose_provider: FormItem
  next_steps: Dict[str, FormItem]
  items: List[FormItem]
  failures: List[PartialProviderFailure] = dataclasses.field(
      default_factory=list
  )

  @property
  def providers(self) -> List[str]:
    return list(self.provider_pages)

  def manifest(self) -> Dict[str, QuestionTag]:
    return manifest_from_items(self.items)


class FormBuilder:
  """Creates the form's pages and navigation on a form surface."""

  def __init__(
      self, surface: FormSurface, labels: Optional[LabelConvention] = None
  ):
    self.surface = surface
    self.labels = labels or LabelConvention()
    self._items: List[FormItem] = []

  def rebuild(self, catalog: ProviderCatalog) -> BuildResult:
    """Replaces the whole form with one built from the catalog.

    The catalog is checked before anything is cleared, so an empty catalog
    leaves the existing form untouched.
    """
    if not _providers_with_items(catalog):
      raise NoProvidersFound("No provider has at least one item.")
    self.surface.clear_all_items()
    return self.build(catalog)

  def build(self, catalog: ProviderCatalog) -> BuildResult:
    """Builds the form on a surface that callers have already cleared.

    Args:
      catalog: Provider name to item names, in the order pages should appear.

    Returns:
      The pages and questions that were created.

    Raises:
      NoProvidersFound: The catalog is empty, or every provider failed.
    """
    providers = _providers_with_items(catalog)
    if not providers:
      raise NoProvidersFound("No provider has at least one item.")

    self._items = []
    self._add_intake_questions()
    choose_provider = self._add(self.surface.add_single_select_item())
    choose_provider.set_title(self.labels.choose_provider_title)
    choose_provider.set_help_text(self.labels.choose_provider_help)
    choose_provider.set_required(True)
    choose_provider.set_tag(QuestionTag(TagRole.CHOOSE_PROVIDER))

    provider_pages: Dict[str, FormItem] = {}
    next_steps: Dict[str, FormItem] = {}
    failures: List[PartialProviderFailure] = []
    for provider, items in providers:
      try:
        page, next_step = self._add_provider_page(provider, items)
      except PartialProviderFailure as e:
        logging.warning(str(e))
        failures.append(e)
        continue
      provider_pages[provider] = page
      next_steps[provider] = next_step
      logging.info(
          f"Created page for {provider} with {len(items)} options"
      )

    if not provider_pages:
      raise NoProvidersFound(
          f"All {len(providers)} providers failed to build: "
          + "; ".join(str(f) for f in failures)
      )

    final_page = self._add_final_page()

    # Pages exist now, so navigation can point at any of them.
    self._attach_navigation(
        choose_provider, provider_pages, next_steps, final_page
    )
    check_forward_only(self._items)
    self.surface.commit()
    logging.info(
        f"Set up conditional navigation for {len(provider_pages)} providers"
        " (+ submit)"
    )

    return BuildResult(
        provider_pages=provider_pages,
        final_page=final_page,
        choose_provider=choose_provider,
        next_steps=next_steps,
        items=list(self._items),
        failures=failures,
    )

  def _add(self, item: FormItem) -> FormItem:
    self._items.append(item)
    return item

  def _add_intake_questions(self):
    for field in self.labels.intake_fields:
      question = self._add(self.surface.add_text_item())
      question.set_title(field.title)
      question.set_help_text(field.help_text)
      question.set_required(True)
      question.set_tag(QuestionTag(TagRole.INTAKE, field.key))

  def _check_provider(self, provider: str):
    if not provider.strip():
      raise ValueError("provider name is blank")
    if provider == self.labels.skip_label:
      raise ValueError(
          f"provider name collides with the '{self.labels.skip_label}' choice"
      )
    title = self.labels.item_list_title_for(provider)
    decoded = self.labels.provider_from_item_list_title(title)
    if decoded != provider:
      raise ValueError(
          f"question title '{title}' decodes to '{decoded}', not to the"
          " provider name"
      )

  def _add_provider_page(
      self, provider: str, items: Sequence[str]
  ) -> Tuple[FormItem, FormItem]:
    """Adds one provider's page, removing anything half-built on failure."""
    created: List[FormItem] = []
    try:
      self._check_provider(provider)

      page = self.surface.add_page_break()
      created.append(page)
      page.set_title(self.labels.page_title_for(provider))
      page.set_help_text(self.labels.page_help_for(provider))

      item_list = self.surface.add_multi_select_item()
      created.append(item_list)
      item_list.set_title(self.labels.item_list_title_for(provider))
      item_list.set_help_text(self.labels.item_list_help_for(provider))
      item_list.set_required(False)
      item_list.set_choice_values(items)
      item_list.set_tag(QuestionTag(TagRole.ITEM_LIST, provider))

      next_step = self.surface.add_single_select_item()
      created.append(next_step)
      next_step.set_title(self.labels.next_step_title)
      next_step.set_help_text(self.labels.next_step_help)
      next_step.set_required(True)
      next_step.set_tag(QuestionTag(TagRole.NEXT_STEP))
    except (ValueError, SurveyError) as e:
      for item in created:
        self.surface.remove_item(item)
      raise PartialProviderFailure(provider, str(e)) from e

    self._items.extend(created)
    return page, next_step

  def _add_final_page(self) -> FormItem:
    final_page = self._add(self.surface.add_page_break())
    final_page.set_title(self.labels.final_page_title)
    final_page.set_help_text(self.labels.final_page_help)

    comments = self._add(self.surface.add_text_item(paragraph=True))
    comments.set_title(self.labels.comments_title)
    comments.set_help_text(self.labels.comments_help)
    comments.set_required(False)
    comments.set_tag(QuestionTag(TagRole.COMMENTS))
    return final_page

  def _attach_navigation(
      self,
      choose_provider: FormItem,
      provider_pages: Dict[str, FormItem],
      next_steps: Dict[str, FormItem],
      final_page: FormItem,
  ):
    skip = (self.labels.skip_label, final_page)
    providers = list(provider_pages)

    choose_provider.set_choices(
        [(p, provider_pages[p]) for p in providers] + [skip]
    )
    # Only later providers are offered, so a respondent can never revisit
    # a provider page.
    for index, provider in enumerate(providers):
      later = providers[index + 1 :]
      next_steps[provider].set_choices(
          [(p, provider_pages[p]) for p in later] + [skip]
      )


def _providers_with_items(
    catalog: ProviderCatalog,
) -> List[Tuple[str, List[str]]]:
  providers = []
  for provider, items in catalog.items():
    cleaned = dedupe(item.strip() for item in items if item and item.strip())
    if cleaned:
      providers.append((provider, cleaned))
  return providers
