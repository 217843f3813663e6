import json
import logging
import os
import tempfile
import unittest
from unittest.mock import MagicMock

import pandas as pd
from google.auth import exceptions as google_auth_exceptions

from clients.forms_client import FormsClient, QuestionInfo
from clients.google_api import GoogleApiError
from clients.sheets_client import SheetsClient
from survey import workflow
from survey.config import SurveyConfig
from survey.form_model import InMemoryFormSurface, ItemKind
from survey.submission_processor import Answer, Response

# Disable logging for tests
logging.disable(logging.CRITICAL)

CATALOG = {'AWS': ['EC2', 'S3'], 'Azure': ['VM']}


def raw_response(response_id, submitted, provider, items):
  def text(*values):
    return {'textAnswers': {'answers': [{'value': v} for v in values]}}

  return {
      'responseId': response_id,
      'lastSubmittedTime': submitted,
      'respondentEmail': f'{response_id}@example.com',
      'answers': {
          'q1': text('Ada'),
          'q2': text(provider),
          'q3': text(*items),
      },
  }


LAYOUT = [
    QuestionInfo('i1', 'q1', 'Full Name', ItemKind.TEXT, []),
    QuestionInfo(
        'i2',
        'q2',
        'Choose Your Cloud Provider',
        ItemKind.SINGLE_SELECT,
        ['AWS', 'Azure', 'Go to Submit'],
    ),
    QuestionInfo(
        'i3', 'q3', 'AWS Technology Experience', ItemKind.MULTI_SELECT,
        ['EC2', 'S3'],
    ),
    QuestionInfo(
        'i4', 'q4', 'Azure Technology Experience', ItemKind.MULTI_SELECT,
        ['VM'],
    ),
]


class SurveyWorkflowTest(unittest.TestCase):

  def setUp(self):
    self.temp_dir = tempfile.TemporaryDirectory()
    self.addCleanup(self.temp_dir.cleanup)
    self.manifest_path = os.path.join(self.temp_dir.name, 'manifest.json')
    self.config = SurveyConfig(
        'sheet123', 'form1', manifest_path=self.manifest_path
    )

    self.sheets = MagicMock()
    self.sheets.list_tabs.return_value = ['AWS', 'Form Responses 1', 'Azure']
    self.sheets.read_column.side_effect = (
        lambda tab, column_index=0: list(CATALOG[tab])
    )
    self.sheets.get_title.return_value = 'Cloud Skills'

    self.surface = InMemoryFormSurface()
    self.forms = MagicMock()
    self.forms.surface.return_value = self.surface
    self.forms.get_title.return_value = 'Cloud Skills Form'
    self.forms.urls.return_value = {
        'form_url': 'https://docs.google.com/forms/d/e/pub/viewform',
        'edit_url': 'https://docs.google.com/forms/d/form1/edit',
    }
    self.forms.read_layout.return_value = LAYOUT

    self.workflow = workflow.SurveyWorkflow(
        self.config, sheets=self.sheets, forms=self.forms
    )

  def test_initialize_form(self):
    result = self.workflow.initialize_form()
    self.assertTrue(result['success'])
    data = result['data']
    self.assertEqual(data['providers'], ['AWS', 'Azure'])
    self.assertEqual(data['total_items'], 3)
    self.assertEqual(data['catalog'], CATALOG)
    self.assertEqual(data['failures'], [])
    self.assertEqual(data['edit_url'], 'https://docs.google.com/forms/d/form1/edit')
    self.assertEqual(len(self.surface.pages()), 4)
    self.assertEqual(self.surface.commit_count, 1)

    with open(self.manifest_path) as f:
      manifest = json.load(f)
    self.assertEqual(len(manifest), 8)

  def test_initialize_form_without_providers(self):
    self.sheets.list_tabs.return_value = ['Form Responses 1']
    result = self.workflow.initialize_form()
    self.assertFalse(result['success'])
    self.assertIn('NoProvidersFound', result['error'])
    self.forms.surface.assert_not_called()

  def test_initialize_form_api_failure(self):
    self.forms.urls.side_effect = GoogleApiError('Get form failed', status=403)
    result = self.workflow.initialize_form()
    self.assertFalse(result['success'])
    self.assertIn('Get form failed', result['error'])

  def test_smart_refresh_without_changes(self):
    result = self.workflow.smart_refresh()
    self.assertTrue(result['success'])
    self.assertFalse(result['data']['changed'])
    self.forms.surface.assert_not_called()

  def test_smart_refresh_ignores_item_order(self):
    self.sheets.read_column.side_effect = lambda tab, column_index=0: list(
        reversed(CATALOG[tab])
    )
    result = self.workflow.smart_refresh()
    self.assertFalse(result['data']['changed'])

  def test_smart_refresh_with_changes(self):
    self.forms.read_layout.return_value = LAYOUT[:3]
    result = self.workflow.smart_refresh()
    self.assertTrue(result['success'])
    self.assertTrue(result['data']['changed'])
    self.assertEqual(self.surface.commit_count, 1)

  def test_smart_refresh_falls_back_to_full_refresh(self):
    self.forms.read_layout.side_effect = GoogleApiError('boom', status=500)
    result = self.workflow.smart_refresh()
    self.assertTrue(result['success'])
    self.assertTrue(result['data']['changed'])
    self.assertEqual(self.surface.commit_count, 1)

  def test_check_setup(self):
    result = self.workflow.check_setup()
    self.assertTrue(result['success'])
    self.assertEqual(result['data']['spreadsheet_title'], 'Cloud Skills')
    self.assertEqual(result['data']['form_title'], 'Cloud Skills Form')
    self.assertEqual(result['data']['providers'], ['AWS', 'Azure'])
    self.assertEqual(result['data']['total_items'], 3)

  def test_check_setup_unreachable_spreadsheet(self):
    self.sheets.get_title.side_effect = GoogleApiError('denied', status=403)
    result = self.workflow.check_setup()
    self.assertFalse(result['success'])
    self.assertIn('denied', result['error'])

  def test_complete_setup(self):
    result = self.workflow.complete_setup()
    self.assertTrue(result['success'])
    self.assertEqual(result['data']['providers'], ['AWS', 'Azure'])

  def test_complete_setup_stops_when_check_fails(self):
    self.forms.get_title.side_effect = GoogleApiError('denied', status=403)
    result = self.workflow.complete_setup()
    self.assertFalse(result['success'])
    self.assertIn('Setup check failed', result['error'])
    self.forms.surface.assert_not_called()

  def test_handle_submission(self):
    response = Response(
        timestamp='2025-03-01T09:30:00Z',
        answers=[
            Answer('Full Name', 'Ada'),
            Answer('Choose Your Cloud Provider', 'AWS'),
            Answer('AWS Technology Experience', ['EC2']),
            Answer('Next step', 'Azure'),
        ],
        respondent='ada@example.com',
        response_id='r1',
    )
    result = self.workflow.handle_submission(response)
    self.assertTrue(result['success'])
    self.assertEqual(result['data']['records'], 2)
    self.assertEqual(result['data']['written'], 2)
    self.sheets.ensure_tab.assert_called_once()
    appended = [c.args for c in self.sheets.append_row.call_args_list]
    self.assertEqual([args[0] for args in appended], ['Survey_Responses'] * 2)
    self.assertEqual([args[1][3] for args in appended], ['AWS', 'Azure'])

  def test_handle_submission_with_failing_sink(self):
    self.sheets.append_row.side_effect = GoogleApiError('quota', status=429)
    response = Response(
        timestamp='2025-03-01T09:30:00Z',
        answers=[Answer('Choose Your Cloud Provider', 'AWS')],
        response_id='r1',
    )
    result = self.workflow.handle_submission(response)
    self.assertFalse(result['success'])
    self.assertEqual(result['data']['written'], 0)
    self.assertEqual(len(result['data']['sink_failures']), 1)

  def test_process_new_responses(self):
    """Tests that responses are handled oldest first."""
    self.forms.list_responses.return_value = [
        raw_response('r2', '2025-03-02T10:00:00Z', 'Azure', []),
        raw_response('r1', '2025-03-01T10:00:00Z', 'AWS', ['EC2', 'S3']),
    ]
    result = self.workflow.process_new_responses(since='2025-02-28T00:00:00Z')
    self.assertTrue(result['success'])
    data = result['data']
    self.assertEqual(data['processed'], 2)
    self.assertEqual(data['failed'], 0)
    self.assertEqual([r['response_id'] for r in data['results']], ['r1', 'r2'])
    self.assertEqual(data['newest_timestamp'], '2025-03-02T10:00:00Z')
    self.forms.list_responses.assert_called_once_with('2025-02-28T00:00:00Z')

    rows = [c.args[1] for c in self.sheets.append_row.call_args_list]
    self.assertEqual(
        [(row[3], row[4], row[5]) for row in rows],
        [('AWS', 2, 'EC2, S3'), ('Azure', 0, '')],
    )

  def test_process_new_responses_without_new_responses(self):
    self.forms.list_responses.return_value = []
    result = self.workflow.process_new_responses(since='2025-02-28T00:00:00Z')
    self.assertEqual(result['data']['processed'], 0)
    self.assertEqual(result['data']['newest_timestamp'], '2025-02-28T00:00:00Z')

  def test_process_new_responses_unreachable_form(self):
    self.forms.list_responses.side_effect = GoogleApiError('gone', status=404)
    result = self.workflow.process_new_responses()
    self.assertFalse(result['success'])

  def test_response_stats(self):
    self.sheets.list_tabs.return_value = ['AWS', 'Survey_Responses']
    self.sheets.read_table.return_value = pd.DataFrame({
        'Timestamp': ['t1', 't1', 't2'],
        'Provider': ['AWS', 'Azure', ''],
        'Item Count': ['2', '1', '0'],
        'Respondent Email': ['a@x.com', 'a@x.com', 'b@x.com'],
    })
    result = self.workflow.response_stats()
    self.assertTrue(result['success'])
    self.assertEqual(
        result['data'],
        {
            'total_rows': 3,
            'submissions': 2,
            'rows_with_provider': 2,
            'average_item_count': 1.0,
            'rows_per_provider': {'AWS': 1, 'Azure': 1},
        },
    )

  def test_response_stats_without_output_tab(self):
    result = self.workflow.response_stats()
    self.assertTrue(result['success'])
    self.assertEqual(result['data']['total_rows'], 0)
    self.sheets.read_table.assert_not_called()

  def test_preview_form(self):
    preview = workflow.SurveyWorkflow(
        SurveyConfig('', ''), source=self.sheets
    ).preview_form()
    self.assertTrue(preview['success'])
    self.assertEqual(preview['data']['providers'], ['AWS', 'Azure'])
    self.assertIn('[Page 2] AWS Technologies', preview['data']['description'])
    self.forms.surface.assert_not_called()


class UnavailableServicesTest(unittest.TestCase):
  """Runs the operations against real clients whose requests fail."""

  def _workflow(self, error):
    sheets_service = MagicMock()
    spreadsheets = sheets_service.spreadsheets.return_value
    spreadsheets.get.return_value.execute.side_effect = error
    forms_service = MagicMock()
    forms = forms_service.forms.return_value
    forms.get.return_value.execute.side_effect = error
    forms.responses.return_value.list.return_value.execute.side_effect = error
    return workflow.SurveyWorkflow(
        SurveyConfig('sheet123', 'form1'),
        sheets=SheetsClient('sheet123', service=sheets_service),
        forms=FormsClient('form1', service=forms_service),
    )

  def test_rejected_credentials(self):
    flow = self._workflow(
        google_auth_exceptions.RefreshError('invalid_grant')
    )
    for result in (
        flow.check_setup(),
        flow.initialize_form(),
        flow.process_new_responses(),
    ):
      self.assertFalse(result['success'])
      self.assertIn('ConfigurationError', result['error'])

  def test_network_failure(self):
    flow = self._workflow(google_auth_exceptions.TransportError('dns'))
    result = flow.process_new_responses()
    self.assertFalse(result['success'])
    self.assertIn('dns', result['error'])


class CatalogsMatchTest(unittest.TestCase):

  def test_item_order_is_ignored(self):
    self.assertTrue(
        workflow.catalogs_match(
            {'AWS': ['EC2', 'S3']}, {'AWS': ['S3', 'EC2']}
        )
    )

  def test_provider_order_matters(self):
    self.assertFalse(
        workflow.catalogs_match(
            {'AWS': ['EC2'], 'Azure': ['VM']},
            {'Azure': ['VM'], 'AWS': ['EC2']},
        )
    )

  def test_different_items(self):
    self.assertFalse(
        workflow.catalogs_match({'AWS': ['EC2']}, {'AWS': ['EC2', 'S3']})
    )
    self.assertFalse(workflow.catalogs_match({'AWS': ['EC2']}, {}))


if __name__ == '__main__':
  unittest.main()
