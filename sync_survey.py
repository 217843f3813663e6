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
Builds the provider survey form from a spreadsheet and flattens its responses.

Examples:
  python sync_survey.py setup --spreadsheet <id or URL> --form <id or URL>
  python sync_survey.py smart_refresh
  python sync_survey.py process --since 2025-01-31T12:00:00Z
  python sync_survey.py preview --catalog_dir ./providers
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from survey.catalog import CsvDirectorySource
from survey.config import SurveyConfig
from survey.errors import SurveyError
from survey.workflow import SurveyWorkflow


COMMANDS = {
    "build": SurveyWorkflow.initialize_form,
    "refresh": SurveyWorkflow.refresh_form,
    "smart_refresh": SurveyWorkflow.smart_refresh,
    "check": SurveyWorkflow.check_setup,
    "setup": SurveyWorkflow.complete_setup,
    "preview": SurveyWorkflow.preview_form,
    "process": SurveyWorkflow.process_new_responses,
    "stats": SurveyWorkflow.response_stats,
}


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(
      description=(
          "Builds a survey whose follow-up questions depend on the chosen"
          " provider, and writes one output row per visited provider."
      )
  )
  parser.add_argument("command", choices=sorted(COMMANDS))
  parser.add_argument(
      "--spreadsheet",
      help="Spreadsheet id or URL. Defaults to $SURVEY_SPREADSHEET.",
  )
  parser.add_argument(
      "--form", help="Form id or edit URL. Defaults to $SURVEY_FORM."
  )
  parser.add_argument(
      "--credentials",
      help=(
          "Service account key file. Defaults to"
          " $GOOGLE_APPLICATION_CREDENTIALS, then application default"
          " credentials."
      ),
  )
  parser.add_argument("--output_tab", help="Tab that receives output rows.")
  parser.add_argument(
      "--manifest", help="Where the question tag manifest is written and read."
  )
  parser.add_argument(
      "--catalog_dir",
      help="Read providers from CSV files in this directory instead.",
  )
  parser.add_argument(
      "--since",
      help="Only process responses submitted after this RFC 3339 timestamp.",
  )
  parser.add_argument(
      "--log_level",
      default="INFO",
      choices=["DEBUG", "INFO", "WARNING", "ERROR"],
  )
  return parser.parse_args(argv)


def _workflow(args: argparse.Namespace) -> SurveyWorkflow:
  if args.command == "preview" and args.catalog_dir:
    # A preview from local files needs neither the spreadsheet nor the form.
    config = SurveyConfig(spreadsheet_id="", form_id="")
    return SurveyWorkflow(config, source=CsvDirectorySource(args.catalog_dir))

  config = SurveyConfig.from_env(
      spreadsheet_id=args.spreadsheet,
      form_id=args.form,
      credentials_file=args.credentials,
      output_tab=args.output_tab,
      manifest_path=args.manifest,
  )
  return SurveyWorkflow.connect(config, catalog_dir=args.catalog_dir)


def main(argv: Optional[List[str]] = None) -> int:
  args = _parse_args(argv)
  logging.basicConfig(
      level=args.log_level, format="%(asctime)s %(levelname)s %(message)s"
  )

  try:
    workflow = _workflow(args)
  except SurveyError as e:
    logging.error(f"Configuration error: {e}")
    return 2

  if args.command == "process":
    result = workflow.process_new_responses(since=args.since)
  else:
    result = COMMANDS[args.command](workflow)

  if args.command == "preview" and result["success"]:
    print(result["data"]["description"])
  else:
    print(json.dumps(result, indent=2, default=str))
  return 0 if result["success"] else 1


if __name__ == "__main__":
  sys.exit(main())
