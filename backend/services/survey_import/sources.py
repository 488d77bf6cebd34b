"""
Survey Review Hub - Survey Response Sources

Abstraction over where raw survey responses come from. The import job reads
from a ResponseSource without knowing whether the responses were exported to
a file, fetched from a survey platform, or built in a test.
"""

import csv
import hashlib
import io
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, Iterator, List

logger = logging.getLogger(__name__)


@dataclass
class SurveyResponse:
    """One raw response as exported by the survey platform."""
    survey_id: str
    response_id: str
    answers: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "survey_id": self.survey_id,
            "response_id": self.response_id,
            "answers": dict(self.answers),
        }


class ResponseSource(ABC):
    """Abstract source of survey responses."""

    @abstractmethod
    def iter_responses(
        self,
        survey_filter: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Iterator[SurveyResponse]:
        """
        Iterate over responses, optionally restricted to one survey.

        Args:
            survey_filter: Only yield responses of this survey id
            limit: Maximum number of responses to yield
        """
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        pass

    def get_response_count(self, survey_filter: Optional[str] = None) -> int:
        return sum(1 for _ in self.iter_responses(survey_filter))


def _filtered(
    responses: List[SurveyResponse],
    survey_filter: Optional[str],
    limit: Optional[int]
) -> Iterator[SurveyResponse]:
    count = 0
    for response in responses:
        if survey_filter and response.survey_id != survey_filter:
            continue
        if limit and count >= limit:
            break
        yield response
        count += 1


class InMemoryResponseSource(ResponseSource):
    """In-memory response source for tests and demos."""

    def __init__(self, name: str = "in_memory"):
        self._name = name
        self._responses: List[SurveyResponse] = []

    def add_response(self, survey_id: str, response_id: str, answers: Optional[Dict[str, Any]] = None) -> SurveyResponse:
        response = SurveyResponse(str(survey_id), str(response_id), dict(answers or {}))
        self._responses.append(response)
        return response

    def add_responses(self, responses: List[SurveyResponse]) -> None:
        self._responses.extend(responses)

    def clear(self) -> None:
        self._responses.clear()

    def iter_responses(
        self,
        survey_filter: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Iterator[SurveyResponse]:
        return _filtered(self._responses, survey_filter, limit)

    def get_source_name(self) -> str:
        return self._name


class JsonFileResponseSource(ResponseSource):
    """
    Reads responses from a JSON export:

    {
        "source_name": "Household survey export 2024-05",
        "surveys": [
            {
                "survey_id": "836511",
                "responses": {
                    "17": {"Q1": "yes", "Q2": "3"},
                    ...
                }
            }
        ]
    }

    ``responses`` may also be a list of objects carrying an ``id`` field.
    """

    def __init__(self, file_path: str):
        self._file_path = Path(file_path)
        self._data: Optional[Dict] = None
        self._responses: Optional[List[SurveyResponse]] = None

    def _load(self) -> None:
        if self._data is not None:
            return

        if not self._file_path.exists():
            raise FileNotFoundError(f"Survey export file not found: {self._file_path}")

        with open(self._file_path, 'r', encoding='utf-8') as f:
            self._data = json.load(f)

        self._responses = []
        for survey in self._data.get("surveys", []):
            if not isinstance(survey, dict):
                logger.warning("Skipping non-object survey entry in %s", self._file_path)
                continue
            survey_id = str(survey.get("survey_id", ""))
            raw = survey.get("responses") or {}
            if isinstance(raw, dict):
                items = raw.items()
            else:
                items = ((item.get("id") if isinstance(item, dict) else None, item) for item in raw)

            for response_id, answers in items:
                if not isinstance(answers, dict):
                    logger.warning("Skipping non-object response %r in survey %s", response_id, survey_id)
                    continue
                if response_id is None:
                    logger.warning("Skipping response without id in survey %s", survey_id)
                    continue
                answers = {k: v for k, v in answers.items() if k != "id"}
                self._responses.append(SurveyResponse(survey_id, str(response_id), answers))

        logger.info(f"Loaded {len(self._responses)} responses from {self._file_path}")

    def iter_responses(
        self,
        survey_filter: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Iterator[SurveyResponse]:
        self._load()
        return _filtered(self._responses, survey_filter, limit)

    def get_source_name(self) -> str:
        self._load()
        return self._data.get("source_name", self._file_path.name)


def _row_id(values: List[str]) -> str:
    digest = hashlib.sha256("\x1f".join(values).encode("utf-8")).hexdigest()
    return f"row-{digest[:16]}"


def parse_csv_responses(survey_id: str, csv_text: str) -> List[SurveyResponse]:
    """
    Parse a CSV response export. The header row names the questions; the
    response id is taken from an ``id`` or ``Response ID`` column; without
    one it is derived from the row content, so re-reading the same export
    yields the same ids. Rows with fewer values than headers are skipped.
    """
    reader = csv.reader(io.StringIO(csv_text))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows:
        return []

    headers = rows[0]
    responses = []
    for values in rows[1:]:
        if len(values) < len(headers):
            logger.warning("Skipping short CSV row in survey %s (%d of %d columns)", survey_id, len(values), len(headers))
            continue
        answers = dict(zip(headers, values))
        response_id = answers.get("id") or answers.get("Response ID") or _row_id(values)
        responses.append(SurveyResponse(str(survey_id), str(response_id), answers))
    return responses


class CsvFileResponseSource(ResponseSource):
    """One survey's responses from a CSV export file."""

    def __init__(self, file_path: str, survey_id: str):
        self._file_path = Path(file_path)
        self._survey_id = str(survey_id)
        self._responses: Optional[List[SurveyResponse]] = None

    def iter_responses(
        self,
        survey_filter: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Iterator[SurveyResponse]:
        if self._responses is None:
            if not self._file_path.exists():
                raise FileNotFoundError(f"Survey export file not found: {self._file_path}")
            self._responses = parse_csv_responses(
                self._survey_id, self._file_path.read_text(encoding='utf-8')
            )
        return _filtered(self._responses, survey_filter, limit)

    def get_source_name(self) -> str:
        return self._file_path.name


def create_sample_export_file(file_path: str, survey_id: str = "836511", count: int = 5) -> str:
    """Write a small JSON export for demos and dry runs."""
    export = {
        "source_name": "Sample survey export",
        "surveys": [
            {
                "survey_id": survey_id,
                "responses": {
                    str(i): {"Q1": "yes" if i % 2 else "no", "Q2": str(i), "interviewer_code": f"INT-{i:03d}"}
                    for i in range(1, count + 1)
                },
            }
        ],
    }
    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(export, f, indent=2)
    return file_path
