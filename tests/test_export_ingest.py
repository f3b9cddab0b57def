"""Tests for question file parsing and CSV export.

Covers:
- split_manual_questions(), header detection
- parse_question_file(): CSV with/without header, BOM, Excel, bad extension
- results_to_csv(): quoting of commas, quotes and line breaks
"""

from __future__ import annotations

import csv
import io

import pytest
from openpyxl import Workbook

from chatgpt_batch.export import CSV_HEADER, results_to_csv, write_results_csv
from chatgpt_batch.ingest import looks_like_header, parse_question_file, split_manual_questions
from chatgpt_batch.models.result import ScrapeResult

# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------


class TestManualQuestions:
    def test_one_per_line_trimmed(self):
        text = "  What is 2+2? \n\n\nWho wrote Hamlet?\n   \n"
        assert split_manual_questions(text) == ["What is 2+2?", "Who wrote Hamlet?"]

    def test_empty(self):
        assert split_manual_questions("") == []


class TestHeaderDetection:
    @pytest.mark.parametrize("value", ["Question", "questions", "Your Prompt", "QUERY"])
    def test_header_like(self, value):
        assert looks_like_header(value)

    def test_real_question(self):
        assert not looks_like_header("How tall is Mount Everest?")


class TestParseQuestionFile:
    def test_csv_with_header(self, tmp_path):
        path = tmp_path / "q.csv"
        path.write_text("Question,Notes\nWhat is 2+2?,easy\n,\nCapital of France?,\n", encoding="utf-8")
        assert parse_question_file(path) == ["What is 2+2?", "Capital of France?"]

    def test_csv_without_header(self, tmp_path):
        path = tmp_path / "q.csv"
        path.write_text("What is 2+2?\nCapital of France?\n", encoding="utf-8")
        assert parse_question_file(path) == ["What is 2+2?", "Capital of France?"]

    def test_csv_with_bom_and_forced_header(self, tmp_path):
        path = tmp_path / "q.csv"
        path.write_text("Items\nWhat is 2+2?\n", encoding="utf-8-sig")
        assert parse_question_file(path, has_header=True) == ["What is 2+2?"]

    def test_quoted_multiline_question(self, tmp_path):
        path = tmp_path / "q.csv"
        path.write_text('"Explain this, please:\nline two"\n', encoding="utf-8")
        assert parse_question_file(path, has_header=False) == ["Explain this, please:\nline two"]

    def test_xlsx_first_sheet_first_column(self, tmp_path):
        path = tmp_path / "q.xlsx"
        workbook = Workbook()
        sheet = workbook.active
        sheet.append(["Questions", "Category"])
        sheet.append(["What is 2+2?", "math"])
        sheet.append([None, "blank"])
        sheet.append([42, "number"])
        workbook.save(path)

        assert parse_question_file(path) == ["What is 2+2?", "42"]

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "q.txt"
        path.write_text("What is 2+2?\n")
        with pytest.raises(ValueError, match="Unsupported file format"):
            parse_question_file(path)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class TestResultsToCsv:
    def test_fields_survive_quoting(self):
        results = [
            ScrapeResult(question="What is 2+2?", answer="4"),
            ScrapeResult(
                question='Say "hi", politely',
                answer="Line one\nLine two, with comma",
                sources="https://a.example/, https://b.example/",
            ),
        ]

        text = results_to_csv(results)
        rows = list(csv.reader(io.StringIO(text)))

        assert rows[0] == CSV_HEADER
        assert rows[1] == ["What is 2+2?", "4", ""]
        assert rows[2] == [
            'Say "hi", politely',
            "Line one\nLine two, with comma",
            "https://a.example/, https://b.example/",
        ]
        assert '"Say ""hi"", politely"' in text

    def test_plain_fields_are_not_quoted(self):
        text = results_to_csv([ScrapeResult(question="Q", answer="A")])
        assert text == "Question,Answer,Sources\nQ,A,\n"

    def test_write_creates_parent_directories(self, tmp_path):
        path = write_results_csv([ScrapeResult(question="Q", answer="A")], tmp_path / "out" / "r.csv")
        assert path.read_text(encoding="utf-8").startswith("Question,Answer,Sources")
