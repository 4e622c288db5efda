# examlock/core/importer.py
"""
Bulk question import from .xlsx/.xls/.csv spreadsheets.
One row is one question; any invalid row aborts the whole import.
"""

import io
import logging
import re
import zipfile
from typing import Dict, Any, List

import pandas as pd
from xlrd import XLRDError
from xlrd.compdoc import CompDocError

from .errors import ValidationError

logger = logging.getLogger(__name__)

MAX_OPTIONS = 4
EXCEL_EXTENSIONS = ('.xlsx', '.xls')

# Accepted header spellings, compared after normalization
COLUMN_ALIASES = {
    "question": "question",
    "prompt": "question",
    "correct answer": "correct_answer",
    "correctanswer": "correct_answer",
    "answer": "correct_answer",
    "points": "points",
    "point": "points",
}
for _n, _letter in enumerate("abcd", start=1):
    for _alias in (f"option {_n}", f"option{_n}", f"option {_letter}", f"option{_letter}"):
        COLUMN_ALIASES[_alias] = f"option_{_n}"

REQUIRED_COLUMNS = ["question", "option_1", "correct_answer", "points"]


def _normalize_header(header: Any) -> str:
    key = re.sub(r"[\s_]+", " ", str(header).strip().lower())
    return COLUMN_ALIASES.get(key, key)


def read_spreadsheet(filename: str, content: bytes) -> pd.DataFrame:
    """Load an uploaded file into a DataFrame of strings"""
    if not content:
        raise ValidationError("Uploaded file is empty")

    try:
        if filename.lower().endswith(EXCEL_EXTENSIONS):
            df = pd.read_excel(io.BytesIO(content), dtype=str, keep_default_na=False)
        else:
            df = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False)
    except (ValueError, zipfile.BadZipFile, UnicodeDecodeError, XLRDError, CompDocError) as e:
        raise ValidationError(f"Could not read spreadsheet: {e}")
    except ImportError as e:
        logger.error(f"❌ Spreadsheet reader unavailable for {filename}: {e}")
        raise ValidationError(f"Unsupported spreadsheet format: {filename}")

    df.columns = [_normalize_header(c) for c in df.columns]
    return df


def _parse_points(raw: str) -> int:
    value = float(raw)
    if not value.is_integer():
        raise ValueError("points must be a whole number")
    return int(value)


def parse_question_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert spreadsheet rows into question payloads.

    Row numbers in error messages match the spreadsheet, with the header on row 1.
    """
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValidationError(f"Missing required columns. Required: {', '.join(missing)}")

    if df.empty:
        raise ValidationError("Spreadsheet contains no questions")

    option_columns = [f"option_{n}" for n in range(1, MAX_OPTIONS + 1) if f"option_{n}" in df.columns]
    questions = []

    for index, row in df.iterrows():
        row_number = index + 2
        prompt = str(row["question"]).strip()
        correct = str(row["correct_answer"]).strip()
        options = [str(row[col]).strip() for col in option_columns if str(row[col]).strip()]

        if not prompt:
            raise ValidationError(f"Row {row_number}: question is required")
        if not options:
            raise ValidationError(f"Row {row_number}: at least one option is required")
        if not correct:
            raise ValidationError(f"Row {row_number}: correct answer is required")
        if correct not in options:
            raise ValidationError(f"Row {row_number}: correct answer must match one of the options")

        try:
            points = _parse_points(str(row["points"]).strip())
        except ValueError:
            raise ValidationError(f"Row {row_number}: points must be a positive whole number")
        if points <= 0:
            raise ValidationError(f"Row {row_number}: points must be a positive whole number")

        questions.append({
            "question": prompt,
            "options": options,
            "correct_answer": correct,
            "points": points
        })

    logger.info(f"📄 Parsed {len(questions)} questions from spreadsheet")
    return questions


def import_questions(filename: str, content: bytes) -> List[Dict[str, Any]]:
    return parse_question_rows(read_spreadsheet(filename, content))
