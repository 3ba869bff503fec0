"""
Format normalization.

Four independent normalizers (JSON, XML, CSV, spreadsheet) share one contract:
raw upload content in, ParseResult out.

- JSON and XML produce a TreeResult (objects, arrays, scalars).
- CSV and spreadsheets produce a TableResult (header-keyed string records).
- Malformed input never raises; it becomes a ParseError carrying a preview
  of the raw text (text formats only).
"""

from __future__ import annotations

import datetime
import functools
import io
import json
import logging
import math
import re
import zipfile
from typing import Any, Callable, Dict, List, Optional, Sequence
from xml.parsers.expat import ExpatError

import openpyxl
import xlrd
import xmltodict
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.xldate import xldate_as_datetime

from .formats import decode_text, file_extension
from .models import ParseError, ParseResult, TableResult, TreeResult
from .rules import (
    EMPTY_HEADER,
    FORCED_ARRAY_TAGS,
    MAX_INPUT_CHARS,
    MAX_INTEGER_DIGITS,
    MAX_NESTING_DEPTH,
    MAX_UPLOAD_BYTES,
    PREVIEW_CHARS,
    PREVIEW_ELLIPSIS,
    XML_ATTRIBUTE_PREFIX,
    XML_TEXT_KEY,
)

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r?\n")
_QUOTE_WRAPPED = re.compile(r"""^["'](.*)["']$""")
_INTEGER = re.compile(r"[+-]?\d+")
_DECIMAL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_SURROGATE = re.compile("[\ud800-\udfff]")

_ZIP_MAGIC = b"PK\x03\x04"
_OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


class WorkbookError(ValueError):
    pass


def preview(text: str) -> str:
    """First PREVIEW_CHARS characters of text, with an ellipsis if truncated."""
    head = text[:PREVIEW_CHARS]
    if len(text) > PREVIEW_CHARS:
        return head + PREVIEW_ELLIPSIS
    return head


def _reject(message: str, text: Optional[str] = None) -> ParseError:
    logger.warning("normalization failed: %s", message)
    return ParseError(
        message=message,
        original_data_preview=preview(text) if isinstance(text, str) else None,
    )


def _failure(label: str, exc: BaseException, text: Optional[str] = None) -> ParseError:
    return _reject(f"Failed to parse {label}: {exc}", text)


def never_raises(label: str, with_preview: bool = True) -> Callable:
    """
    Normalizer boundary: fold any unexpected exception into a ParseError.

    Expected malformed input is handled inside each normalizer; this only
    catches faults the normalizer did not anticipate.
    """

    def decorator(func: Callable[..., ParseResult]) -> Callable[..., ParseResult]:
        @functools.wraps(func)
        def wrapper(data, *args, **kwargs) -> ParseResult:
            try:
                return func(data, *args, **kwargs)
            except Exception as exc:
                logger.exception("unexpected fault while parsing %s", label)
                return _failure(label, exc, data if with_preview else None)

        return wrapper

    return decorator


def _oversize(text: Optional[str] = None) -> ParseError:
    limit_mb = MAX_UPLOAD_BYTES // (1024 * 1024)
    return _reject(f"Input exceeds the {limit_mb} MB limit", text)


def check_tree(value: Any) -> None:
    """
    Raise ValueError for a decoded tree the HTTP layer cannot emit: containers
    nested deeper than MAX_NESTING_DEPTH, or strings holding unpaired
    surrogates (not encodable as UTF-8).
    """
    stack = [(value, 1)]
    while stack:
        node, depth = stack.pop()
        if isinstance(node, str):
            _check_text(node)
        elif isinstance(node, (dict, list)):
            if depth > MAX_NESTING_DEPTH:
                raise ValueError(f"Nesting exceeds {MAX_NESTING_DEPTH} levels")
            items = node.items() if isinstance(node, dict) else enumerate(node)
            for key, child in items:
                if isinstance(key, str):
                    _check_text(key)
                stack.append((child, depth + 1))


def _check_text(text: str) -> None:
    match = _SURROGATE.search(text)
    if match:
        raise ValueError(f"Unpaired surrogate U+{ord(match.group()):04X} in string")


def _reject_constant(name: str):
    raise ValueError(f"Invalid JSON literal: {name}")


def _finite_float(token: str) -> float:
    value = float(token)
    if math.isinf(value):
        raise ValueError(f"Number out of range: {token}")
    return value


@never_raises("JSON")
def normalize_json(text: str) -> ParseResult:
    if len(text) > MAX_INPUT_CHARS:
        return _oversize(text)
    try:
        value = json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)
        check_tree(value)
    except (ValueError, RecursionError) as exc:
        return _failure("JSON", exc, text)
    return TreeResult(value=value)


def coerce_scalar(value: str) -> Any:
    """Type leaf text and attribute values: booleans, integers, decimals."""
    value = value.strip()
    if value == "true":
        return True
    if value == "false":
        return False
    if _INTEGER.fullmatch(value):
        if len(value.lstrip("+-")) > MAX_INTEGER_DIGITS:
            return value
        return int(value)
    if _DECIMAL.fullmatch(value):
        number = float(value)
        if not math.isinf(number):
            return number
    return value


def _coerce_values(path, key, value):
    if value is None:
        return key, ""
    if isinstance(value, str):
        return key, coerce_scalar(value)
    return key, value


@never_raises("XML")
def normalize_xml(text: str, force_list: Sequence[str] = FORCED_ARRAY_TAGS) -> ParseResult:
    """
    Decode XML into the same tree shape as JSON.

    Attributes live next to child elements under the "@_" prefix. Tags named
    in force_list are always lists, even for a single occurrence; every other
    repeated tag becomes a list only when it occurs more than once.
    """
    stripped = text.strip()
    if not (stripped.startswith("<?xml") or stripped.startswith("<")):
        return _reject("Invalid XML format: File does not appear to be valid XML", text)
    if len(text) > MAX_INPUT_CHARS:
        return _oversize(text)

    try:
        value = xmltodict.parse(
            stripped,
            attr_prefix=XML_ATTRIBUTE_PREFIX,
            cdata_key=XML_TEXT_KEY,
            force_list=frozenset(force_list),
            postprocessor=_coerce_values,
            disable_entities=True,
        )
        check_tree(value)
    except (ExpatError, ValueError, RecursionError) as exc:
        return _failure("XML", exc, text)
    return TreeResult(value=value)


def _unwrap(field: str) -> str:
    return _QUOTE_WRAPPED.sub(r"\1", field.strip())


def split_header(line: str) -> List[str]:
    # Header cells are split on every comma; quotes are not honoured here.
    return [_unwrap(header) for header in line.split(",")]


def tokenize_row(line: str) -> List[str]:
    """
    Split one data line into fields.

    A double quote toggles the in-quotes state unless it directly follows a
    backslash, in which case it is kept as a literal character. Commas only
    separate fields outside quotes.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False

    for i, char in enumerate(line):
        if char == '"' and (i == 0 or line[i - 1] != "\\"):
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append(_unwrap("".join(current)))
            current = []
        else:
            current.append(char)

    fields.append(_unwrap("".join(current)))
    return fields


def to_record(headers: Sequence[str], fields: Sequence[str]) -> Dict[str, str]:
    return {header: fields[i] if i < len(fields) else "" for i, header in enumerate(headers)}


@never_raises("CSV")
def normalize_csv(text: str) -> ParseResult:
    if not text.strip():
        return _reject("Empty CSV file", text)
    if len(text) > MAX_INPUT_CHARS:
        return _oversize(text)

    lines = [line for line in _LINE_BREAK.split(text) if line.strip()]
    if not lines:
        return _reject("No data found in CSV file", text)

    headers = split_header(lines[0])
    rows = [to_record(headers, tokenize_row(line.strip())) for line in lines[1:]]
    return TableResult(rows=rows)


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)


def _xlsx_rows(data: bytes) -> List[tuple]:
    workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        if not workbook.worksheets:
            raise WorkbookError("Workbook contains no sheets")
        return list(workbook.worksheets[0].iter_rows(values_only=True))
    finally:
        workbook.close()


def _xls_value(cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return None
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xldate_as_datetime(cell.value, datemode)
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    if cell.ctype == xlrd.XL_CELL_ERROR:
        return xlrd.error_text_from_code.get(cell.value, "")
    return cell.value


def _xls_rows(data: bytes) -> List[tuple]:
    book = xlrd.open_workbook(file_contents=data, on_demand=True)
    try:
        if book.nsheets == 0:
            raise WorkbookError("Workbook contains no sheets")
        sheet = book.sheet_by_index(0)
        return [
            tuple(_xls_value(cell, book.datemode) for cell in sheet.row(r))
            for r in range(sheet.nrows)
        ]
    finally:
        book.release_resources()


def first_sheet_rows(data: bytes) -> List[tuple]:
    """Raw cell values of the first sheet, picking the decoder by file signature."""
    if data.startswith(_ZIP_MAGIC):
        return _xlsx_rows(data)
    if data.startswith(_OLE2_MAGIC):
        return _xls_rows(data)
    raise WorkbookError("File is not an Excel workbook")


def sheet_headers(row: Sequence[Any]) -> List[str]:
    """
    Column keys from the header row.

    Blank cells are named __EMPTY; repeated names get a numeric suffix
    (Name, Name_1, Name_2) so no column is lost.
    """
    headers: List[str] = []
    counts: Dict[str, int] = {}
    for value in row:
        name = cell_text(value) or EMPTY_HEADER
        header = name
        counter = counts.get(name, 0)
        if counter:
            while header in counts:
                header = f"{name}_{counter}"
                counter += 1
            counts[header] = 1
        counts[name] = counter or 1
        headers.append(header)
    return headers


def sheet_records(rows: Sequence[Sequence[Any]]) -> List[Dict[str, str]]:
    filled = [row for row in rows if any(cell_text(value) for value in row)]
    if not filled:
        return []
    headers = sheet_headers(filled[0])
    return [to_record(headers, [cell_text(value) for value in row]) for row in filled[1:]]


@never_raises("Excel file", with_preview=False)
def normalize_spreadsheet(data: bytes) -> ParseResult:
    if len(data) > MAX_UPLOAD_BYTES:
        return _oversize()
    try:
        rows = first_sheet_rows(data)
    except (WorkbookError, zipfile.BadZipFile, InvalidFileException, xlrd.XLRDError, KeyError) as exc:
        return _failure("Excel file", exc)
    return TableResult(rows=sheet_records(rows))


_TEXT_NORMALIZERS: Dict[str, Callable[[str], ParseResult]] = {
    "json": normalize_json,
    "xml": normalize_xml,
    "csv": normalize_csv,
}


def normalize_upload(filename: Optional[str], raw: bytes) -> ParseResult:
    """Pick a normalizer by file extension and run it on the uploaded bytes."""
    ext = file_extension(filename)
    logger.info("normalizing %s upload (%d bytes)", ext, len(raw))

    if ext in ("xlsx", "xls"):
        return normalize_spreadsheet(raw)

    normalizer = _TEXT_NORMALIZERS.get(ext)
    if normalizer is None:
        return _reject(f"Unsupported file type: {ext}")
    return normalizer(decode_text(raw))
