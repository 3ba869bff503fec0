"""
Deterministic parsing rules.

This file exists to make limits and format quirks explicit and enforceable.
"""

TEXT_ENCODING = "utf-8"

PREVIEW_CHARS = 200
PREVIEW_ELLIPSIS = "..."

MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MB, matches the upload form
MAX_INPUT_CHARS = MAX_UPLOAD_BYTES

# Deeper trees cannot be serialized back out by the HTTP layer.
MAX_NESTING_DEPTH = 200
# int() refuses longer decimal strings; such XML values stay text.
MAX_INTEGER_DIGITS = 4300

SUPPORTED_EXTENSIONS = ("json", "xml", "xlsx", "xls", "csv")

# Record-bearing tags that are always lists, even with a single occurrence.
FORCED_ARRAY_TAGS = frozenset({"facility", "establishment"})
XML_ATTRIBUTE_PREFIX = "@_"
XML_TEXT_KEY = "#text"

EMPTY_HEADER = "__EMPTY"
