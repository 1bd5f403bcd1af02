"""Parse provider output into ExtractedMetadata.

Model output is noisy only in formatting (preambles, code fences, trailing
notes), so the JSON object is located with two cheap strategies:
the span from the first `{` to the last `}`, then brace-balanced
candidates from left to right. The first one that decodes to an object wins.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from typing import Any, Iterator

from app.core.llm_providers import ProviderOutput
from app.core.local_extractor import parse_date
from app.providers.content_types import STORABLE_TYPES, ExtractedMetadata

logger = logging.getLogger(__name__)

_PARTIAL_DATE = re.compile(r"^\d{4}(-\d{2}(-\d{2})?)?$")
_YEAR_MONTH_TEXT = re.compile(r"^([A-Za-z]+)\.?\s+(\d{4})$")

_MONTHS = {
    name: index
    for index, names in enumerate(
        [
            ("jan", "january"),
            ("feb", "february"),
            ("mar", "march"),
            ("apr", "april"),
            ("may",),
            ("jun", "june"),
            ("jul", "july"),
            ("aug", "august"),
            ("sep", "sept", "september"),
            ("oct", "october"),
            ("nov", "november"),
            ("dec", "december"),
        ],
        start=1,
    )
    for name in names
}


class MetadataParseError(Exception):
    """No usable JSON object could be located or decoded."""


class MetadataValidationError(Exception):
    """JSON decoded, but a required field is empty."""

    def __init__(self, message: str, metadata: ExtractedMetadata):
        super().__init__(message)
        self.metadata = metadata


def _balanced_objects(text: str) -> Iterator[str]:
    """Yield every brace-balanced `{...}` span, string-literal aware."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break
        start = text.find("{", start + 1)


def _decode_object(candidate: str) -> dict[str, Any] | None:
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def extract_json_object(text: str) -> dict[str, Any]:
    """Locate and decode the JSON object embedded in free text.

    Raises:
        MetadataParseError: If no decodable object exists in the text.
    """
    if not text:
        raise MetadataParseError("could not locate JSON object: empty output")

    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise MetadataParseError("could not locate JSON object in model output")

    obj = _decode_object(text[start : end + 1])
    if obj is not None:
        return obj

    for candidate in _balanced_objects(text):
        obj = _decode_object(candidate)
        if obj is not None and "title" in obj:
            return obj

    raise MetadataParseError("could not locate JSON object in model output")


def _is_real_partial_date(value: str) -> bool:
    parts = value.split("-")
    if len(parts) == 3:
        return parse_date(value) is not None
    if len(parts) == 2:
        return 1 <= int(parts[1]) <= 12
    return True


def normalize_published_date(value: str) -> str:
    """Coerce a model-supplied date to YYYY-MM-DD, YYYY-MM, YYYY or ''."""
    value = (value or "").strip()
    if not value:
        return value
    if _PARTIAL_DATE.match(value):
        if _is_real_partial_date(value):
            return value
        logger.warning(f"Dropping impossible datePublished from provider: {value!r}")
        return ""

    match = _YEAR_MONTH_TEXT.match(value)
    if match and match.group(1).lower() in _MONTHS:
        return f"{match.group(2)}-{_MONTHS[match.group(1).lower()]:02d}"

    parsed = parse_date(value)
    if parsed:
        return parsed

    logger.warning(f"Dropping unparsable datePublished from provider: {value!r}")
    return ""


def validate_metadata(metadata: ExtractedMetadata) -> ExtractedMetadata:
    """Require title and summary for records that would be stored.

    Raises:
        MetadataValidationError: If a required field is empty.
    """
    if metadata.type not in STORABLE_TYPES:
        return metadata
    missing = [name for name in ("title", "summary") if not getattr(metadata, name)]
    if missing:
        raise MetadataValidationError(
            f"extraction incomplete: empty {', '.join(missing)}", metadata=metadata
        )
    return metadata


def parse_metadata(output: ProviderOutput | str) -> ExtractedMetadata:
    """Turn raw provider output into validated ExtractedMetadata.

    Raises:
        MetadataParseError: No JSON object, or it does not fit the schema.
        MetadataValidationError: Required fields are empty.
    """
    if isinstance(output, str):
        data, text = None, output
    else:
        data, text = output.data, output.text

    if data is None:
        data = extract_json_object(text)

    try:
        metadata = ExtractedMetadata.from_dict(data)
    except (TypeError, ValueError) as e:
        raise MetadataParseError(f"JSON object does not match the metadata schema: {e}") from e

    date_published = normalize_published_date(metadata.date_published)
    if date_published != metadata.date_published:
        metadata = replace(metadata, date_published=date_published)

    return validate_metadata(metadata)
