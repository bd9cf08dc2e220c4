"""Normalize raw AI mapping responses into typed mapping entries.

Provider output is untrusted: it may be wrapped in code fences, echo titles
instead of ids, or carry statuses we do not know. Anything that cannot be
parsed as a JSON array of records fails with ``MalformedResponse``; individual
records that cannot be attributed to a feature are dropped and logged.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Optional

from specmap.errors import MalformedResponse, UnresolvedObjectReference
from specmap.models import MAPPING_STATUSES, LineRange, MappingEntry, RelatedFile
from specmap.parsers.file_classifier import split_files
from specmap.services.tree_walker import FeatureTree

logger = logging.getLogger("specmap.normalizer")

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*[ \t]*\n?(.*?)\n?```\s*$", re.DOTALL)
_RAW_PREVIEW_CHARS = 200


def strip_code_fence(raw_text: str) -> str:
    """Remove one enclosing ``` fence (optionally tagged ``json``)."""
    text = (raw_text or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


def parse_mapping_records(raw_text: str) -> list[dict[str, Any]]:
    """Parse provider text into a list of record dicts."""
    body = strip_code_fence(raw_text)
    if not body:
        raise MalformedResponse("AI response is empty", raw_text=raw_text or "")
    try:
        parsed = json.loads(body)
    except (ValueError, RecursionError) as exc:
        # JSONDecodeError is a ValueError; runaway nesting raises RecursionError.
        reason = exc.msg if isinstance(exc, json.JSONDecodeError) else str(exc)
        preview = body[:_RAW_PREVIEW_CHARS]
        raise MalformedResponse(f"AI response is not valid JSON: {reason} ({preview!r})", raw_text=raw_text) from exc

    if not isinstance(parsed, list):
        raise MalformedResponse(
            f"Expected a JSON array of mapping records, got {type(parsed).__name__}",
            raw_text=raw_text,
        )
    for idx, item in enumerate(parsed):
        if not isinstance(item, dict):
            raise MalformedResponse(
                f"Mapping record {idx} is {type(item).__name__}, expected an object",
                raw_text=raw_text,
            )
    return parsed


def normalize_status(value: Any) -> str:
    token = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    return token if token in MAPPING_STATUSES else "unknown"


def _coerce_line_range(raw: Any) -> Optional[LineRange]:
    if not isinstance(raw, dict):
        return None
    try:
        start = int(raw.get("start"))
        end = int(raw.get("end", start))
    except (TypeError, ValueError, OverflowError):
        return None
    if start < 0 or end < start:
        return None
    return LineRange(start=start, end=end)


def _coerce_related_file(raw: Any) -> Optional[RelatedFile]:
    if not isinstance(raw, dict):
        return None
    file_path = str(raw.get("filePath") or "").strip()
    if not file_path:
        return None
    file_type = str(raw.get("type") or "").strip().lower()
    description = raw.get("description")
    return RelatedFile(
        filePath=file_path,
        lineRange=_coerce_line_range(raw.get("lineRange")),
        description=str(description) if description is not None else None,
        type=file_type if file_type in ("impl", "test") else None,
    )


def _title_key(value: Any) -> str:
    return " ".join(str(value or "").split()).lower()


def resolve_object_id(object_id: str, object_title: str, tree: FeatureTree) -> str:
    """Map a record back to a tree id.

    Order: the reported id when it exists, then an exact case-insensitive
    title match, then a substring match in either direction. The substring
    step is a loose heuristic and can pick a similarly named sibling; the
    first node in walk order wins.
    """
    if object_id and object_id in tree:
        return object_id

    wanted = _title_key(object_title)
    if wanted:
        nodes = tree.walk()
        for node in nodes:
            if _title_key(node.title) == wanted:
                return node.id
        for node in nodes:
            candidate = _title_key(node.title)
            if candidate and (candidate in wanted or wanted in candidate):
                return node.id

    raise UnresolvedObjectReference(object_title, object_id)


def normalize_records(
    records: Iterable[dict[str, Any]],
    tree: Optional[FeatureTree] = None,
    raw_text: str = "",
) -> list[MappingEntry]:
    """Turn parsed records into entries, resolving ids against ``tree``."""
    entries: list[MappingEntry] = []
    seen_ids: set[str] = set()

    for idx, record in enumerate(records):
        if not isinstance(record, dict):
            raise MalformedResponse(f"Mapping record {idx} is not an object", raw_text=raw_text)
        title = record.get("objectTitle")
        if not isinstance(title, str) or not title.strip():
            raise MalformedResponse(f"Mapping record {idx} is missing objectTitle", raw_text=raw_text)
        related = record.get("relatedFiles")
        if not isinstance(related, list):
            raise MalformedResponse(f"Mapping record {idx} ('{title}') is missing relatedFiles", raw_text=raw_text)

        reported_id = str(record.get("objectId") or "").strip()
        if tree is not None:
            try:
                object_id = resolve_object_id(reported_id, title, tree)
            except UnresolvedObjectReference as exc:
                logger.warning(f"Dropping mapping record: {exc}")
                continue
        elif reported_id:
            object_id = reported_id
        else:
            logger.warning(f"Dropping mapping record without objectId: {title!r}")
            continue

        if object_id in seen_ids:
            logger.warning(f"Duplicate mapping record for {object_id}; keeping the first")
            continue
        seen_ids.add(object_id)

        files: list[RelatedFile] = []
        for raw_file in related:
            coerced = _coerce_related_file(raw_file)
            if coerced is None:
                logger.warning(f"Skipping malformed related file in record {object_id}: {raw_file!r}")
                continue
            files.append(coerced)
        impl_files, test_files = split_files(files)

        summary = record.get("summary")
        entries.append(
            MappingEntry(
                objectId=object_id,
                objectTitle=title,
                status=normalize_status(record.get("status")),
                summary=str(summary) if summary is not None else "",
                implFiles=impl_files,
                testFiles=test_files,
            )
        )

    return entries


def normalize(raw_text: str, tree: Optional[FeatureTree] = None) -> list[MappingEntry]:
    """Parse and normalize a raw provider response."""
    records = parse_mapping_records(raw_text)
    return normalize_records(records, tree=tree, raw_text=raw_text)


def serialize_entries(entries: Iterable[MappingEntry]) -> str:
    """Render entries in the provider response format."""
    payload = []
    for entry in entries:
        related = [
            file.model_dump(exclude_none=True) | {"type": file.type or "impl"}
            for file in entry.implFiles
        ] + [
            file.model_dump(exclude_none=True) | {"type": file.type or "test"}
            for file in entry.testFiles
        ]
        payload.append(
            {
                "objectId": entry.objectId,
                "objectTitle": entry.objectTitle,
                "status": entry.status,
                "summary": entry.summary,
                "relatedFiles": related,
            }
        )
    return json.dumps(payload, indent=2, ensure_ascii=False)
