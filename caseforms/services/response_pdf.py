from __future__ import annotations

import hashlib
import json
import unicodedata
from datetime import datetime
from typing import Any

from caseforms.schemas.forms import FieldType, FormField, FormSchema
from caseforms.schemas.responses import EncryptedEnvelope, FileReference

_LINES_PER_PAGE = 52


def _ascii_text(value: Any) -> str:
    text = str(value or "")
    normalized = unicodedata.normalize("NFKD", text)
    return normalized.encode("ascii", "ignore").decode("ascii")


def _escape_pdf_text(value: str) -> str:
    return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def content_digest(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def format_field_value(field: FormField, value: Any) -> str:
    if value is None or value == "" or value == [] or value == {}:
        return "-"
    if EncryptedEnvelope.looks_like(value):
        return "[encrypted]"
    if field.type == FieldType.SIGNATURE:
        return "[signed]"
    if field.type == FieldType.FILE and FileReference.looks_like(value):
        return f"{value.get('filename')} ({value.get('size')} bytes)"
    if field.type == FieldType.ADDRESS and isinstance(value, dict):
        city_line = " ".join(part for part in (str(value.get("state") or ""), str(value.get("postal_code") or "")) if part)
        parts = [str(value.get("street") or ""), str(value.get("city") or ""), city_line]
        return ", ".join(part for part in parts if part)
    if field.type == FieldType.CHECKBOX:
        return "Yes" if value is True else "No"
    labels = {opt.value: opt.label for opt in field.options}
    if isinstance(value, (list, tuple)):
        return ", ".join(labels.get(str(item), str(item)) for item in value)
    if field.type == FieldType.CURRENCY and isinstance(value, (int, float)):
        return f"{value:.2f}"
    return labels.get(str(value), str(value))


def _content_stream(lines: list[str]) -> bytes:
    parts = ["BT", "/F1 11 Tf", "14 TL", "50 800 Td"]
    for index, line in enumerate(lines):
        if index:
            parts.append("T*")
        parts.append(f"({_escape_pdf_text(_ascii_text(line))}) Tj")
    parts.append("ET")
    return "\n".join(parts).encode("latin-1", errors="ignore")


def _assemble(pages: list[list[str]]) -> bytes:
    page_count = len(pages)
    # 1 catalog, 2 pages, 3 font, then (page, contents) pairs.
    kids = " ".join(f"{4 + 2 * i} 0 R" for i in range(page_count))
    objects = [
        b"1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n",
        f"2 0 obj << /Type /Pages /Kids [{kids}] /Count {page_count} >> endobj\n".encode("latin-1"),
        b"3 0 obj << /Type /Font /Subtype /Type1 /BaseFont /Helvetica >> endobj\n",
    ]
    for i, lines in enumerate(pages):
        page_no = 4 + 2 * i
        stream = _content_stream(lines)
        objects.append(
            f"{page_no} 0 obj << /Type /Page /Parent 2 0 R /MediaBox [0 0 595 842] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_no + 1} 0 R >> endobj\n".encode("latin-1")
        )
        objects.append(f"{page_no + 1} 0 obj << /Length {len(stream)} >> stream\n".encode("latin-1") + stream + b"\nendstream endobj\n")

    body = b"%PDF-1.4\n"
    offsets = [0]
    for obj in objects:
        offsets.append(len(body))
        body += obj
    xref_offset = len(body)
    body += f"xref\n0 {len(objects)+1}\n".encode("latin-1")
    body += b"0000000000 65535 f \n"
    for offset in offsets[1:]:
        body += f"{offset:010d} 00000 n \n".encode("latin-1")
    body += f"trailer << /Size {len(objects)+1} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n".encode("latin-1")
    return body


def build_response_lines(
    schema: FormSchema,
    *,
    response_id: str,
    status: str,
    data: dict[str, Any],
    signatures: list[dict[str, Any]] | None = None,
    created_by: str | None = None,
    created_at: datetime | None = None,
) -> list[str]:
    lines = [
        f"{schema.name} (v{schema.version})",
        f"Response: {response_id}",
        f"Status: {status}",
        f"Submitted by: {created_by or '-'}",
        f"Created at: {created_at.isoformat() if created_at else '-'}",
        "",
    ]
    for fields in schema.steps():
        section = next((s for s in schema.sections if fields and fields[0].id in s.fields), None)
        if section is not None and schema.is_multi_step:
            lines.append(f"== {section.title} ==")
        for field in fields:
            if field.id not in data:
                continue
            lines.append(f"{field.label}: {format_field_value(field, data.get(field.id))}")
    lines.append("")
    for signature in signatures or []:
        lines.append(f"Signed by {signature.get('by')} {signature.get('user_id') or ''} at {signature.get('timestamp')}".replace("  ", " "))
    lines.append(f"Content SHA-256: {content_digest(data)}")
    return lines


def build_response_pdf_bytes(schema: FormSchema, **kwargs: Any) -> bytes:
    lines = build_response_lines(schema, **kwargs)
    pages = [lines[i:i + _LINES_PER_PAGE] for i in range(0, len(lines), _LINES_PER_PAGE)] or [[schema.name]]
    return _assemble(pages)
