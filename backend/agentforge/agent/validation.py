"""Human-readable formatting of JSON-schema validation failures.

Validators produce structured ValidationIssue records; format_validation_errors
turns them into "Field <path> <issue>. Suggestion: <fix>" sentences that are
fed back to the model so it can correct its tool call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal

from jsonschema import ValidationError

ValidationContext = Literal["arguments", "result", "resultData"]


@dataclass(frozen=True)
class _ContextDetail:
    subject: str
    root_field: str
    prefix: str | None = None


_CONTEXT_DETAILS: dict[str, _ContextDetail] = {
    "arguments": _ContextDetail(subject="tool arguments", root_field="arguments"),
    "result": _ContextDetail(subject="tool result", root_field="result", prefix="result"),
    "resultData": _ContextDetail(
        subject="tool result data", root_field="data", prefix="data"
    ),
}


@dataclass
class ValidationIssue:
    """One schema violation, independent of the validator library."""

    keyword: str
    instance_path: str = ""  # JSON pointer, e.g. "/items/0/name"
    params: dict[str, Any] = field(default_factory=dict)
    message: str | None = None


# ── jsonschema adapter ───────────────────────────────────────────


def _escape_pointer_segment(segment: Any) -> str:
    return str(segment).replace("~", "~0").replace("/", "~1")


def _to_pointer(path: Iterable[Any]) -> str:
    return "".join("/" + _escape_pointer_segment(p) for p in path)


def _missing_property(error: ValidationError) -> str | None:
    instance = error.instance if isinstance(error.instance, dict) else {}
    candidates = [p for p in (error.validator_value or []) if p not in instance]
    for candidate in candidates:
        if error.message == f"{candidate!r} is a required property":
            return candidate
    return candidates[0] if candidates else None


def _additional_properties(error: ValidationError) -> list[str]:
    if not isinstance(error.instance, dict):
        return []
    schema = error.schema if isinstance(error.schema, dict) else {}
    declared = schema.get("properties", {})
    patterns = schema.get("patternProperties", {})
    return [
        key
        for key in error.instance
        if key not in declared
        and not any(re.search(pattern, key) for pattern in patterns)
    ]


def _type_message(expected: Any) -> str:
    if isinstance(expected, list):
        return "must be " + " or ".join(str(t) for t in expected)
    return f"must be {expected}"


def issues_from_errors(errors: Iterable[ValidationError]) -> list[ValidationIssue]:
    """Convert jsonschema errors into ValidationIssue records.

    additionalProperties violations are split so that every unexpected
    property yields its own issue.
    """
    issues: list[ValidationIssue] = []
    for error in errors:
        pointer = _to_pointer(error.absolute_path)
        keyword = str(error.validator)

        if keyword == "required":
            issues.append(
                ValidationIssue(
                    keyword=keyword,
                    instance_path=pointer,
                    params={"missing_property": _missing_property(error)},
                    message=error.message,
                )
            )
        elif keyword == "additionalProperties":
            extras = _additional_properties(error)
            if not extras:
                issues.append(
                    ValidationIssue(keyword=keyword, instance_path=pointer, message=error.message)
                )
            for extra in extras:
                issues.append(
                    ValidationIssue(
                        keyword=keyword,
                        instance_path=pointer,
                        params={"additional_property": extra},
                        message="must NOT have additional properties",
                    )
                )
        elif keyword == "type":
            issues.append(
                ValidationIssue(
                    keyword=keyword,
                    instance_path=pointer,
                    params={"type": error.validator_value},
                    message=_type_message(error.validator_value),
                )
            )
        elif keyword == "enum":
            issues.append(
                ValidationIssue(
                    keyword=keyword,
                    instance_path=pointer,
                    params={"allowed_values": list(error.validator_value or [])},
                    message="must be equal to one of the allowed values",
                )
            )
        else:
            issues.append(
                ValidationIssue(keyword=keyword, instance_path=pointer, message=error.message)
            )
    return issues


# ── Formatting ───────────────────────────────────────────────────


def _decode_pointer_segment(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


def _normalize_path(instance_path: str) -> str | None:
    segments = [
        _decode_pointer_segment(s) for s in instance_path.split("/") if s
    ]
    return ".".join(segments) if segments else None


def _append_path(parent: str | None, segment: str | None) -> str | None:
    if not segment:
        return parent
    if not parent:
        return segment
    return f"{parent}.{segment}"


def _apply_prefix(path: str | None, detail: _ContextDetail) -> str:
    if not path:
        return detail.root_field
    if not detail.prefix:
        return path
    if path == detail.prefix or path.startswith(f"{detail.prefix}."):
        return path
    return f"{detail.prefix}.{path}"


def _describe_location(parent: str | None, detail: _ContextDetail) -> str:
    if not parent:
        return f"the {detail.subject}"
    normalized = _apply_prefix(parent, detail)
    if normalized == detail.root_field:
        return f"the {detail.subject}"
    return f'the {detail.subject} "{normalized}"'


def _article(word: str) -> str:
    return "an" if re.match(r"^[aeiou]", word, re.IGNORECASE) else "a"


def describe_issue(issue: ValidationIssue, context: ValidationContext) -> tuple[str, str, str]:
    """Return (field, issue, suggestion) for one validation issue."""
    detail = _CONTEXT_DETAILS[context]
    parent = _normalize_path(issue.instance_path)

    if issue.keyword == "required":
        missing = issue.params.get("missing_property")
        field_name = _apply_prefix(_append_path(parent, missing), detail)
        location = _describe_location(parent, detail)
        suggestion = (
            f'Add the "{missing}" property to {location}.'
            if missing
            else f"Add the required property to {location}."
        )
        return field_name, "is required but missing", suggestion

    if issue.keyword == "type":
        expected = issue.params.get("type")
        type_name = (
            " or ".join(expected) if isinstance(expected, list) else expected
        )
        field_name = _apply_prefix(parent, detail)
        text = issue.message or (
            f"must be {type_name}" if type_name else "has an invalid type"
        )
        if type_name:
            suggestion = (
                f'Provide {_article(type_name)} {type_name} for "{field_name}" '
                f"in the {detail.subject}."
            )
        else:
            suggestion = (
                f'Provide a value for "{field_name}" that matches the schema '
                f"defined for the {detail.subject}."
            )
        return field_name, text, suggestion

    if issue.keyword == "additionalProperties":
        extra = issue.params.get("additional_property")
        field_name = _apply_prefix(_append_path(parent, extra), detail)
        location = _describe_location(parent, detail)
        if extra:
            return (
                field_name,
                f'includes unsupported property "{extra}"',
                f'Remove the "{extra}" property from {location}.',
            )
        return (
            field_name,
            "includes unsupported properties",
            f"Remove unsupported properties from {location}.",
        )

    if issue.keyword == "enum":
        options = issue.params.get("allowed_values") or []
        field_name = _apply_prefix(parent, detail)
        text = issue.message or "must match one of the allowed values"
        if options:
            allowed = ", ".join(str(o) for o in options)
            suggestion = (
                f'Choose one of the allowed values ({allowed}) for "{field_name}" '
                f"in the {detail.subject}."
            )
        else:
            suggestion = f'Choose an allowed value for "{field_name}" in the {detail.subject}.'
        return field_name, text, suggestion

    field_name = _apply_prefix(parent, detail)
    suggestion = (
        f'Adjust "{field_name}" to satisfy the schema defined for the {detail.subject}.'
    )
    return field_name, issue.message or "is invalid", suggestion


def format_validation_errors(
    issues: Iterable[ValidationIssue], context: ValidationContext
) -> str:
    parts = []
    for issue in issues:
        field_name, text, suggestion = describe_issue(issue, context)
        parts.append(f"Field {field_name} {text}. Suggestion: {suggestion}")
    return "; ".join(parts)
