"""
Structure document validation.

``validate()`` is a pure function over a raw document (parsed JSON, or JSON
text). It collects every violated rule instead of stopping at the first:

1. Structural checks (required fields, types, enum membership) from the
   pydantic models in :mod:`trellis.specs`.
2. Cache-policy refinement rules, applied to every section policy that is
   itself structurally sound, even when other parts of the document are not.
3. Document rules (reference integrity, id uniqueness, action strings,
   sandboxed expressions), applied when the document parsed.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from trellis.core.errors import DocumentValidationError, ValidationIssue
from trellis.core.expression_lang import ExpressionParseError, parse_expr
from trellis.specs.actions import ActionScheme, try_parse_action
from trellis.specs.policy import MIN_POLL_INTERVAL_MS, CachePolicy
from trellis.specs.structure import MenuAction, StructureDocument

# Rule identifiers
RULE_POLL_INTERVAL_REQUIRED = "poll-interval-required"
RULE_POLL_INTERVAL_MINIMUM = "poll-interval-minimum"
RULE_RETENTION_BELOW_STALENESS = "retention-below-staleness"
RULE_ADAPTIVE_RANGE = "adaptive-interval-range"
RULE_DUPLICATE_ID = "duplicate-id"
RULE_UNKNOWN_BLOCK = "unknown-building-block"
RULE_UNKNOWN_PAGE = "unknown-page"
RULE_BADGE_SOURCE_SCHEME = "badge-source-scheme"
RULE_ACTION_MALFORMED = "action-malformed"
RULE_EXPRESSION_INVALID = "expression-invalid"
RULE_OPTIONAL_PARAM_UNKNOWN = "optional-param-unknown"
RULE_JSON_INVALID = "json-invalid"


def validate(raw: Any) -> StructureDocument | list[ValidationIssue]:
    """Validate a raw structure document.

    Args:
        raw: Parsed JSON (a dict), or JSON text/bytes.

    Returns:
        The validated :class:`StructureDocument`, or the complete list of
        :class:`ValidationIssue` when any rule is violated.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            return [ValidationIssue(loc="", rule=RULE_JSON_INVALID, message=str(e))]

    issues: list[ValidationIssue] = []
    document: StructureDocument | None = None

    try:
        document = StructureDocument.model_validate(raw)
    except PydanticValidationError as e:
        issues.extend(_issues_from_pydantic(e))

    issues.extend(_policy_issues(raw))

    if document is not None:
        issues.extend(check_document(document))

    if issues:
        return issues
    assert document is not None
    return document


def load_structure(raw: Any) -> StructureDocument:
    """Validate a raw document, raising on failure.

    Raises:
        DocumentValidationError: Carrying every violated rule.
    """
    result = validate(raw)
    if isinstance(result, StructureDocument):
        return result
    raise DocumentValidationError(result)


# =============================================================================
# Cache policy rules
# =============================================================================


def check_cache_policy(policy: CachePolicy, loc: str = "cachePolicy") -> list[ValidationIssue]:
    """Apply the cross-field cache-policy rules to one policy."""
    issues: list[ValidationIssue] = []

    if policy.is_poll and not policy.poll_interval_ms:
        issues.append(
            ValidationIssue(
                loc=f"{loc}.pollIntervalMs",
                rule=RULE_POLL_INTERVAL_REQUIRED,
                message="poll strategy requires pollIntervalMs to be set",
            )
        )
    elif policy.poll_interval_ms and policy.poll_interval_ms < MIN_POLL_INTERVAL_MS:
        issues.append(
            ValidationIssue(
                loc=f"{loc}.pollIntervalMs",
                rule=RULE_POLL_INTERVAL_MINIMUM,
                message=(
                    f"pollIntervalMs must be >= {MIN_POLL_INTERVAL_MS} "
                    f"(got {policy.poll_interval_ms})"
                ),
            )
        )

    if (
        policy.gc_time_ms is not None
        and policy.stale_time_ms is not None
        and policy.gc_time_ms < policy.stale_time_ms
    ):
        issues.append(
            ValidationIssue(
                loc=f"{loc}.gcTimeMs",
                rule=RULE_RETENTION_BELOW_STALENESS,
                message=(
                    f"gcTimeMs ({policy.gc_time_ms:g}) must be >= "
                    f"staleTimeMs ({policy.stale_time_ms:g})"
                ),
            )
        )

    adaptive = policy.adaptive_polling
    if adaptive is not None and adaptive.min_interval > adaptive.max_interval:
        issues.append(
            ValidationIssue(
                loc=f"{loc}.adaptivePolling",
                rule=RULE_ADAPTIVE_RANGE,
                message=(
                    f"minInterval ({adaptive.min_interval}) must be <= "
                    f"maxInterval ({adaptive.max_interval})"
                ),
            )
        )

    return issues


def _policy_issues(raw: Any) -> list[ValidationIssue]:
    """Run policy rules over every structurally sound section policy in ``raw``."""
    issues: list[ValidationIssue] = []
    for loc, raw_policy in _iter_raw_policies(raw):
        try:
            policy = CachePolicy.model_validate(raw_policy)
        except PydanticValidationError:
            # Already reported by the structural pass
            continue
        issues.extend(check_cache_policy(policy, loc))
    return issues


def _iter_raw_policies(raw: Any) -> Iterable[tuple[str, Any]]:
    pages = _get(raw, "pages")
    if not isinstance(pages, list):
        return
    for p_idx, page in enumerate(pages):
        sections = _get(page, "sections")
        if not isinstance(sections, list):
            continue
        for s_idx, section in enumerate(sections):
            data_source = _get(section, "dataSource", "data_source")
            policy = _get(data_source, "cachePolicy", "cache_policy")
            if isinstance(policy, Mapping):
                yield f"pages[{p_idx}].sections[{s_idx}].dataSource.cachePolicy", policy


def _get(obj: Any, *keys: str) -> Any:
    if not isinstance(obj, Mapping):
        return None
    for key in keys:
        if key in obj:
            return obj[key]
    return None


# =============================================================================
# Document rules
# =============================================================================


def check_document(document: StructureDocument) -> list[ValidationIssue]:
    """Apply reference, uniqueness, action and expression rules."""
    issues: list[ValidationIssue] = []

    issues.extend(_duplicates("buildingBlocks", [b.id for b in document.building_blocks]))
    issues.extend(_duplicates("pages", [p.id for p in document.pages]))
    issues.extend(_duplicates("navigation", [n.id for n in document.navigation]))

    block_ids = {b.id for b in document.building_blocks}
    page_ids = {p.id for p in document.pages}

    if document.meta.default_page not in page_ids:
        issues.append(
            ValidationIssue(
                loc="meta.defaultPage",
                rule=RULE_UNKNOWN_PAGE,
                message=f"Default page '{document.meta.default_page}' does not exist",
            )
        )

    for p_idx, page in enumerate(document.pages):
        page_loc = f"pages[{p_idx}]"
        issues.extend(_duplicates(f"{page_loc}.sections", [s.id for s in page.sections]))

        for s_idx, section in enumerate(page.sections):
            loc = f"{page_loc}.sections[{s_idx}]"
            if section.building_block_id not in block_ids:
                issues.append(
                    ValidationIssue(
                        loc=f"{loc}.buildingBlockId",
                        rule=RULE_UNKNOWN_BLOCK,
                        message=(
                            f"Section '{section.id}' references unknown building block "
                            f"'{section.building_block_id}'"
                        ),
                    )
                )

            for field, source in (
                ("condition", section.condition),
                ("dataTransform", section.data_transform),
            ):
                if source is None:
                    continue
                try:
                    parse_expr(source)
                except ExpressionParseError as e:
                    issues.append(
                        ValidationIssue(
                            loc=f"{loc}.{field}",
                            rule=RULE_EXPRESSION_INVALID,
                            message=f"Invalid expression {source!r}: {e} (at {e.pos})",
                        )
                    )

            unknown_optional = set(section.data_source.optional_params) - set(
                section.data_source.params
            )
            for name in sorted(unknown_optional):
                issues.append(
                    ValidationIssue(
                        loc=f"{loc}.dataSource.optionalParams",
                        rule=RULE_OPTIONAL_PARAM_UNKNOWN,
                        message=f"Optional param '{name}' is not a declared param",
                    )
                )

    for n_idx, item in enumerate(document.navigation):
        loc = f"navigation[{n_idx}]"
        if item.page_id not in page_ids:
            issues.append(
                ValidationIssue(
                    loc=f"{loc}.pageId",
                    rule=RULE_UNKNOWN_PAGE,
                    message=f"Navigation item '{item.id}' references unknown page '{item.page_id}'",
                )
            )
        if item.badge_source is not None:
            issues.extend(_badge_source_issues(item.badge_source, f"{loc}.badgeSource"))

    top_bar = document.meta.top_bar_config
    if top_bar is not None:
        for page_id in top_bar.contextual_actions:
            if page_id not in page_ids:
                issues.append(
                    ValidationIssue(
                        loc=f"meta.topBarConfig.contextualActions.{page_id}",
                        rule=RULE_UNKNOWN_PAGE,
                        message=f"Contextual actions reference unknown page '{page_id}'",
                    )
                )
        for where, action in top_bar.all_actions():
            issues.extend(_menu_action_issues(action, f"meta.topBarConfig.{where}"))

    return issues


def _menu_action_issues(action: MenuAction, loc: str) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if try_parse_action(action.action) is None:
        issues.append(
            ValidationIssue(
                loc=f"{loc}.action",
                rule=RULE_ACTION_MALFORMED,
                message=f"Menu action '{action.id}' has malformed action {action.action!r}",
            )
        )
    if action.badge_source is not None:
        issues.extend(_badge_source_issues(action.badge_source, f"{loc}.badgeSource"))
    return issues


def _badge_source_issues(source: str, loc: str) -> list[ValidationIssue]:
    parsed = try_parse_action(source)
    if parsed is None or parsed.scheme != ActionScheme.API:
        return [
            ValidationIssue(
                loc=loc,
                rule=RULE_BADGE_SOURCE_SCHEME,
                message=f"Badge source {source!r} must use the api:// scheme",
            )
        ]
    return []


def _duplicates(loc: str, ids: list[str]) -> list[ValidationIssue]:
    counts = Counter(ids)
    return [
        ValidationIssue(
            loc=loc,
            rule=RULE_DUPLICATE_ID,
            message=f"Duplicate id '{item_id}' ({count} occurrences)",
        )
        for item_id, count in counts.items()
        if count > 1
    ]


# =============================================================================
# Pydantic error conversion
# =============================================================================


def _issues_from_pydantic(error: PydanticValidationError) -> list[ValidationIssue]:
    issues = []
    for err in error.errors(include_url=False):
        issues.append(
            ValidationIssue(
                loc=_format_loc(err.get("loc", ())),
                rule=f"schema:{err.get('type', 'invalid')}",
                message=err.get("msg", "Invalid value"),
            )
        )
    return issues


def _format_loc(loc: tuple[Any, ...]) -> str:
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out
