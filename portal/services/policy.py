"""Policy engine and policy version manager"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select, update, func, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.audit import write_audit_event
from portal.core.exceptions import ConflictError, ValidationError
from portal.models.moderation import PolicyVersion
from portal.schemas.moderation import PolicyRuleSet

logger = logging.getLogger(__name__)


@dataclass
class PolicyEvaluation:
    hard_blocks: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"hardBlocks": list(self.hard_blocks), "warnings": list(self.warnings)}


def _rule_list(rules: Mapping[str, Any], key: str) -> list[str]:
    """String entries of one rule key; anything else in a stored rule set is ignored"""
    values = rules.get(key) or []
    if isinstance(values, str):
        values = [values]
    elif not isinstance(values, (list, tuple)):
        logger.warning("Ignoring malformed policy rule %s of type %s", key, type(values).__name__)
        return []
    return [v for v in values if isinstance(v, str) and v != ""]


# ── Rule evaluation ──────────────────────────────────────────────


def evaluate_policy_rules(text: str, rules: Optional[Mapping[str, Any]]) -> PolicyEvaluation:
    """
    Match ``text`` against one rule set.

    blockedPhrases / watchPhrases: case-insensitive substring containment.
    blockedRegex: case-insensitive search; a pattern that fails to compile is
    reported as ``invalid_rule_regex:<expr>`` in warnings instead of raising.
    """
    rules = rules if isinstance(rules, Mapping) else {}
    text = text or ""
    lc_text = text.lower()
    result = PolicyEvaluation()

    for phrase in _rule_list(rules, "blockedPhrases"):
        if phrase.lower() in lc_text:
            result.hard_blocks.append(f"blocked_phrase:{phrase}")

    for phrase in _rule_list(rules, "watchPhrases"):
        if phrase.lower() in lc_text:
            result.warnings.append(f"watch_phrase:{phrase}")

    for expr in _rule_list(rules, "blockedRegex"):
        try:
            pattern = re.compile(expr, re.IGNORECASE)
        except re.error:
            result.warnings.append(f"invalid_rule_regex:{expr}")
            continue
        if pattern.search(text):
            result.hard_blocks.append(f"blocked_regex:{expr}")

    return result


# ── Version lookup ───────────────────────────────────────────────


async def get_active_policy_version(db: AsyncSession, organization_id: int) -> Optional[PolicyVersion]:
    """The organization's active rule set, or None"""
    result = await db.execute(
        select(PolicyVersion)
        .where(PolicyVersion.organization_id == organization_id)
        .where(PolicyVersion.is_active == True)  # noqa: E712
        .order_by(PolicyVersion.version_number.desc())
        .limit(1)
    )
    return result.scalars().first()


async def list_policy_versions(db: AsyncSession, organization_id: int) -> list[PolicyVersion]:
    """All versions for the organization, newest first"""
    result = await db.execute(
        select(PolicyVersion)
        .where(PolicyVersion.organization_id == organization_id)
        .order_by(PolicyVersion.version_number.desc())
    )
    return list(result.scalars().all())


# ── Publishing ───────────────────────────────────────────────────


async def _lock_organization_versions(db: AsyncSession, organization_id: int) -> None:
    """Serialize version numbering per organization (released at commit/rollback)."""
    if db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(
        text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
        {"key": f"policy_versions:{organization_id}"},
    )


async def publish_policy(
    db: AsyncSession,
    *,
    organization_id: int,
    user_id: int,
    title: str,
    rules: Mapping[str, Any],
    correlation_id: Optional[str] = None,
) -> int:
    """
    Publish a new rule set and make it the organization's only active version.

    Runs inside the caller's transaction: lock, next version number,
    deactivate the current version, insert the new one. Returns the new
    version number. Rules are validated against `PolicyRuleSet` and stored
    with camelCase keys.
    """
    try:
        rule_set = PolicyRuleSet.model_validate(rules)
    except SchemaValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "rules"
        raise ValidationError(
            f"Invalid policy rules at {location}: {first.get('msg')}", code="invalid_policy_rules",
        ) from e

    await _lock_organization_versions(db, organization_id)

    current_max = (await db.execute(
        select(func.max(PolicyVersion.version_number))
        .where(PolicyVersion.organization_id == organization_id)
    )).scalar()
    next_version = int(current_max or 0) + 1

    await db.execute(
        update(PolicyVersion)
        .where(PolicyVersion.organization_id == organization_id)
        .where(PolicyVersion.is_active == True)  # noqa: E712
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )

    version = PolicyVersion(
        organization_id=organization_id,
        version_number=next_version,
        title=title,
        rules=rule_set.model_dump(by_alias=True),
        is_active=True,
        published_by_user_id=user_id,
    )
    db.add(version)
    try:
        await db.flush()
    except IntegrityError as e:
        logger.warning(
            "Policy version collision org=%s version=%s: %s", organization_id, next_version, e.orig,
        )
        raise ConflictError(
            f"Policy version {next_version} was published concurrently, retry the request",
            code="policy_version_conflict",
        ) from e

    await write_audit_event(
        db,
        organization_id=organization_id,
        actor_user_id=user_id,
        event_type="policy.published",
        entity_type="policy_version",
        entity_id=str(version.id),
        metadata={"versionNumber": next_version},
        correlation_id=correlation_id,
    )
    logger.info("Published policy version %s for org %s", next_version, organization_id)
    return next_version
