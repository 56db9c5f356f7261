"""Payroll name to canonical employee resolution."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_recon.calculators.types import (
    Ambiguous,
    IdentityResolution,
    Resolved,
    Unresolved,
)
from payroll_recon.exceptions import NotFoundError
from payroll_recon.models import IdentityStatus, PayrollIdentityMapping, User
from payroll_recon.normalizers import normalize_payroll_name
from payroll_recon.repositories.period_repository import utcnow

logger = logging.getLogger(__name__)

# Mapping statuses that carry a usable user id.
_MATCHED = {IdentityStatus.AUTO_MATCHED.value, IdentityStatus.MANUAL_MATCHED.value}


@dataclass(frozen=True)
class MappingSyncSummary:
    total: int
    auto_matched: int
    ambiguous: int
    unresolved: int
    preserved: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "autoMatched": self.auto_matched,
            "ambiguous": self.ambiguous,
            "unresolved": self.unresolved,
            "preserved": self.preserved,
        }


def _is_prefix_match(name_tokens: Sequence[str], candidate_tokens: Sequence[str]) -> bool:
    """Every token of the name is a prefix of the candidate's token in the same position."""
    if not name_tokens or len(name_tokens) != len(candidate_tokens):
        return False
    return all(c.startswith(n) for n, c in zip(name_tokens, candidate_tokens))


def match_payroll_name(
    normalized_name: str,
    users_by_normalized: Mapping[str, Sequence[UUID]],
) -> IdentityResolution:
    """Match a normalized payroll name against normalized user names.

    Exact normalized matches are tried first. Failing that, a unique-prefix
    heuristic accepts candidates whose tokens each start with the payroll
    name's tokens ("j doe" matches "john doe"). One candidate resolves,
    several are ambiguous, none is unresolved.
    """
    exact = list(dict.fromkeys(users_by_normalized.get(normalized_name, ())))
    if len(exact) == 1:
        return Resolved(exact[0])
    if len(exact) > 1:
        return Ambiguous(tuple(sorted(exact, key=str)))

    name_tokens = normalized_name.split(" ") if normalized_name else []
    candidates: list[UUID] = []
    for candidate_name in sorted(users_by_normalized):
        if _is_prefix_match(name_tokens, candidate_name.split(" ")):
            candidates.extend(users_by_normalized[candidate_name])
    candidates = list(dict.fromkeys(candidates))

    if len(candidates) == 1:
        return Resolved(candidates[0])
    if len(candidates) > 1:
        return Ambiguous(tuple(sorted(candidates, key=str)))
    return Unresolved()


def resolution_from_mapping(mapping: PayrollIdentityMapping | None) -> IdentityResolution:
    if mapping is None:
        return Unresolved()
    if mapping.status in _MATCHED and mapping.user_id is not None:
        return Resolved(mapping.user_id)
    if mapping.status == IdentityStatus.AMBIGUOUS.value:
        return Ambiguous(tuple(UUID(str(c)) for c in (mapping.candidate_user_ids or [])))
    return Unresolved()


class IdentityResolver:
    """Resolves payroll-sheet names through the identity mapping table.

    Operations:
    - resolve_names: read-only lookup used during recalculation
    - sync_mappings: fuzzy-match names against active users and upsert mappings
    - resolve_manually: confirm a mapping by hand (never overwritten by sync)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _load_mappings(
        self, normalized_names: Iterable[str]
    ) -> dict[str, PayrollIdentityMapping]:
        names = list(set(normalized_names))
        if not names:
            return {}
        result = await self.session.execute(
            select(PayrollIdentityMapping).where(
                PayrollIdentityMapping.normalized_payroll_name.in_(names)
            )
        )
        return {m.normalized_payroll_name: m for m in result.scalars().all()}

    async def resolve_names(self, payroll_names: Iterable[str]) -> dict[str, IdentityResolution]:
        """Resolve raw payroll names; names without a mapping are Unresolved."""
        normalized_by_name = {name: normalize_payroll_name(name) for name in payroll_names}
        mappings = await self._load_mappings(normalized_by_name.values())
        return {
            name: resolution_from_mapping(mappings.get(normalized))
            for name, normalized in normalized_by_name.items()
        }

    async def _users_by_normalized(self) -> dict[str, list[UUID]]:
        result = await self.session.execute(
            select(User.user_id, User.name)
            .where(User.is_active.is_(True))
            .order_by(User.name, User.user_id)
        )
        users: dict[str, list[UUID]] = {}
        for user_id, name in result.all():
            key = normalize_payroll_name(name)
            if key:
                users.setdefault(key, []).append(user_id)
        return users

    async def sync_mappings(self, payroll_names: Iterable[str]) -> MappingSyncSummary:
        """Match each distinct payroll name against active users and upsert its mapping.

        Never deletes mappings, never touches MANUAL_MATCHED rows, and never
        clears a user id that an earlier sync already resolved.
        """
        display_by_normalized: dict[str, str] = {}
        for name in payroll_names:
            if not name or not name.strip():
                continue
            normalized = normalize_payroll_name(name)
            if normalized:
                display_by_normalized.setdefault(normalized, name.strip())

        users = await self._users_by_normalized()
        existing = await self._load_mappings(display_by_normalized)
        now = utcnow()

        auto_matched = ambiguous = unresolved = preserved = 0
        for normalized in sorted(display_by_normalized):
            mapping = existing.get(normalized)
            if mapping is not None and mapping.status == IdentityStatus.MANUAL_MATCHED.value:
                preserved += 1
                continue

            resolution = match_payroll_name(normalized, users)
            if mapping is None:
                mapping = PayrollIdentityMapping(normalized_payroll_name=normalized)
                self.session.add(mapping)
            elif mapping.user_id is not None and not isinstance(resolution, Resolved):
                preserved += 1
                continue

            mapping.display_payroll_name = display_by_normalized[normalized]
            if isinstance(resolution, Resolved):
                mapping.user_id = resolution.user_id
                mapping.status = IdentityStatus.AUTO_MATCHED.value
                mapping.candidate_user_ids = None
                mapping.last_matched_at = now
                auto_matched += 1
            elif isinstance(resolution, Ambiguous):
                mapping.status = IdentityStatus.AMBIGUOUS.value
                mapping.candidate_user_ids = [str(c) for c in resolution.candidate_user_ids]
                ambiguous += 1
            else:
                mapping.status = IdentityStatus.UNRESOLVED.value
                mapping.candidate_user_ids = None
                unresolved += 1

        await self.session.flush()
        summary = MappingSyncSummary(
            total=len(display_by_normalized),
            auto_matched=auto_matched,
            ambiguous=ambiguous,
            unresolved=unresolved,
            preserved=preserved,
        )
        logger.info("Identity mapping sync finished: %s", summary.to_dict())
        return summary

    async def resolve_manually(
        self,
        mapping_id: UUID,
        user_id: UUID,
        notes: str | None = None,
    ) -> PayrollIdentityMapping:
        """Confirm a mapping to a specific user."""
        mapping = await self.session.get(PayrollIdentityMapping, mapping_id)
        if mapping is None:
            raise NotFoundError("Identity mapping", mapping_id)
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        mapping.user_id = user_id
        mapping.status = IdentityStatus.MANUAL_MATCHED.value
        mapping.candidate_user_ids = None
        mapping.notes = notes
        mapping.last_matched_at = utcnow()
        await self.session.flush()
        logger.info(
            "Identity mapping %s manually resolved to user %s", mapping.normalized_payroll_name, user_id
        )
        return mapping
