"""Tests for payroll name to user resolution."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from payroll_recon.calculators.types import Ambiguous, Resolved, Unresolved
from payroll_recon.exceptions import NotFoundError
from payroll_recon.models import IdentityStatus, PayrollIdentityMapping
from payroll_recon.services.identity_resolver import (
    IdentityResolver,
    match_payroll_name,
    resolution_from_mapping,
)
from tests.conftest import create_user


class TestMatchPayrollName:
    """Three-valued matching against normalized user names."""

    def test_exact_match(self):
        user_id = uuid4()
        assert match_payroll_name("ali raza", {"ali raza": [user_id]}) == Resolved(user_id)

    def test_exact_duplicates_are_ambiguous(self):
        a, b = uuid4(), uuid4()
        result = match_payroll_name("ali raza", {"ali raza": [a, b]})
        assert isinstance(result, Ambiguous)
        assert set(result.candidate_user_ids) == {a, b}

    def test_prefix_match(self):
        user_id = uuid4()
        users = {"john doe": [user_id], "jane smith": [uuid4()]}
        assert match_payroll_name("j doe", users) == Resolved(user_id)

    def test_prefix_ambiguous(self):
        users = {"john doe": [uuid4()], "jane doe": [uuid4()]}
        assert isinstance(match_payroll_name("j doe", users), Ambiguous)

    def test_prefix_requires_same_token_count(self):
        users = {"john michael doe": [uuid4()]}
        assert match_payroll_name("j doe", users) == Unresolved()

    def test_no_match(self):
        assert match_payroll_name("unknown person", {"ali raza": [uuid4()]}) == Unresolved()
        assert match_payroll_name("", {"ali raza": [uuid4()]}) == Unresolved()


class TestResolutionFromMapping:
    def test_missing_mapping(self):
        assert resolution_from_mapping(None) == Unresolved()

    def test_matched_mapping(self):
        user_id = uuid4()
        mapping = PayrollIdentityMapping(status=IdentityStatus.AUTO_MATCHED.value, user_id=user_id)
        assert resolution_from_mapping(mapping) == Resolved(user_id)

    def test_ambiguous_mapping(self):
        a = uuid4()
        mapping = PayrollIdentityMapping(
            status=IdentityStatus.AMBIGUOUS.value, candidate_user_ids=[str(a)]
        )
        assert resolution_from_mapping(mapping) == Ambiguous((a,))


class TestIdentityResolver:
    """Mapping sync and lookups against the database."""

    async def test_sync_creates_mappings(self, session):
        ali = await create_user(session, "Ali Raza")
        await create_user(session, "John Doe")
        await create_user(session, "Jane Doe")

        summary = await IdentityResolver(session).sync_mappings(
            ["ALI-RAZA", "J. Doe", "Unknown Person", "  "]
        )

        assert summary.total == 3
        assert summary.auto_matched == 1
        assert summary.ambiguous == 1
        assert summary.unresolved == 1

        resolved = await IdentityResolver(session).resolve_names(["ALI-RAZA", "Unknown Person"])
        assert resolved["ALI-RAZA"] == Resolved(ali.user_id)
        assert resolved["Unknown Person"] == Unresolved()

    async def test_manual_mapping_is_preserved(self, session):
        ali = await create_user(session, "Ali Raza")
        other = await create_user(session, "Ali Khan")
        resolver = IdentityResolver(session)
        await resolver.sync_mappings(["Ali Raza"])

        mapping = (
            await session.execute(
                select(PayrollIdentityMapping).where(
                    PayrollIdentityMapping.normalized_payroll_name == "ali raza"
                )
            )
        ).scalar_one()
        await resolver.resolve_manually(mapping.mapping_id, other.user_id, notes="confirmed by HR")

        summary = await resolver.sync_mappings(["Ali Raza"])
        assert summary.preserved == 1
        assert mapping.user_id == other.user_id
        assert mapping.status == IdentityStatus.MANUAL_MATCHED.value
        assert ali.user_id != other.user_id

    async def test_sync_never_clears_resolved_user(self, session):
        user = await create_user(session, "Sara Ahmed")
        resolver = IdentityResolver(session)
        await resolver.sync_mappings(["Sara Ahmed"])

        user.is_active = False
        await session.flush()

        summary = await resolver.sync_mappings(["Sara Ahmed"])
        assert summary.preserved == 1
        resolved = await resolver.resolve_names(["Sara Ahmed"])
        assert resolved["Sara Ahmed"] == Resolved(user.user_id)

    async def test_resolve_manually_unknown_mapping(self, session):
        user = await create_user(session, "Sara Ahmed")
        with pytest.raises(NotFoundError):
            await IdentityResolver(session).resolve_manually(uuid4(), user.user_id)
