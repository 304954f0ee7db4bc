"""
Unit tests for the ticket normalizer.

Tests cover:
- Field mapping and text cleanup
- Requester resolution and cache updates
- Deduplication and ordering
- Company table inference and name monotonicity
"""

import pytest

from helpdesk_tenants.models import CompanyRecord, RequesterRecord
from helpdesk_tenants.normalizer import TicketNormalizer


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def normalizer() -> TicketNormalizer:
    return TicketNormalizer(portal_url="https://acme.freshdesk.com/")


def raw_ticket(ticket_id, created_at="2025-01-10T10:00:00Z", **extra) -> dict:
    ticket = {
        "id": ticket_id,
        "status": 2,
        "priority": 1,
        "type": "Incident",
        "company_id": 10,
        "requester_id": 100,
        "created_at": created_at,
        "updated_at": created_at,
        "subject": "Erro ao faturar",
        "tags": ["faturamento"],
        "custom_fields": {},
    }
    ticket.update(extra)
    return ticket


# =============================================================================
# Field mapping
# =============================================================================

class TestSimplify:
    """Tests for mapping one raw ticket."""

    def test_basic_mapping(self, normalizer):
        """Test vendor fields land on the canonical shape."""
        raw = raw_ticket(
            7,
            subject="  Erro\n ao   faturar ",
            description_text="Linha 1\r\nLinha 2",
            description="<p>html</p>",
            due_by="2025-01-12T10:00:00Z",
            group_id=5,
        )
        ticket = normalizer.simplify(raw, RequesterRecord(name="Ana", email="ana@acme.com"))

        assert ticket.id == 7
        assert ticket.link == "https://acme.freshdesk.com/support/tickets/7"
        assert ticket.subject == "Erro ao faturar"
        assert ticket.description == "Linha 1 Linha 2"
        assert ticket.company_id == 10
        assert ticket.requester_name == "Ana"
        assert ticket.requester_email == "ana@acme.com"
        assert ticket.due_by == "2025-01-12T10:00:00Z"
        assert ticket.group_id == 5
        assert ticket.tags == ["faturamento"]

    def test_missing_optional_fields(self, normalizer):
        """Test missing fields become None and tags an empty list."""
        ticket = normalizer.simplify({"id": 1, "tags": "not-a-list"}, RequesterRecord())
        assert ticket.subject is None
        assert ticket.description is None
        assert ticket.company_id is None
        assert ticket.created_at is None
        assert ticket.tags == []
        assert ticket.is_escalated is False

    @pytest.mark.parametrize(
        "fields,expected",
        [
            ({"fr_escalated": True}, True),
            ({"is_escalated": True}, True),
            ({"fr_escalated": False, "is_escalated": True}, True),
            ({"fr_escalated": False, "is_escalated": False}, False),
        ],
    )
    def test_escalation_flag(self, normalizer, fields, expected):
        """Test escalation is the OR of both vendor flags."""
        ticket = normalizer.simplify(raw_ticket(1, **fields), RequesterRecord())
        assert ticket.is_escalated is expected

    def test_custom_fields(self, normalizer):
        """Test derived custom fields use fallback keys and the subset is kept."""
        raw = raw_ticket(
            1,
            custom_fields={
                "cf_modulo": "Financeiro",
                "cf_processo6582": "Faturamento",
                "cf_personalizao": "Sim",
                "cf_other": "dropped",
            },
        )
        ticket = normalizer.simplify(raw, RequesterRecord())

        assert ticket.module == "Financeiro"
        assert ticket.process == "Faturamento"
        assert ticket.customization == "Sim"
        assert ticket.custom_fields == {
            "cf_mdulo": None,
            "cf_processo": None,
            "cf_processo6582": "Faturamento",
            "cf_personalizao": "Sim",
        }

    def test_no_portal_no_link(self):
        """Test links are omitted without a portal URL."""
        ticket = TicketNormalizer().simplify(raw_ticket(1), RequesterRecord())
        assert ticket.link is None


# =============================================================================
# Requester resolution
# =============================================================================

class TestResolveRequester:
    """Tests for requester identity resolution."""

    def test_embedded_fields_win(self, normalizer):
        """Test identity on the ticket beats the cache."""
        cache = {"100": RequesterRecord(name="Old", email="old@acme.com")}
        raw = raw_ticket(1, requester_name="New", requester_email="new@acme.com")

        resolved = normalizer.resolve_requester(raw, cache)

        assert resolved == RequesterRecord(name="New", email="new@acme.com")
        assert cache["100"] == resolved

    def test_cache_fallback(self, normalizer):
        """Test the cache fills in when the ticket carries nothing."""
        cache = {"100": RequesterRecord(name="Ana", email="ana@acme.com")}
        resolved = normalizer.resolve_requester(raw_ticket(1), cache)
        assert resolved.name == "Ana"
        assert resolved.email == "ana@acme.com"

    def test_partial_embedded_keeps_cached_values(self, normalizer):
        """Test a ticket with only a name does not erase the cached email."""
        cache = {"100": RequesterRecord(name="Ana", email="ana@acme.com")}
        resolved = normalizer.resolve_requester(raw_ticket(1, requester_name="Ana S."), cache)
        assert resolved == RequesterRecord(name="Ana S.", email="ana@acme.com")
        assert cache["100"].email == "ana@acme.com"

    def test_unknown_requester(self, normalizer):
        """Test unknown requesters resolve to nothing and stay out of the cache."""
        cache = {}
        resolved = normalizer.resolve_requester(raw_ticket(1), cache)
        assert resolved.is_empty()
        assert cache == {}

    def test_new_requester_added_to_cache(self, normalizer):
        """Test embedded identity for an unseen ID populates the cache."""
        cache = {}
        normalizer.resolve_requester(raw_ticket(1, requester_email="bia@acme.com"), cache)
        assert cache["100"].email == "bia@acme.com"


# =============================================================================
# Dedup and ordering
# =============================================================================

class TestNormalize:
    """Tests for full snapshot normalization."""

    def test_dedup_keeps_first(self, normalizer):
        """Test duplicate IDs keep the first occurrence."""
        raws = [
            raw_ticket(42, subject="first"),
            raw_ticket(43),
            raw_ticket(42, subject="second"),
        ]
        result = normalizer.normalize(raws, {})

        matching = [t for t in result.tickets if t.id == 42]
        assert len(matching) == 1
        assert matching[0].subject == "first"
        assert result.duplicates == 1

    def test_sorted_newest_first(self, normalizer):
        """Test output is sorted by created_at descending."""
        raws = [
            raw_ticket(1, created_at="2025-01-01T00:00:00Z"),
            raw_ticket(2, created_at="2025-03-01T00:00:00Z"),
            raw_ticket(3, created_at="2025-02-01T00:00:00-03:00"),
        ]
        result = normalizer.normalize(raws, {})
        assert [t.id for t in result.tickets] == [2, 3, 1]

    def test_unparsable_timestamps_last(self, normalizer):
        """Test unparsable or missing timestamps sort as oldest."""
        raws = [
            raw_ticket(1, created_at="garbage"),
            raw_ticket(2, created_at="2025-01-01T00:00:00Z"),
            raw_ticket(3, created_at=None),
            raw_ticket(4, created_at="2024-01-01T00:00:00Z"),
        ]
        result = normalizer.normalize(raws, {})
        assert [t.id for t in result.tickets] == [2, 4, 1, 3]

    def test_tickets_without_id_skipped(self, normalizer):
        """Test raw records without an id are skipped."""
        raws = [raw_ticket(None), {"subject": "no id"}, raw_ticket(1)]
        result = normalizer.normalize(raws, {})
        assert [t.id for t in result.tickets] == [1]
        assert result.skipped == 2

    def test_idempotent(self, normalizer):
        """Test a second run over the same snapshot gives the same tickets."""
        cache = {"100": RequesterRecord(name="Ana", email="ana@acme.com")}
        raws = [raw_ticket(i, created_at=f"2025-01-{i:02d}T00:00:00Z") for i in range(1, 6)]
        raws.append(raw_ticket(3))

        first = normalizer.normalize(raws, cache)
        second = normalizer.normalize(raws, cache, first.companies)

        assert second.tickets == first.tickets
        assert second.companies == first.companies


# =============================================================================
# Company table
# =============================================================================

class TestCompanyTable:
    """Tests for company name inference."""

    def test_name_from_corporate_email(self, normalizer):
        """Test names come from the requester email domain."""
        cache = {"100": RequesterRecord(name="Ana", email="ana@audacci.com.br")}
        result = normalizer.normalize([raw_ticket(1), raw_ticket(2)], cache)

        assert result.companies == [CompanyRecord(id="10", name="Audacci", total_tickets=2)]

    def test_placeholder_for_generic_email(self, normalizer):
        """Test consumer mail gives a placeholder name."""
        cache = {"100": RequesterRecord(name="Ana", email="ana@gmail.com")}
        result = normalizer.normalize([raw_ticket(1)], cache)
        assert result.companies[0].name == "empresa_10"

    def test_first_ticket_decides_guess(self, normalizer):
        """Test the newest ticket of a company supplies the guess."""
        raws = [
            raw_ticket(1, created_at="2025-01-02T00:00:00Z", requester_email="a@gmail.com", requester_id=1),
            raw_ticket(2, created_at="2025-01-01T00:00:00Z", requester_email="b@acme.com", requester_id=2),
        ]
        result = normalizer.normalize(raws, {})
        assert result.companies[0].name == "empresa_10"

    def test_tickets_without_company_ignored(self, normalizer):
        """Test tickets without company do not create records."""
        result = normalizer.normalize([raw_ticket(1, company_id=None)], {})
        assert result.companies == []

    def test_placeholder_upgraded(self, normalizer):
        """Test a stored placeholder is replaced by a real guess."""
        previous = [CompanyRecord(id="10", name="empresa_10", total_tickets=1)]
        cache = {"100": RequesterRecord(email="ana@polivisor.com")}

        result = normalizer.normalize([raw_ticket(1)], cache, previous)

        assert result.companies[0].name == "Polivisor"
        assert result.improved_names == ["10"]

    def test_name_never_downgraded(self, normalizer):
        """Test a real stored name survives a placeholder guess."""
        previous = [CompanyRecord(id="10", name="Polivisor", total_tickets=5)]
        cache = {"100": RequesterRecord(email="ana@gmail.com")}

        result = normalizer.normalize([raw_ticket(1)], cache, previous)

        assert result.companies[0].name == "Polivisor"
        assert result.companies[0].total_tickets == 1

    def test_real_name_not_replaced_by_other_real_name(self, normalizer):
        """Test a stored real name wins over a different real guess."""
        previous = [CompanyRecord(id="10", name="Polivisor")]
        cache = {"100": RequesterRecord(email="ana@otherco.com")}
        result = normalizer.normalize([raw_ticket(1)], cache, previous)
        assert result.companies[0].name == "Polivisor"

    def test_absent_companies_retained(self, normalizer):
        """Test companies missing from the snapshot keep their stored name."""
        previous = [CompanyRecord(id="99", name="Legacy", total_tickets=3)]
        result = normalizer.normalize([raw_ticket(1)], {}, previous)

        legacy = next(c for c in result.companies if c.id == "99")
        assert legacy.name == "Legacy"
        assert legacy.total_tickets == 0

    def test_sorted_by_name(self, normalizer):
        """Test the table is sorted by case-insensitive name."""
        raws = [
            raw_ticket(1, company_id=1, requester_id=1, requester_email="a@zeta.com"),
            raw_ticket(2, company_id=2, requester_id=2, requester_email="b@alpha.com"),
        ]
        result = normalizer.normalize(raws, {})
        assert [c.name for c in result.companies] == ["Alpha", "Zeta"]


# =============================================================================
# Loose vendor payloads
# =============================================================================

class TestLoosePayloads:
    """Tests for vendor fields with unexpected types."""

    def test_numeric_timestamp_sorts_as_oldest(self, normalizer):
        """Test a numeric timestamp is kept as text and sorts last."""
        raws = [
            {"id": 1, "created_at": 1700000000},
            {"id": 2, "created_at": "2024-01-01T00:00:00Z"},
        ]
        result = normalizer.normalize(raws, {})

        assert [t.id for t in result.tickets] == [2, 1]
        assert result.tickets[1].created_at == "1700000000"

    def test_non_string_dates_and_type(self, normalizer):
        """Test other date fields and type accept non-string values."""
        ticket = normalizer.simplify(
            raw_ticket(1, updated_at=1700000000, due_by=1.5, type=3),
            RequesterRecord(),
        )
        assert ticket.updated_at == "1700000000"
        assert ticket.due_by == "1.5"
        assert ticket.type == "3"

    def test_mixed_tags(self, normalizer):
        """Test non-string tags are stringified and empty ones dropped."""
        ticket = normalizer.simplify(raw_ticket(1, tags=["a", 7, None, ""]), RequesterRecord())
        assert ticket.tags == ["a", "7"]
