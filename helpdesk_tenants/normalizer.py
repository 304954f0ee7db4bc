"""
Ticket normalizer for the helpdesk tenant pipeline.

Converts raw Freshdesk ticket payloads into ``SimplifiedTicket`` records:
- Resolves requester identity from the ticket or the requester cache
- Deduplicates by ticket ID and sorts newest first
- Infers company names from corporate email domains
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .models import CompanyRecord, RequesterRecord, SimplifiedTicket
from .text import (
    guess_company_name_from_email,
    is_placeholder_name,
    normalize_text,
    placeholder_name,
    timestamp_sort_key,
)


logger = logging.getLogger(__name__)


# Custom fields copied verbatim into the simplified ticket
CUSTOM_FIELD_KEYS = (
    "cf_mdulo",
    "cf_processo",
    "cf_processo6582",
    "cf_personalizao",
)

# Derived fields, first non-null vendor key wins
DERIVED_CUSTOM_FIELDS = {
    "module": ("cf_mdulo", "cf_modulo"),
    "process": ("cf_processo", "cf_processo6582"),
    "customization": ("cf_personalizao", "cf_personalizacao"),
}


@dataclass
class NormalizationResult:
    """Output of a normalization run."""

    tickets: list[SimplifiedTicket]
    companies: list[CompanyRecord]
    requesters: dict[str, RequesterRecord]
    skipped: int = 0
    duplicates: int = 0
    improved_names: list[str] = field(default_factory=list)


def _first_present(mapping: dict, keys: tuple) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


class TicketNormalizer:
    """
    Normalizes raw vendor tickets and maintains the company table.

    The requester cache passed to ``normalize`` is updated in place and
    also returned, so callers can persist it.
    """

    def __init__(self, portal_url: str = ""):
        """
        Initialize the normalizer.

        Args:
            portal_url: Base URL of the support portal, used for ticket links.
        """
        self._portal_url = portal_url.rstrip("/")

    def build_link(self, ticket_id: Any) -> Optional[str]:
        if ticket_id is None or ticket_id == "" or not self._portal_url:
            return None
        return f"{self._portal_url}/support/tickets/{ticket_id}"

    def resolve_requester(
        self,
        raw: dict,
        requester_cache: dict[str, RequesterRecord],
    ) -> RequesterRecord:
        """
        Resolve requester name and email for a raw ticket.

        Values embedded on the ticket win over the cache. The cache entry is
        refreshed with the merged result, never emptied.
        """
        requester_id = raw.get("requester_id")
        key = str(requester_id) if requester_id not in (None, "") else None
        cached = requester_cache.get(key) if key else None

        embedded = RequesterRecord(
            name=raw.get("requester_name"),
            email=raw.get("requester_email"),
        )
        resolved = RequesterRecord(
            name=embedded.name or (cached.name if cached else None),
            email=embedded.email or (cached.email if cached else None),
        )

        if key and not resolved.is_empty() and resolved != cached:
            requester_cache[key] = resolved
        return resolved

    def simplify(self, raw: dict, requester: RequesterRecord) -> SimplifiedTicket:
        """Map one raw vendor ticket to the canonical shape."""
        custom_fields = raw.get("custom_fields") or {}
        if not isinstance(custom_fields, dict):
            custom_fields = {}
        tags = raw.get("tags")

        return SimplifiedTicket(
            id=raw["id"],
            link=self.build_link(raw.get("id")),
            subject=normalize_text(raw.get("subject")),
            description=normalize_text(raw.get("description_text") or raw.get("description")),
            status=raw.get("status"),
            priority=raw.get("priority"),
            type=raw.get("type"),
            company_id=raw.get("company_id"),
            requester_id=raw.get("requester_id"),
            requester_name=requester.name,
            requester_email=requester.email,
            created_at=raw.get("created_at"),
            updated_at=raw.get("updated_at"),
            due_by=raw.get("due_by"),
            is_escalated=bool(raw.get("fr_escalated") or raw.get("is_escalated")),
            tags=list(tags) if isinstance(tags, list) else [],
            group_id=raw.get("group_id"),
            module=_first_present(custom_fields, DERIVED_CUSTOM_FIELDS["module"]),
            process=_first_present(custom_fields, DERIVED_CUSTOM_FIELDS["process"]),
            customization=_first_present(custom_fields, DERIVED_CUSTOM_FIELDS["customization"]),
            custom_fields={key: custom_fields.get(key) for key in CUSTOM_FIELD_KEYS},
        )

    def build_company_table(
        self,
        tickets: list[SimplifiedTicket],
        previous: list[CompanyRecord],
    ) -> tuple[list[CompanyRecord], list[str]]:
        """
        Build the company table from normalized tickets.

        The first ticket seen for each company supplies the name guess.
        Stored names are only replaced when they are placeholders and the
        new guess is not; companies missing from this snapshot are kept.

        Returns:
            Tuple of (companies sorted by name, IDs whose name improved).
        """
        counts: dict[str, int] = {}
        guesses: dict[str, str] = {}
        for ticket in tickets:
            company_id = ticket.company_key()
            if company_id is None:
                continue
            counts[company_id] = counts.get(company_id, 0) + 1
            if company_id not in guesses:
                guess = guess_company_name_from_email(ticket.requester_email)
                guesses[company_id] = guess or placeholder_name(company_id)

        previous_names = {c.id: c.name for c in previous}
        improved = []
        final_names = {}
        for company_id, guess in guesses.items():
            stored = previous_names.get(company_id)
            if stored is None:
                final_names[company_id] = guess
            elif is_placeholder_name(stored) and not is_placeholder_name(guess):
                logger.info(f"Company {company_id}: '{stored}' -> '{guess}'")
                improved.append(company_id)
                final_names[company_id] = guess
            else:
                final_names[company_id] = stored

        for company_id, stored in previous_names.items():
            if company_id not in final_names:
                final_names[company_id] = stored

        companies = [
            CompanyRecord(id=cid, name=name, total_tickets=counts.get(cid, 0))
            for cid, name in final_names.items()
        ]
        companies.sort(key=lambda c: (c.name.casefold(), c.id))
        return companies, improved

    def normalize(
        self,
        raw_tickets: list[dict],
        requester_cache: dict[str, RequesterRecord],
        previous_companies: Optional[list[CompanyRecord]] = None,
    ) -> NormalizationResult:
        """
        Normalize a raw ticket snapshot.

        Args:
            raw_tickets: Vendor ticket records, in snapshot order.
            requester_cache: Requester ID to identity; updated in place.
            previous_companies: Company table from the previous run.

        Returns:
            NormalizationResult with tickets sorted by ``created_at``
            descending and the merged company table.
        """
        seen: set[str] = set()
        simplified = []
        skipped = 0
        duplicates = 0

        for raw in raw_tickets:
            if not isinstance(raw, dict) or raw.get("id") in (None, ""):
                skipped += 1
                logger.warning("Skipping raw ticket without an id")
                continue

            ticket_key = str(raw["id"])
            if ticket_key in seen:
                duplicates += 1
                logger.debug(f"Dropping duplicate ticket {ticket_key}")
                continue
            seen.add(ticket_key)

            requester = self.resolve_requester(raw, requester_cache)
            simplified.append(self.simplify(raw, requester))

        # Stable sort keeps snapshot order among equal timestamps
        simplified.sort(key=lambda t: timestamp_sort_key(t.created_at), reverse=True)

        companies, improved = self.build_company_table(simplified, previous_companies or [])

        logger.info(
            f"Normalized {len(simplified)} tickets "
            f"({duplicates} duplicates, {skipped} skipped), "
            f"{len(companies)} companies"
        )

        return NormalizationResult(
            tickets=simplified,
            companies=companies,
            requesters=requester_cache,
            skipped=skipped,
            duplicates=duplicates,
            improved_names=improved,
        )
