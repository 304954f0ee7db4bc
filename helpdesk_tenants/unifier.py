"""
Company unifier for the helpdesk tenant pipeline.

The vendor often files one customer under several company IDs. When the
same requester (by email or by diacritic-insensitive name) shows up under
more than one company, those companies are merged into a single
``UnifiedGroup``. Merging is transitive: A~B and B~C puts A, B and C
together even if A and C share nobody.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .graph import build_reverse_index, connected_components
from .models import CompanyRecord, RequesterRecord, SimplifiedTicket, UnifiedGroup
from .text import is_generated_placeholder, normalize_name_key, placeholder_name


logger = logging.getLogger(__name__)


RequesterKey = tuple[str, str]


@dataclass
class CompanyRoster:
    """Requesters observed under one company ID."""

    id: str
    name: str
    requesters: list[RequesterRecord] = field(default_factory=list)

    def add(self, requester: RequesterRecord) -> bool:
        """Add a requester unless one with the same email (or name) is present."""
        if any(_same_requester(r, requester) for r in self.requesters):
            return False
        self.requesters.append(requester)
        return True


def _same_requester(a: RequesterRecord, b: RequesterRecord) -> bool:
    if a.email or b.email:
        return a.email_key() == b.email_key()
    return normalize_name_key(a.name) == normalize_name_key(b.name)


def requester_keys(requester: RequesterRecord) -> list[RequesterKey]:
    """Index keys for a requester: lower-cased email and normalized name."""
    keys = []
    if requester.email:
        keys.append(("email", requester.email.lower()))
    name_key = normalize_name_key(requester.name)
    if name_key:
        keys.append(("name", name_key))
    return keys


def _lowest_id(ids: list[str]) -> str:
    return min(ids, key=lambda i: (not i.isdigit(), len(i), i))


class CompanyUnifier:
    """
    Builds unified company groups from requester co-occurrence.

    Steps:
    1. Per-company requester rosters from tickets and the requester cache
    2. Reverse index from requester key to company IDs
    3. Connected components over companies sharing any key
    4. Canonical name and consolidated requester list per component
    """

    def build_rosters(
        self,
        tickets: list[SimplifiedTicket],
        companies: list[CompanyRecord],
        requesters: dict[str, RequesterRecord],
    ) -> dict[str, CompanyRoster]:
        """
        Collect the requesters seen under each company.

        Every company in the table gets a roster, even an empty one. Tickets
        for unknown company IDs add a roster with a placeholder name.
        """
        rosters = {c.id: CompanyRoster(id=c.id, name=c.name) for c in companies}

        for ticket in tickets:
            company_id = ticket.company_key()
            if company_id is None or ticket.requester_id in (None, ""):
                continue

            requester = requesters.get(str(ticket.requester_id))
            if requester is None or requester.is_empty():
                continue

            roster = rosters.get(company_id)
            if roster is None:
                logger.debug(f"Company {company_id} missing from table, using placeholder")
                roster = CompanyRoster(id=company_id, name=placeholder_name(company_id))
                rosters[company_id] = roster

            roster.add(RequesterRecord(name=requester.name, email=requester.email))

        return rosters

    @staticmethod
    def choose_canonical_name(names: list[str], ids: list[str]) -> str:
        """First non-placeholder name, else the first name, else a placeholder."""
        for name in names:
            if name and not is_generated_placeholder(name):
                return name
        if names and names[0]:
            return names[0]
        return placeholder_name(ids[0])

    @staticmethod
    def consolidate_requesters(rosters: list[CompanyRoster]) -> list[RequesterRecord]:
        """Union of rosters, deduplicated by email (or name) and sorted by name."""
        seen: set[str] = set()
        merged = []
        for roster in rosters:
            for requester in roster.requesters:
                key: Optional[str] = requester.email_key() or requester.name
                if key and key not in seen:
                    seen.add(key)
                    merged.append(requester)
        merged.sort(key=lambda r: (r.name or "").casefold())
        return merged

    def unify(
        self,
        tickets: list[SimplifiedTicket],
        companies: list[CompanyRecord],
        requesters: dict[str, RequesterRecord],
    ) -> dict[str, UnifiedGroup]:
        """
        Group company IDs that share requesters.

        Args:
            tickets: Simplified tickets.
            companies: Company table.
            requesters: Requester cache keyed by requester ID.

        Returns:
            Mapping of canonical name to group. Member IDs across groups
            partition the full set of company IDs.
        """
        rosters = self.build_rosters(tickets, companies, requesters)

        company_keys = {
            company_id: [key for r in roster.requesters for key in requester_keys(r)]
            for company_id, roster in rosters.items()
        }
        index = build_reverse_index(company_keys)
        components = connected_components(company_keys, index)

        groups: dict[str, UnifiedGroup] = {}
        for component in components:
            members = [rosters[company_id] for company_id in component]
            names = [m.name for m in members]
            canonical = self.choose_canonical_name(names, component)

            if canonical in groups:
                renamed = f"{canonical}_{_lowest_id(component)}"
                n = 2
                while renamed in groups:
                    renamed = f"{canonical}_{_lowest_id(component)}_{n}"
                    n += 1
                logger.warning(
                    f"Canonical name '{canonical}' already used by another group, "
                    f"storing companies {component} as '{renamed}'"
                )
                canonical = renamed

            groups[canonical] = UnifiedGroup(
                canonical_name=canonical,
                member_company_ids=list(component),
                member_company_names=names,
                requesters=self.consolidate_requesters(members),
            )

        merged = sum(1 for g in groups.values() if g.is_multi_company())
        logger.info(
            f"Unified {len(rosters)} companies into {len(groups)} groups "
            f"({merged} merging several IDs, {len(index)} requester keys)"
        )
        return groups
