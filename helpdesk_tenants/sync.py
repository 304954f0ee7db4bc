"""
Raw snapshot synchronization.

Keeps ``tickets_full.json`` current from the vendor API:
- Month-by-month backfill, newest first, with requester enrichment
- Incremental refresh of one tenant (group or standalone company)
"""

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from .config import FreshdeskConfig
from .data_sources import FreshdeskClient, iter_month_windows
from .models import CompanyRecord, RequesterRecord, UnifiedGroup, UpdateHistoryEntry
from .storage import JsonStore
from .text import timestamp_sort_key


logger = logging.getLogger(__name__)


# Open, pending, resolved, closed
VALID_STATUSES = frozenset({2, 3, 4, 5})


class TargetNotFoundError(Exception):
    """No unified group or company matches the requested name."""
    pass


@dataclass
class UpdateTarget:
    """A tenant selected for incremental update."""

    label: str
    company_ids: list[str]
    is_group: bool


@dataclass
class ExtractionResult:
    fetched: int
    total: int
    duplicates_removed: int


def has_valid_status(ticket: dict) -> bool:
    try:
        return int(ticket.get("status")) in VALID_STATUSES
    except (TypeError, ValueError):
        return False


def _compact(value: str) -> str:
    return "".join(value.lower().split())


def _sort_newest_first(tickets: list[dict]) -> list[dict]:
    return sorted(tickets, key=lambda t: timestamp_sort_key(t.get("created_at")), reverse=True)


def resolve_target(
    name: str,
    groups: dict[str, UnifiedGroup],
    companies: list[CompanyRecord],
) -> UpdateTarget:
    """
    Find the group or company an update request refers to.

    Matching ignores case and whitespace and accepts substrings; unified
    groups are tried before standalone companies.

    Raises:
        TargetNotFoundError: If nothing matches.
    """
    wanted = _compact(name)
    if not wanted:
        raise TargetNotFoundError("Empty tenant name")

    for group_name, group in groups.items():
        if wanted in _compact(group_name):
            return UpdateTarget(
                label=group_name,
                company_ids=[str(i) for i in group.member_company_ids],
                is_group=True,
            )

    for company in companies:
        if wanted in _compact(company.name):
            return UpdateTarget(label=company.name, company_ids=[company.id], is_group=False)

    raise TargetNotFoundError(f"Company or group '{name}' not found")


def merge_new_tickets(existing: list[dict], incoming: list[dict]) -> tuple[list[dict], int]:
    """
    Append unseen tickets to the snapshot; known IDs keep the stored record.

    Returns:
        Tuple of (merged snapshot newest first, duplicates removed).
    """
    seen = set()
    merged = []
    for ticket in existing + incoming:
        ticket_id = ticket.get("id")
        if ticket_id in seen:
            continue
        seen.add(ticket_id)
        merged.append(ticket)
    return _sort_newest_first(merged), len(existing) + len(incoming) - len(merged)


def merge_updates(existing: list[dict], updates: list[dict]) -> tuple[list[dict], int]:
    """
    Shallow-merge updated tickets into the snapshot; new fields win.

    Returns:
        Tuple of (merged snapshot newest first, number of new ticket IDs).
    """
    by_id = {t.get("id"): t for t in existing}
    added = 0
    for ticket in updates:
        ticket_id = ticket.get("id")
        if ticket_id not in by_id:
            added += 1
        by_id[ticket_id] = {**by_id.get(ticket_id, {}), **ticket}
    return _sort_newest_first(list(by_id.values())), added


class RequesterEnricher:
    """Adds requester name/email to raw tickets, fetching unknown contacts."""

    def __init__(
        self,
        client: FreshdeskClient,
        cache: dict[str, RequesterRecord],
        delay: float = 0.0,
    ):
        self._client = client
        self._cache = cache
        self._delay = delay
        self.fetched = 0

    def lookup(self, requester_id) -> Optional[RequesterRecord]:
        if requester_id in (None, ""):
            return None
        key = str(requester_id)
        if key in self._cache:
            return self._cache[key]

        record = self._client.get_contact(requester_id)
        if record is None:
            return None
        self._cache[key] = record
        self.fetched += 1
        if self._delay:
            time.sleep(self._delay)
        return record

    def enrich(self, ticket: dict) -> dict:
        info = self.lookup(ticket.get("requester_id"))
        if info is not None:
            ticket["requester_name"] = info.name
            ticket["requester_email"] = info.email
        return ticket


def fetch_window(
    client: FreshdeskClient,
    upper: date,
    lower: date,
    max_pages: int,
    delay: float = 0.0,
) -> list[dict]:
    """Fetch tickets created inside one window, stopping at the first empty page."""
    query = f"created_at:>'{lower.isoformat()}' AND created_at:<'{upper.isoformat()}'"
    tickets = []
    for page in range(1, max_pages + 1):
        results = client.search_tickets(query, page)
        if not results:
            logger.debug(f"Page {page} empty, window {lower} -> {upper} done")
            break
        tickets.extend(results)
        logger.info(f"Page {page}: {len(results)} tickets")
        if delay:
            time.sleep(delay)
    return tickets


def extract_tickets(
    client: FreshdeskClient,
    store: JsonStore,
    config: FreshdeskConfig,
) -> ExtractionResult:
    """
    Backfill the raw snapshot month by month, newest first.

    Only tickets with a valid status are kept. New tickets are enriched
    with requester identity and the requester cache is persisted.
    """
    start = date.fromisoformat(config.from_date)
    stop = date.fromisoformat(config.to_date_end)
    requesters = store.load_requesters()
    enricher = RequesterEnricher(client, requesters, delay=config.contact_delay)

    snapshot = store.load_raw_tickets_or_empty()
    known = {t.get("id") for t in snapshot}
    fetched = 0
    duplicates = 0

    for upper, lower in iter_month_windows(start, stop, config.max_months):
        logger.info(f"Extracting tickets created between {lower} and {upper}")
        window = fetch_window(client, upper, lower, config.search_max_pages, config.request_delay)
        fetched += len(window)

        incoming = []
        for ticket in window:
            if not has_valid_status(ticket):
                continue
            if ticket.get("id") in known:
                duplicates += 1
                continue
            known.add(ticket.get("id"))
            incoming.append(enricher.enrich(ticket))

        snapshot, removed = merge_new_tickets(snapshot, incoming)
        duplicates += removed
        store.save_raw_tickets(snapshot)
        store.save_requesters(requesters)
        logger.info(f"Window done: +{len(incoming)} new tickets, snapshot has {len(snapshot)}")

    logger.info(f"Extraction finished: {fetched} tickets returned, {enricher.fetched} contacts fetched")
    return ExtractionResult(fetched=fetched, total=len(snapshot), duplicates_removed=duplicates)


def fetch_updated_tickets(
    client: FreshdeskClient,
    since: date,
    company_ids: list[str],
    max_pages: int,
    delay: float = 0.0,
) -> list[dict]:
    """Fetch tickets updated after ``since`` that belong to the given companies."""
    query = f"updated_at:>'{since.isoformat()}'"
    wanted = {str(i) for i in company_ids}
    results = []
    for page in range(1, max_pages + 1):
        tickets = client.search_tickets(query, page)
        if not tickets:
            break
        results.extend(tickets)
        logger.info(f"Page {page}: {len(tickets)} tickets")
        if delay:
            time.sleep(delay)

    filtered = [t for t in results if str(t.get("company_id")) in wanted]
    logger.info(f"{len(filtered)} of {len(results)} updated tickets belong to the target")
    return filtered


def update_tenant_snapshot(
    client: FreshdeskClient,
    store: JsonStore,
    config: FreshdeskConfig,
    target: UpdateTarget,
    now: Optional[datetime] = None,
) -> int:
    """
    Refresh the raw snapshot with recent changes for one tenant.

    Returns:
        Number of updated tickets received (0 leaves the snapshot untouched).
    """
    now = now or datetime.now(timezone.utc)
    since = (now - timedelta(days=config.update_days)).date()
    logger.info(f"Updating '{target.label}' (companies {', '.join(target.company_ids)}) since {since}")

    updates = fetch_updated_tickets(
        client, since, target.company_ids, config.update_max_pages, config.request_delay
    )
    if not updates:
        logger.info(f"No new or changed tickets for '{target.label}'")
        return 0

    merged, added = merge_updates(store.load_raw_tickets_or_empty(), updates)
    store.save_raw_tickets(merged)

    history = store.load_history()
    history[target.label] = UpdateHistoryEntry(
        ids=target.company_ids,
        last_update=now.isoformat(),
        tickets_updated=added,
    )
    store.save_history(history)

    logger.info(f"Merged {len(updates)} tickets ({added} new), snapshot has {len(merged)}")
    return len(updates)
