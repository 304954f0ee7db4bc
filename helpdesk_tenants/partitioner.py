"""
Tenant partitioner for the helpdesk tenant pipeline.

Fans simplified tickets out into one bucket per unified group, or per
standalone company when no group claims it, and picks a filesystem-safe
file key for each bucket. Grouping decisions come from the unifier only.
"""

import logging
from dataclasses import dataclass

from .models import CompanyRecord, SimplifiedTicket, UnifiedGroup
from .text import PLACEHOLDER_PREFIX, placeholder_name, sanitize_filename, to_title_case


logger = logging.getLogger(__name__)


GROUP_PREFIX = "grupo_"
NO_COMPANY = "sem_empresa"


@dataclass
class Bucket:
    """Tickets routed to one tenant before a file key is assigned."""

    label: str
    tickets: list[SimplifiedTicket]
    is_group: bool = False


def group_file_key(group: UnifiedGroup) -> str:
    """File key for a group; several member companies add the ``grupo_`` prefix."""
    key = sanitize_filename(group.canonical_name)
    if group.is_multi_company():
        return GROUP_PREFIX + key
    return key


class TenantPartitioner:
    """Splits tickets into per-tenant partitions."""

    def fallback_file_key(self, label: str, companies: list[CompanyRecord]) -> str:
        """
        File key for a bucket no group claimed.

        Looks the company up in the table by ID or by case-insensitive name;
        otherwise derives the key from the bucket label itself
        (``empresa_123`` -> ``123``, ``empresa_sem_empresa`` -> ``sem_empresa``).
        """
        company_id = label[len(PLACEHOLDER_PREFIX):] if label.startswith(PLACEHOLDER_PREFIX) else label
        lowered = label.lower()
        for company in companies:
            if company.id == company_id or company.id == label or company.name.lower() == lowered:
                return sanitize_filename(company.name)
        return sanitize_filename(to_title_case(company_id))

    def bucket_tickets(
        self,
        tickets: list[SimplifiedTicket],
        groups: dict[str, UnifiedGroup],
    ) -> dict[str, Bucket]:
        """Route every ticket to the bucket of its company's group."""
        company_to_group = {}
        for name, group in groups.items():
            for company_id in group.member_company_ids:
                company_to_group[str(company_id)] = name

        buckets: dict[str, Bucket] = {}
        for ticket in tickets:
            company_id = ticket.company_key() or NO_COMPANY
            group_name = company_to_group.get(company_id)
            label = group_name or placeholder_name(company_id)
            bucket = buckets.get(label)
            if bucket is None:
                bucket = Bucket(label=label, tickets=[], is_group=group_name is not None)
                buckets[label] = bucket
            bucket.tickets.append(ticket)
        return buckets

    def partition(
        self,
        tickets: list[SimplifiedTicket],
        groups: dict[str, UnifiedGroup],
        companies: list[CompanyRecord],
    ) -> dict[str, list[SimplifiedTicket]]:
        """
        Partition tickets by tenant.

        Args:
            tickets: Simplified tickets, newest first.
            groups: Unified groups keyed by canonical name.
            companies: Company table, used only for fallback naming.

        Returns:
            Mapping of file key to the tenant's tickets. Every input ticket
            lands in exactly one partition.
        """
        buckets = self.bucket_tickets(tickets, groups)

        partitions: dict[str, list[SimplifiedTicket]] = {}
        for label, bucket in buckets.items():
            if bucket.is_group:
                file_key = group_file_key(groups[label])
            else:
                file_key = self.fallback_file_key(label, companies)

            if file_key in partitions:
                base, n = file_key, 2
                while f"{base}_{n}" in partitions:
                    n += 1
                file_key = f"{base}_{n}"
                logger.warning(f"File key '{base}' already taken, writing '{label}' as '{file_key}'")

            partitions[file_key] = bucket.tickets
            logger.debug(
                f"Tenant {file_key}: {len(bucket.tickets)} tickets"
                f"{' (unified group)' if file_key.startswith(GROUP_PREFIX) else ''}"
            )

        logger.info(f"Partitioned {len(tickets)} tickets into {len(partitions)} tenants")
        return partitions
