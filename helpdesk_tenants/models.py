"""
Data models for the helpdesk tenant pipeline.

Uses Pydantic for validation and serialization of every document the
stages exchange on disk.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .text import is_placeholder_name


TicketId = Union[int, str]


class RequesterRecord(BaseModel):
    """Cached identity of a ticket requester."""

    name: Optional[str] = Field(default=None, description="Display name")
    email: Optional[str] = Field(default=None, description="Contact email")

    model_config = {"frozen": True}

    @field_validator("name", "email", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        """Trim values and turn blanks into None."""
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    def is_empty(self) -> bool:
        """Check if neither name nor email is known."""
        return not self.name and not self.email

    def email_key(self) -> Optional[str]:
        """Lower-cased email, used for case-insensitive comparisons."""
        return self.email.lower() if self.email else None


class SimplifiedTicket(BaseModel):
    """
    Canonical ticket shape consumed by the reporting frontend.

    Attributes:
        id: Vendor ticket identifier (unique in a collection)
        link: Portal URL of the ticket
        company_id: Vendor company identifier, if any
        requester_name: Requester name resolved at normalization time
        requester_email: Requester email resolved at normalization time
        created_at: Raw ISO timestamp as received from the vendor
        custom_fields: Subset of vendor custom fields kept for reporting
    """

    id: TicketId
    link: Optional[str] = None

    subject: Optional[str] = None
    description: Optional[str] = None
    status: Optional[Any] = None
    priority: Optional[Any] = None
    type: Optional[str] = None

    company_id: Optional[TicketId] = None

    requester_id: Optional[TicketId] = None
    requester_name: Optional[str] = None
    requester_email: Optional[str] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    due_by: Optional[str] = None
    is_escalated: bool = False

    tags: list[str] = Field(default_factory=list)
    group_id: Optional[TicketId] = None

    module: Optional[Any] = None
    process: Optional[Any] = None
    customization: Optional[Any] = None

    custom_fields: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("type", "created_at", "updated_at", "due_by", mode="before")
    @classmethod
    def coerce_optional_str(cls, v: Any) -> Optional[str]:
        """Stringify non-text values; None stays None."""
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v: Any) -> list[str]:
        """Drop empty tags and stringify the rest."""
        if not isinstance(v, (list, tuple)):
            return []
        return [str(tag) for tag in v if tag is not None and tag != ""]

    def company_key(self) -> Optional[str]:
        """Company ID as a string, or None when the ticket has none."""
        if self.company_id is None or self.company_id == "":
            return None
        return str(self.company_id)


class CompanyRecord(BaseModel):
    """A vendor company with its best known display name."""

    id: str = Field(..., description="Vendor company identifier")
    name: str = Field(..., description="Inferred or placeholder name")
    total_tickets: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @field_validator("id", "name", mode="before")
    @classmethod
    def coerce_str(cls, v: Any) -> str:
        return str(v)

    def is_placeholder(self) -> bool:
        """Check if the name is an auto-generated ``empresa_<id>``."""
        return is_placeholder_name(self.name)


class UnifiedGroup(BaseModel):
    """
    Companies that belong to the same real-world organization.

    Member IDs are kept in traversal order; the first non-placeholder
    member name became the canonical name.
    """

    canonical_name: str
    member_company_ids: list[str] = Field(default_factory=list)
    member_company_names: list[str] = Field(default_factory=list)
    requesters: list[RequesterRecord] = Field(default_factory=list)

    def is_multi_company(self) -> bool:
        """Check if the group merges more than one company ID."""
        return len(self.member_company_ids) > 1


class UpdateHistoryEntry(BaseModel):
    """Bookkeeping for the last incremental update of a tenant."""

    ids: list[str] = Field(default_factory=list)
    last_update: str
    tickets_updated: int = Field(default=0, ge=0)


class TicketWeekday(BaseModel):
    """Weekday a ticket was opened on."""

    id: TicketId
    created_at: Optional[str] = None
    weekday: str


class WeekdayReport(BaseModel):
    """Distribution of a tenant's tickets over the days of the week."""

    source: str
    total_tickets: int = 0
    days: list[TicketWeekday] = Field(default_factory=list)
    totals_by_weekday: dict[str, int] = Field(default_factory=dict)
