"""
Weekday analysis of a tenant's tickets.

Counts on which day of the week each ticket was opened.
"""

from .models import SimplifiedTicket, TicketWeekday, WeekdayReport
from .text import parse_timestamp


WEEKDAY_NAMES = (
    "segunda-feira",
    "terça-feira",
    "quarta-feira",
    "quinta-feira",
    "sexta-feira",
    "sábado",
    "domingo",
)

UNKNOWN_WEEKDAY = "desconhecido"


def weekday_name(created_at: str | None) -> str:
    parsed = parse_timestamp(created_at)
    if parsed is None:
        return UNKNOWN_WEEKDAY
    return WEEKDAY_NAMES[parsed.weekday()]


def analyze_weekdays(tickets: list[SimplifiedTicket], source: str) -> WeekdayReport:
    """
    Build the weekday distribution for a list of tickets.

    Args:
        tickets: Tickets of one tenant.
        source: Name of the analysed tenant, recorded in the report.

    Returns:
        WeekdayReport with per-ticket weekdays and totals per weekday.
    """
    days = [
        TicketWeekday(id=t.id, created_at=t.created_at, weekday=weekday_name(t.created_at))
        for t in tickets
    ]

    totals: dict[str, int] = {}
    for day in days:
        totals[day.weekday] = totals.get(day.weekday, 0) + 1

    return WeekdayReport(
        source=source,
        total_tickets=len(days),
        days=days,
        totals_by_weekday=totals,
    )
