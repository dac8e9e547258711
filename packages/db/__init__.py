"""Database models and utilities."""

from .models import StatusHistoryTable, TicketStatusTable

__all__ = [
    "StatusHistoryTable",
    "TicketStatusTable",
]
