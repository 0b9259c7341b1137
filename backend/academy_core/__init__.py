"""Tennis academy domain: records, billing rules, scheduling and the entity store."""

from .billing import ClientStatement, SessionBillingEffect, compute_client_statement, compute_session_effect
from .models import Client, DayEvent, Payment, Player, SessionLog, Term, TrainingSession
from .recurrence import generate_recurring_series
from .store import AcademyStore

__all__ = [
    "AcademyStore",
    "Client",
    "ClientStatement",
    "DayEvent",
    "Payment",
    "Player",
    "SessionBillingEffect",
    "SessionLog",
    "Term",
    "TrainingSession",
    "compute_client_statement",
    "compute_session_effect",
    "generate_recurring_series",
]
