"""Tournament match reconciliation and lifecycle core."""

from .lifecycle import ActionResult, MatchLifecycle, Outcome
from .models import Event, Match, MatchPlayer, Tournament, utc_now_iso
from .notifications import NotificationChannel, Prompt
from .reconciliation import MatchReconciler, ReconciliationError
from .remote import RateLimitError, RemoteAuthError, RemoteSourceError, StartGGClient
from .scheduler import PollScheduler, calculate_poll_interval
from .storage import DuplicateMatchError, TournamentStorage
from .validation import InvalidScoreError, InvalidValueError, parse_score

__all__ = [
    "ActionResult",
    "MatchLifecycle",
    "Outcome",
    "Event",
    "Match",
    "MatchPlayer",
    "Tournament",
    "utc_now_iso",
    "NotificationChannel",
    "Prompt",
    "MatchReconciler",
    "ReconciliationError",
    "RateLimitError",
    "RemoteAuthError",
    "RemoteSourceError",
    "StartGGClient",
    "PollScheduler",
    "calculate_poll_interval",
    "DuplicateMatchError",
    "TournamentStorage",
    "InvalidScoreError",
    "InvalidValueError",
    "parse_score",
]
