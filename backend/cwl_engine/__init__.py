"""
Roster engine for CWL list management.

Pure logic with no database dependency: round-robin distribution, message
rendering and registration stats. The API layer feeds it stored rows.
"""

from .distribution import RosterPlayer, RosterWithPlayers, auto_distribute  # noqa: F401
from .errors import ConflictError, CwlError, NotFoundError, StoreError, ValidationError  # noqa: F401
from .message import render_message  # noqa: F401
from .stats import PlayerStats, compute_stats  # noqa: F401
