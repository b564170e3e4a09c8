"""
Private Judge core

Job queue, motion negotiation, debate rounds and verdict aggregation for
Private Judge rooms, with PostgreSQL-backed state management.
"""

__version__ = "0.1.0"

# Configuration
from private_judge.config import Settings

# Errors and results
from private_judge.errors import ErrorKind, PrivateJudgeError, Result

# Jobs
from private_judge.job_queue import JobQueue
from private_judge.jobs import JobStatus, JobType

# Room lifecycle
from private_judge.lifecycle import RoomLifecycle, RoomStatus

# Core models
from private_judge.models import (
    Argument,
    Job,
    JudgeDecision,
    JuryVote,
    Motion,
    Room,
    Round,
    Turn,
    Verdict,
)

# Motion negotiation
from private_judge.motion import MotionNegotiation, MotionStatus, ResponseAction

# Debate rounds
from private_judge.rounds import DebateOrchestrator, RoundStatus, RoundType

# Stores
from private_judge.store import MemoryStore, Store

# Verdicts
from private_judge.verdict import VerdictAggregator, VerdictOutcome, aggregate

__all__ = [
    # Version
    "__version__",
    # Models
    "Room",
    "Argument",
    "Motion",
    "Job",
    "Round",
    "Turn",
    "JudgeDecision",
    "JuryVote",
    "Verdict",
    # Config
    "Settings",
    # Errors
    "ErrorKind",
    "PrivateJudgeError",
    "Result",
    # Jobs
    "JobQueue",
    "JobStatus",
    "JobType",
    # Motion
    "MotionNegotiation",
    "MotionStatus",
    "ResponseAction",
    # Rounds
    "DebateOrchestrator",
    "RoundStatus",
    "RoundType",
    # Verdict
    "VerdictAggregator",
    "VerdictOutcome",
    "aggregate",
    # Lifecycle
    "RoomLifecycle",
    "RoomStatus",
    # Stores
    "Store",
    "MemoryStore",
]
