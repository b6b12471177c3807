"""FitBoard: leaderboard scoring and achievement-activity reconciliation."""

__version__ = "0.1.0"
