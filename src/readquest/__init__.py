"""Reading progression engine: EXP, levels, streaks, badges and rankings."""

__version__ = "0.1.0"
