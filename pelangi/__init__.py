"""
Pelangi gamification core.

XP & leveling engine, leaderboard ranking and the persistence-facing
services of the Guru Digital Pelangi school platform.
"""

__version__ = "1.0.0"
