from .ranking import LeaderboardEntry, RankingMode, find_rank, rank
from .service import LeaderboardService

__all__ = ["LeaderboardEntry", "RankingMode", "rank", "find_rank", "LeaderboardService"]
