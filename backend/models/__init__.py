from .fighter import Fighter, StatRange, Trait
from .pagination import Pagination, TournamentPage
from .tournament import (
    TOURNAMENT_MODES,
    Tournament,
    TournamentDetail,
    TournamentMode,
    TournamentShape,
    TournamentStatus,
    decode_tournament,
)

__all__ = [
    "Fighter",
    "StatRange",
    "Trait",
    "Pagination",
    "TournamentPage",
    "TOURNAMENT_MODES",
    "Tournament",
    "TournamentDetail",
    "TournamentMode",
    "TournamentShape",
    "TournamentStatus",
    "decode_tournament",
]
