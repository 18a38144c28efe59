"""Repository scoring: rule-based, model-based and the gated combination."""

from app.services.scoring.rules import score_with_rules
from app.services.scoring.types import ScoreResult, ScoringSignals
from app.services.scoring.unified import UnifiedScorer

__all__ = [
    "ScoreResult",
    "ScoringSignals",
    "UnifiedScorer",
    "score_with_rules",
]
