"""
Domain gate: refuse before paying for a model call when retrieval found
nothing close enough to ground an answer.
"""

from enum import Enum
from typing import Iterable

import structlog

logger = structlog.get_logger()


class GateDecision(str, Enum):
    PROCEED = "proceed"
    REFUSE = "refuse"


def decide(similarities: Iterable[float], strict_mode: bool, min_similarity: float) -> GateDecision:
    """
    Decide whether retrieved records are enough to answer in-domain.

    best = max(similarities) or 0, match_count = number of scores > 0.
    Refuses only in strict mode, when best < min_similarity or there are
    no positive matches.
    """
    scores = [float(s) for s in similarities]
    best = max(scores) if scores else 0.0
    match_count = sum(1 for s in scores if s > 0)

    if strict_mode and (best < min_similarity or match_count == 0):
        logger.info("domain_gate_refused", best_similarity=round(best, 4),
                    match_count=match_count, min_similarity=min_similarity)
        return GateDecision.REFUSE

    return GateDecision.PROCEED
