"""
Hit selection policies.

Reduces the hits of one query to those used for annotation. Selection
is deterministic for a fixed input order: after the score tie-breaks,
the first-encountered hit wins.
"""

from __future__ import annotations

from collections.abc import Sequence

from protannot.models.blast import AlignmentHit
from protannot.models.config import SelectionPolicy


def best_evalue_hit(hits: Sequence[AlignmentHit]) -> AlignmentHit | None:
    """Lowest e-value hit; ties go to the higher bitscore, then the earlier hit."""
    if not hits:
        return None
    # min() keeps the first of equal keys
    return min(hits, key=lambda h: (h.evalue, -h.bitscore))


def best_bitscore_hit(hits: Sequence[AlignmentHit]) -> AlignmentHit | None:
    """Highest bitscore hit; ties go to the lower e-value, then the earlier hit."""
    if not hits:
        return None
    return min(hits, key=lambda h: (-h.bitscore, h.evalue))


def select_hits(
    hits: Sequence[AlignmentHit],
    policy: SelectionPolicy,
    evalue_cutoff: float,
) -> list[AlignmentHit]:
    """
    Apply a selection policy to the hits of one query.

    Only hits with evalue <= evalue_cutoff are considered. BLAST already
    applies the cutoff; it is re-checked here so that parsed files from
    other runs are treated consistently.

    Args:
        hits: Hits of a single query, in encounter order.
        policy: ALL keeps every qualifying hit in encounter order;
            BEST_EVALUE and BEST_BITSCORE keep a single hit.
        evalue_cutoff: Maximum accepted e-value.

    Returns:
        Selected hits (empty when no hit qualifies).
    """
    policy = SelectionPolicy(policy)
    qualifying = [hit for hit in hits if hit.evalue <= evalue_cutoff]

    if policy is SelectionPolicy.ALL:
        return qualifying
    if policy is SelectionPolicy.BEST_EVALUE:
        best = best_evalue_hit(qualifying)
    elif policy is SelectionPolicy.BEST_BITSCORE:
        best = best_bitscore_hit(qualifying)
    else:
        msg = f"Unknown selection policy: {policy}"
        raise ValueError(msg)

    return [best] if best is not None else []
