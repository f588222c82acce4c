"""Scoring package: pillar scores, quick wins and key checks."""

from worker.scoring.pillars import AuditScore, compute_scores

__all__ = ["AuditScore", "compute_scores"]
