"""Recommendation ranking for the rate catalog.

Modules
-------
scorer  - rule-based match score (ScoreComponents) and reasoning sentence
ranker  - stable top-N ranking, with optional AI ranker and local fallback
"""
