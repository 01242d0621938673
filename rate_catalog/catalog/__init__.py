"""Rate aggregation, trust-scoring and moderation core.

Modules
-------
normalizer  - Observation → CandidateRecord (validation + defaults)
trust       - auto-flagging of implausible community submissions
merge       - MergeStrategy variant and the MergeEngine that writes records
ledger      - verify / report counters, visibility, and moderator actions
service     - CatalogService: one unit of work per exposed operation
"""
