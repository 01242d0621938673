"""
rate_catalog.reporting - Plain-text rendering for CLI commands.

Modules:
  formatters - ASCII tables for rate listings, recommendations, moderation
               stats, alerts and run history.
"""
