"""
rate_catalog.ingestion - Observation sources and external AI collaborators.

Nothing in this package writes to the catalog. Sources and clients return
raw ``Observation`` / ``Recommendation`` objects; the merge rules live in
``rate_catalog.catalog``.

Modules:
  sources           - ObservationSource protocol, fixture scraper rate sheet,
                      JSON file source for manual imports.
  institutions      - Registry of swept institutions and their rate pages
                      (config/institutions.toml).
  ai_search_client  - Perplexity-compatible web search for one institution's
                      current rate (origin ``api``).
  ai_ranking_client - OpenAI-compatible ranker used before the rule-based
                      fallback.

Credential placement (.env, gitignored):
  PERPLEXITY_API_KEY=...   → live AI search (fixture answers without it)
  OPENAI_API_KEY=...       → AI ranking (rule-based ranking only without it)
"""
