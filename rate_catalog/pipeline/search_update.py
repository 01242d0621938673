"""
SearchUpdateStage - targeted AI-search refresh of known institutions.

For every (institution, account type) pair:
  1. ``AISearchClient.search()`` → ``Observation`` (origin ``api``) or ``None``.
  2. ``None`` (no confident answer) is skipped; nothing is written.
  3. Otherwise ``CatalogService.merge_sourced(obs, preserve-trust)``, so the
     community's verification history survives the update.

Institutions default to every entry in ``config/institutions.toml``;
account types default to ``[refresh].search_account_types``. An unreachable
search API fails only the pair being looked up.

Returns the number of records created or updated.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Optional

from rate_catalog.catalog.merge import MergeOutcome
from rate_catalog.config import AppConfig
from rate_catalog.errors import CatalogError, ValidationError
from rate_catalog.ingestion.ai_search_client import AISearchClient
from rate_catalog.models.meta import RunMetadata
from rate_catalog.pipeline.base import PipelineStage
from rate_catalog.taxonomy.rate_taxonomy import AccountType, RefreshPolicy

logger = logging.getLogger(__name__)


class SearchUpdateStage(PipelineStage):
    """AI-search sweep merged with the preserve-trust policy."""

    stage_name = "search_update"

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        client: Optional[AISearchClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(config, db_path)
        self._client = client
        self._sleep = sleep

    def _execute(
        self,
        run: RunMetadata,
        institution_names: Optional[list[str]] = None,
        account_types: Optional[list[str]] = None,
        **kwargs,
    ) -> int:
        """Search and merge each requested pair.

        Args:
            run:               In-progress RunMetadata (mutable).
            institution_names: Institutions to look up. Defaults to the registry.
            account_types:     Account types to look up. Defaults to config.

        Returns:
            Records created or updated.
        """
        from rate_catalog.catalog.service import CatalogService
        from rate_catalog.ingestion.ai_search_client import build_search_client
        from rate_catalog.ingestion.institutions import load_institutions

        client = self._client
        if client is None:
            client = build_search_client(self.config, institutions=load_institutions())
        if institution_names is None:
            institution_names = [inst.name for inst in load_institutions()]
        types = _parse_account_types(account_types or self.config.refresh.search_account_types)

        logger.info(
            "Search update | institutions=%d types=%s mode=%s",
            len(institution_names), [t.value for t in types],
            "fixture" if client.is_fixture else "live",
        )

        service = CatalogService(self.config, db_path=self.db_path)
        delay = self.config.refresh.inter_item_delay_seconds
        counts = {outcome: 0 for outcome in MergeOutcome}
        skipped = failed = 0
        first = True

        for name in institution_names:
            for account_type in types:
                if not first and delay > 0:
                    self._sleep(delay)
                first = False
                try:
                    obs = client.search(name, account_type)
                    if obs is None:
                        skipped += 1
                        continue
                    result = service.merge_sourced(obs, RefreshPolicy.PRESERVE_TRUST)
                except CatalogError as exc:
                    failed += 1
                    logger.warning(
                        "Search update failed | institution=%s type=%s | %s",
                        name, account_type, exc,
                    )
                    continue
                counts[result.outcome] += 1

        logger.info(
            "Search update done | created=%d updated=%d no_data=%d skipped=%d failed=%d",
            counts[MergeOutcome.CREATED], counts[MergeOutcome.UPDATED],
            counts[MergeOutcome.NO_DATA], skipped, failed,
        )
        return counts[MergeOutcome.CREATED] + counts[MergeOutcome.UPDATED]


def _parse_account_types(values: list[str]) -> list[AccountType]:
    types: list[AccountType] = []
    for value in values:
        try:
            types.append(AccountType(value.strip().lower()))
        except ValueError:
            raise ValidationError(
                f"Unknown account type '{value}' in search_account_types.",
                field="account_types",
            ) from None
    return types
