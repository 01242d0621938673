"""
FullRefreshStage - the nightly sweep over every scraped rate source.

Flow
----
1. ``source.fetch_observations()`` (``FixtureRateSource`` by default).
2. For each observation, in order, with ``[refresh].inter_item_delay_seconds``
   between items: ``CatalogService.merge_sourced(obs, reset-trust)``.
3. Per-item failures (bad observation, store error) are logged and counted;
   the sweep carries on with the next item.

Each merge is its own unit of work, so a failure halfway through leaves the
items already merged in place. The order of items does not change the end
state of the catalog.

Returns the number of records created or updated.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Optional

from rate_catalog.catalog.merge import MergeOutcome
from rate_catalog.config import AppConfig
from rate_catalog.errors import CatalogError
from rate_catalog.ingestion.sources import FixtureRateSource, ObservationSource
from rate_catalog.models.meta import RunMetadata
from rate_catalog.pipeline.base import PipelineStage
from rate_catalog.taxonomy.rate_taxonomy import RefreshPolicy

logger = logging.getLogger(__name__)


class FullRefreshStage(PipelineStage):
    """Merge every observation from a source with the reset-trust policy.

    Args:
        config: Application configuration.
        db_path: Override for ``config.database.db_path``.
        source: Observation source; defaults to ``FixtureRateSource``.
        sleep: Delay function between items (``time.sleep``; injectable).
    """

    stage_name = "full_refresh"

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        source: Optional[ObservationSource] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(config, db_path)
        self.source = source or FixtureRateSource()
        self._sleep = sleep

    def _execute(
        self,
        run: RunMetadata,
        refresh_policy: RefreshPolicy = RefreshPolicy.RESET_TRUST,
        **kwargs,
    ) -> int:
        from rate_catalog.catalog.service import CatalogService

        observations = self.source.fetch_observations()
        service = CatalogService(self.config, db_path=self.db_path)
        delay = self.config.refresh.inter_item_delay_seconds

        counts = {outcome: 0 for outcome in MergeOutcome}
        failed = 0

        for idx, obs in enumerate(observations):
            if idx and delay > 0:
                self._sleep(delay)
            try:
                result = service.merge_sourced(obs, refresh_policy)
            except CatalogError as exc:
                failed += 1
                logger.warning(
                    "Full refresh item failed | institution=%s type=%s | %s",
                    obs.institution_name, obs.account_type, exc,
                )
                continue
            counts[result.outcome] += 1

        logger.info(
            "Full refresh [%s] | source=%s created=%d updated=%d no_data=%d failed=%d",
            refresh_policy, self.source.source_name,
            counts[MergeOutcome.CREATED], counts[MergeOutcome.UPDATED],
            counts[MergeOutcome.NO_DATA], failed,
        )
        return counts[MergeOutcome.CREATED] + counts[MergeOutcome.UPDATED]
