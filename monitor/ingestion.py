"""Metric ingestion runner: pull due assets from their sources and store data points."""
import logging
import time
from dataclasses import dataclass
from datetime import timedelta

from models.entities import MetricDataPoint, utcnow
from utils.cancellation import CycleCancelled, check

logger = logging.getLogger("signalengine.monitor.ingestion")


@dataclass
class IngestionResult:
    assets_processed: int = 0
    data_points_created: int = 0
    errors: int = 0
    duration: float = 0.0


class MetricIngestionRunner:
    """One ingestion cycle.

    1. Select up to `max_assets` due assets, oldest-due first.
    2. Group them by data source so each source is called once per group.
    3. Fan each asset's fetched values out into MetricDataPoints by metric name.
    4. Advance the asset's cursor to now + its ingestion interval.
    5. Commit once.
    """

    def __init__(self, db, sources, clock=utcnow):
        self.db = db
        self.sources = sources
        self.clock = clock

    def run(self, max_assets=1000, cancel=None) -> IngestionResult:
        started = time.monotonic()
        result = IngestionResult()
        now = self.clock()

        due = self.db.get_assets_due(now, limit=max_assets)
        if not due:
            logger.debug("No assets due for ingestion")
            result.duration = time.monotonic() - started
            return result

        logger.debug(f"Found {len(due)} assets due for ingestion")

        groups = {}
        for asset in due:
            groups.setdefault(asset.data_source, []).append(asset)

        try:
            for data_source, assets in groups.items():
                check(cancel)
                self._ingest_group(data_source, assets, now, result, cancel)
        except CycleCancelled:
            self.db.commit()
            raise

        self.db.commit()
        result.duration = time.monotonic() - started

        if result.assets_processed or result.errors:
            logger.info(
                f"Ingestion completed. Assets: {result.assets_processed}, "
                f"DataPoints: {result.data_points_created}, Errors: {result.errors}, "
                f"Duration: {result.duration * 1000:.0f}ms"
            )
        return result

    def _ingest_group(self, data_source, assets, now, result, cancel):
        source = self.sources.get(data_source)
        if source is None:
            logger.warning(f"No source registered for {data_source}, skipping {len(assets)} assets")
            result.errors += len(assets)
            return

        identifiers = list(dict.fromkeys(a.identifier for a in assets))
        logger.debug(f"Fetching {len(identifiers)} identifiers from {data_source}")
        try:
            fetched = source.fetch_batch(identifiers)
        except CycleCancelled:
            raise
        except Exception as e:
            logger.error(f"Fetch from {data_source} failed for {len(assets)} assets: {e}")
            result.errors += len(assets)
            return

        for asset in assets:
            check(cancel)
            try:
                fetch_result = fetched.get(asset.identifier)
                if fetch_result is None or not fetch_result.success:
                    reason = fetch_result.error if fetch_result else "No result"
                    logger.warning(f"Failed to fetch data for asset {asset.id} ({asset.identifier}): {reason}")
                    result.errors += 1
                    continue

                result.data_points_created += self._store_values(asset, fetch_result.values, now)
                self.db.update_ingestion_cursor(
                    asset.id, now, now + timedelta(seconds=asset.ingestion_interval_seconds)
                )
                result.assets_processed += 1
            except CycleCancelled:
                raise
            except Exception as e:
                logger.error(f"Error processing asset {asset.id} ({asset.identifier}): {e}", exc_info=True)
                result.errors += 1

    def _store_values(self, asset, values, now):
        if not asset.metrics:
            logger.debug(f"Asset {asset.id} has no active metrics, nothing to store")
            return 0

        points = []
        for fetched in values:
            metric = asset.find_metric(fetched.metric_name)
            if metric is None:
                continue
            points.append(MetricDataPoint(
                tenant_id=asset.tenant_id,
                metric_id=metric.id,
                value=fetched.value,
                timestamp=fetched.timestamp or now,
            ))
        if points:
            self.db.add_metric_data(points)
        return len(points)
