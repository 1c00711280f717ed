"""YAML catalog import: tenants, assets with their metrics, and rules."""
import logging
import sqlite3
from pathlib import Path

import yaml

from models.entities import Asset, Metric, Rule, Tenant
from models.errors import SignalEngineError

logger = logging.getLogger("signalengine.catalog")


class CatalogLoader:
    def __init__(self, path):
        self.path = Path(path)
        self.data = {}
        self.load()

    def load(self):
        if not self.path.exists():
            raise FileNotFoundError(f"Catalog file not found: {self.path}")
        with open(self.path) as f:
            self.data = yaml.safe_load(f) or {}
        return self.data

    def import_into(self, db):
        """Create everything in the catalog that does not exist yet, then commit.

        Entries that fail validation are logged and skipped. Returns counts of
        created tenants, assets, metrics and rules.
        """
        counts = {"tenants": 0, "assets": 0, "metrics": 0, "rules": 0, "skipped": 0}

        for raw in self.data.get("tenants", []):
            try:
                if db.get_tenant_by_name(raw["name"]) is None:
                    db.create_tenant(Tenant(
                        name=raw["name"],
                        notification_channel=raw.get("notification_channel"),
                        notification_recipient=raw.get("notification_recipient"),
                    ))
                    counts["tenants"] += 1
            except (KeyError, ValueError, SignalEngineError, sqlite3.IntegrityError) as e:
                logger.warning(f"Invalid tenant {raw.get('name')!r}: {e}")
                counts["skipped"] += 1

        for raw in self.data.get("assets", []):
            try:
                tenant = self._tenant(db, raw)
                if db.get_asset_by_name(tenant.id, raw["name"]) is not None:
                    continue
                asset = Asset(
                    tenant_id=tenant.id,
                    name=raw["name"],
                    identifier=raw["identifier"],
                    data_source=raw.get("data_source", "BINANCE"),
                    ingestion_interval_seconds=int(raw.get("ingestion_interval_seconds", 60)),
                    description=raw.get("description"),
                )
                db.create_asset(asset)
                counts["assets"] += 1
                for m in raw.get("metrics", []):
                    db.create_metric(Metric(
                        tenant_id=tenant.id, asset_id=asset.id,
                        name=m["name"], metric_type=m.get("type", "NUMERIC"),
                    ))
                    counts["metrics"] += 1
            except (KeyError, ValueError, SignalEngineError, sqlite3.IntegrityError) as e:
                logger.warning(f"Invalid asset {raw.get('name')!r}: {e}")
                counts["skipped"] += 1

        existing = {(r.tenant_id, r.name) for r in db.list_rules()}
        for raw in self.data.get("rules", []):
            try:
                tenant = self._tenant(db, raw)
                asset = db.get_asset_by_name(tenant.id, raw["asset"])
                if asset is None:
                    raise ValueError(f"unknown asset {raw['asset']!r}")
                if (tenant.id, raw["name"]) in existing:
                    continue
                db.create_rule(Rule(
                    tenant_id=tenant.id,
                    asset_id=asset.id,
                    name=raw["name"],
                    description=raw.get("description"),
                    metric_name=raw["metric"],
                    operator=raw["operator"],
                    threshold=raw["threshold"],
                    severity=raw.get("severity", "INFO"),
                    evaluation_frequency=raw.get("frequency", "5_MIN"),
                    consecutive_breaches_required=int(raw.get("consecutive_breaches", 1)),
                    is_active=raw.get("enabled", True),
                ))
                existing.add((tenant.id, raw["name"]))
                counts["rules"] += 1
            except (KeyError, ValueError, SignalEngineError, sqlite3.IntegrityError) as e:
                logger.warning(f"Invalid rule {raw.get('name')!r}: {e}")
                counts["skipped"] += 1

        db.commit()
        logger.info(
            f"Imported {counts['tenants']} tenants, {counts['assets']} assets, "
            f"{counts['metrics']} metrics, {counts['rules']} rules ({counts['skipped']} skipped)"
        )
        return counts

    @staticmethod
    def _tenant(db, raw):
        tenant = db.get_tenant_by_name(raw["tenant"])
        if tenant is None:
            raise ValueError(f"unknown tenant {raw['tenant']!r}")
        return tenant
