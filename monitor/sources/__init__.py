"""Metric source registry and result types."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from models.enums import DataSourceCode

logger = logging.getLogger("signalengine.sources")


@dataclass
class FetchedValue:
    metric_name: str
    value: Decimal
    timestamp: Optional[datetime] = None


@dataclass
class FetchResult:
    identifier: str
    success: bool
    values: List[FetchedValue] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def ok(cls, identifier, values):
        return cls(identifier=identifier, success=True, values=list(values))

    @classmethod
    def failure(cls, identifier, error):
        return cls(identifier=identifier, success=False, error=error)


class SourceRegistry:
    """Metric sources keyed by data-source code.

    A source exposes `fetch_batch(identifiers) -> {identifier: FetchResult}`.
    """

    def __init__(self, sources=None):
        self._sources = {}
        for code, source in (sources or {}).items():
            self.register(code, source)

    @classmethod
    def from_config(cls, config=None):
        from monitor.sources.binance import BinanceSource
        from monitor.sources.custom_api import CustomApiSource

        src_cfg = (config or {}).get("sources", {})
        binance = src_cfg.get("binance", {})
        custom = src_cfg.get("custom_api", {})
        return cls({
            DataSourceCode.BINANCE.value: BinanceSource(
                base_url=binance.get("base_url", "https://api.binance.com/api/v3"),
                rate_limit=binance.get("rate_limit", 60),
                timeout=binance.get("timeout", 15),
            ),
            DataSourceCode.CUSTOM_API.value: CustomApiSource(
                rate_limit=custom.get("rate_limit", 30),
                timeout=custom.get("timeout", 15),
            ),
        })

    def register(self, code, source):
        self._sources[str(code).upper()] = source

    def get(self, code):
        return self._sources.get(str(code).upper())

    def close(self):
        for source in self._sources.values():
            close = getattr(source, "close", None)
            if close:
                close()
