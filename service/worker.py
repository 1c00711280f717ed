"""Worker host: runs ingestion, evaluation and dispatch on independent schedules.

Every cycle opens its own Database (all-tenant scope) and closes it on the
way out, whether the cycle finished, failed or was cancelled. Nothing is
shared between stages in memory; they coordinate only through the database.

Several hosts may run against the same database. There is no lock between
them: ingestion appends data and overwrites cursors, evaluation can at worst
fire a signal twice on a race, and dispatch can deliver a notification twice.
"""
import logging
import signal as signal_module
import threading
from functools import partial

from alerts.channels import ChannelDispatcher
from alerts.engine import RuleEvaluationRunner
from models.database import Database
from models.tenancy import TenantScope
from monitor.ingestion import MetricIngestionRunner
from monitor.scheduler import TickScheduler
from monitor.sources import SourceRegistry
from notifications.dispatcher import NotificationDispatchRunner
from utils.cancellation import CancellationToken

logger = logging.getLogger("signalengine.worker")


class WorkerHost:
    def __init__(self, config, sources=None, channels=None, database_factory=None, cancel=None):
        self.config = config
        self.sources = sources if sources is not None else SourceRegistry.from_config(config)
        self.channels = channels if channels is not None else ChannelDispatcher.from_config(config)
        self.database_factory = database_factory or partial(
            Database, config["database"]["path"], TenantScope.all_tenants()
        )
        self.cancel = cancel or CancellationToken()
        self.last_results = {}
        self._lock = threading.Lock()
        self.schedulers = self._build_schedulers()

    def _build_schedulers(self):
        stages = [
            ("ingestion", self.run_ingestion_cycle),
            ("evaluation", self.run_evaluation_cycle),
            ("dispatch", self.run_dispatch_cycle),
        ]
        schedulers = []
        for name, work in stages:
            stage_cfg = self.config[name]
            scheduler = TickScheduler(
                name=name,
                interval_seconds=stage_cfg["tick_interval_seconds"],
                work=work,
                enabled=stage_cfg.get("enabled", True),
                cancel=self.cancel,
            )
            scheduler.on_cycle(partial(self._record_result, name))
            schedulers.append(scheduler)
        return schedulers

    def _record_result(self, stage, result):
        with self._lock:
            self.last_results[stage] = result

    # --- Cycles ---

    def run_ingestion_cycle(self, cancel=None):
        stage_cfg = self.config["ingestion"]
        with self.database_factory() as db:
            runner = MetricIngestionRunner(db, self.sources)
            return runner.run(max_assets=stage_cfg.get("max_items_per_tick", 1000), cancel=cancel)

    def run_evaluation_cycle(self, cancel=None):
        with self.database_factory() as db:
            runner = RuleEvaluationRunner.from_config(db, self.config)
            return runner.run(cancel=cancel)

    def run_dispatch_cycle(self, cancel=None):
        stage_cfg = self.config["dispatch"]
        with self.database_factory() as db:
            runner = NotificationDispatchRunner(db, self.channels)
            return runner.run(
                max_notifications=stage_cfg.get("max_items_per_tick", 100),
                max_retry_count=stage_cfg.get("max_retry_count", 3),
                cancel=cancel,
            )

    # --- Lifecycle ---

    def start(self):
        for scheduler in self.schedulers:
            if scheduler.enabled:
                scheduler.start()
            else:
                logger.info(f"{scheduler.name} stage disabled")
        logger.info("Worker host started")

    def stop(self, timeout=30):
        """Request shutdown and wait for in-flight cycles to wind down."""
        self.cancel.cancel()
        for scheduler in self.schedulers:
            scheduler.join(timeout)
        self.sources.close()
        logger.info("Worker host stopped")

    def run_forever(self):
        """Start every stage and block until SIGINT/SIGTERM."""
        def _handle(signum, frame):
            logger.info(f"Received signal {signum}, shutting down")
            self.cancel.cancel()

        signal_module.signal(signal_module.SIGINT, _handle)
        signal_module.signal(signal_module.SIGTERM, _handle)

        self.start()
        while not self.cancel.wait(1.0):
            pass
        self.stop()
