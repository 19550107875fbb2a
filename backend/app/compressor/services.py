"""
Service wiring for the compression backend.

``build_services`` assembles registry, storage, engine, worker pool,
orchestrator, scheduler, sweeper and intake from a config mapping. The
returned CompressorServices owns their lifecycle: nothing runs until
``start()`` and everything stops on ``shutdown()``.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from compressor.enhanced_logger import setup_enhanced_logging, log_with_context
from compressor.intake import UploadIntake
from compressor.job_registry import InMemoryJobRegistry, JobRegistry
from compressor.orchestrator import TranscodeOrchestrator
from compressor.scheduler import TaskScheduler
from compressor.storage import LocalStorage
from compressor.sweeper import RetentionSweeper
from compressor.transcoder import FfmpegEngine, TranscodeEngine
from compressor.worker_pool import EncodeWorkerPool

logger = setup_enhanced_logging(__name__)


def build_registry(config: Mapping[str, Any]) -> JobRegistry:
    store = config.get("JOB_STORE", "memory")
    if store == "redis":
        from compressor.redis_job_store import RedisJobRegistry

        return RedisJobRegistry.from_url(config["REDIS_URL"])
    if store != "memory":
        raise ValueError(f"Unknown JOB_STORE '{store}' (expected 'memory' or 'redis')")
    return InMemoryJobRegistry()


@dataclass
class CompressorServices:
    registry: JobRegistry
    storage: LocalStorage
    engine: TranscodeEngine
    pool: EncodeWorkerPool
    orchestrator: TranscodeOrchestrator
    scheduler: TaskScheduler
    sweeper: RetentionSweeper
    intake: UploadIntake
    started: bool = False
    # Checked once by create_app; /health reports this value
    ffmpeg_available: bool = False

    def start(self) -> None:
        if self.started:
            return
        self.pool.start()
        self.scheduler.start()
        self.sweeper.start()
        self.started = True
        logger.info("[Services] Compression services started")

    def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        if not self.started:
            return
        self.started = False
        self.sweeper.stop()
        self.orchestrator.shutdown(wait=True, timeout=timeout)
        self.scheduler.stop(timeout=timeout)
        self.registry.close()
        logger.info("[Services] Compression services stopped")


def build_services(
    config: Mapping[str, Any],
    engine: Optional[TranscodeEngine] = None,
    registry: Optional[JobRegistry] = None,
) -> CompressorServices:
    if registry is None:
        registry = build_registry(config)
    storage = LocalStorage(base_path=config["STORAGE_PATH"])
    if engine is None:
        engine = FfmpegEngine(config["FFMPEG_PATH"], config["FFPROBE_PATH"])
    pool = EncodeWorkerPool(
        concurrency=config["ENCODE_CONCURRENCY"], queue_limit=config["ENCODE_QUEUE_LIMIT"]
    )
    scheduler = TaskScheduler()
    sweeper = RetentionSweeper(
        registry,
        storage,
        scheduler,
        retention_ttl=config["RETENTION_TTL"],
        sweep_interval=config["SWEEP_INTERVAL"],
        input_cleanup_delay=config["INPUT_CLEANUP_DELAY"],
    )
    orchestrator = TranscodeOrchestrator(
        registry,
        storage,
        engine,
        pool,
        max_encode_seconds=config["MAX_ENCODE_SECONDS"],
        channel_size=config["PROGRESS_CHANNEL_SIZE"],
        on_completed=sweeper.schedule_input_cleanup,
    )
    intake = UploadIntake(registry, storage, orchestrator, max_upload_size=config["MAX_UPLOAD_SIZE"])

    log_with_context(
        logger, "info", "[Services] Storage configured",
        uploads=str(storage.uploads_path), processed=str(storage.processed_path),
    )

    return CompressorServices(
        registry=registry,
        storage=storage,
        engine=engine,
        pool=pool,
        orchestrator=orchestrator,
        scheduler=scheduler,
        sweeper=sweeper,
        intake=intake,
    )
