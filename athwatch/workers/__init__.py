"""Workers package initialization."""
from athwatch.workers.dispatcher import Dispatcher, DispatchResult
from athwatch.workers.pipeline import ATHPipeline, build_pipeline, run_pipeline

__all__ = ["Dispatcher", "DispatchResult", "ATHPipeline", "build_pipeline", "run_pipeline"]
