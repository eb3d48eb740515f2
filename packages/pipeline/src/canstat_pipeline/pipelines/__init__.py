"""
canstat_pipeline.pipelines — End-to-end retrieval orchestration.

    from canstat_pipeline.pipelines import RetrievalPipeline

    result = await RetrievalPipeline(catalog, fetcher).run("household income")
"""

from canstat_pipeline.pipelines.retrieval import (
    PipelineResult,
    RetrievalPipeline,
    request_for,
)

__all__ = ["PipelineResult", "RetrievalPipeline", "request_for"]
