"""Stats routes - polling engine observability."""

from fastapi import APIRouter, Depends, HTTPException

from incident_stream.api.deps import get_pipelines
from incident_stream.schemas.api import PipelineSnapshot
from incident_stream.services.stream import PipelineRegistry

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=list[PipelineSnapshot])
def get_pipeline_stats(pipelines: PipelineRegistry = Depends(get_pipelines)):
    """
    Get a snapshot of every pipeline's polling engine.

    Shows pending demand, the current watermark, the armed timer delay,
    fetch counters and the last fetch error.
    Use this for monitoring ingestion health and debugging upstream failures.
    """
    return [PipelineSnapshot(**stream.engine.snapshot()) for stream in pipelines.all()]


@router.get("/{pipeline_id}", response_model=PipelineSnapshot)
def get_single_pipeline_stats(pipeline_id: str, pipelines: PipelineRegistry = Depends(get_pipelines)):
    stream = pipelines.get(pipeline_id)
    if stream is None:
        raise HTTPException(status_code=404, detail=f"Unknown pipeline: {pipeline_id}")
    return PipelineSnapshot(**stream.engine.snapshot())
