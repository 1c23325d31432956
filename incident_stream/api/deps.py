"""API dependencies"""

from fastapi import Request

from incident_stream.services.stream import PipelineRegistry


def get_pipelines(request: Request) -> PipelineRegistry:
    """Pipeline registry created by the application lifespan."""
    return request.app.state.pipelines
