# Services package
from incident_stream.services.ack_service import AckPolicyRegistry, AcknowledgmentDispatcher
from incident_stream.services.stream import IncidentStream, PipelineRegistry, build_pipeline, consume

__all__ = [
    "AckPolicyRegistry",
    "AcknowledgmentDispatcher",
    "IncidentStream",
    "PipelineRegistry",
    "build_pipeline",
    "consume",
]
