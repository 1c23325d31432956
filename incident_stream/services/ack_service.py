"""Record settlement and acknowledgment.

The 365 Defender API has no notion of acknowledging an incident; an
acknowledged record only produces an ``ack`` telemetry event carrying its
receipt and tenant.

``AckPolicyRegistry`` is shared by every pipeline in the process. Policies are
written once per pipeline at startup, before that pipeline delivers anything,
and only read afterwards, so the registry takes no locks. Re-registering a
pipeline while it has records in flight is not supported.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from incident_stream.core import telemetry
from incident_stream.core.exceptions import UnregisteredPipelineError
from incident_stream.core.logging import get_logger
from incident_stream.schemas.incident import AckAction, AckPolicy, IncidentRecord

log = get_logger("ack_service")


class AckPolicyRegistry:
    """Ack policies keyed by pipeline id."""

    def __init__(self) -> None:
        self._policies: Dict[str, AckPolicy] = {}

    def register(self, pipeline_id: str, policy: AckPolicy) -> None:
        if pipeline_id in self._policies:
            log.debug(f"Replacing ack policy for pipeline {pipeline_id}")
        self._policies[pipeline_id] = policy

    def get(self, pipeline_id: str) -> AckPolicy:
        try:
            return self._policies[pipeline_id]
        except KeyError:
            raise UnregisteredPipelineError(pipeline_id) from None

    def __contains__(self, pipeline_id: object) -> bool:
        return pipeline_id in self._policies


class AcknowledgmentDispatcher:
    """Resolves each settled record to ack or noop and emits ack events."""

    def __init__(self, registry: AckPolicyRegistry):
        self.registry = registry

    def register_policy(self, pipeline_id: str, policy: AckPolicy) -> None:
        self.registry.register(pipeline_id, policy)

    def settle(
        self,
        pipeline_id: str,
        successful: Iterable[IncidentRecord],
        failed: Iterable[IncidentRecord],
    ) -> List[IncidentRecord]:
        """Acknowledge records per policy; returns the records that were acked.

        Raises ``UnregisteredPipelineError`` if ``pipeline_id`` has no policy.
        """
        policy = self.registry.get(pipeline_id)
        acked = [r for r in successful if self._resolve(r, policy, "on_success") is AckAction.ACK]
        acked += [r for r in failed if self._resolve(r, policy, "on_failure") is AckAction.ACK]
        for record in acked:
            self.ack_message(record, policy)
        return acked

    def ack_message(self, record: IncidentRecord, policy: AckPolicy) -> None:
        telemetry.execute(
            telemetry.ACK_EVENT,
            {"time": telemetry.system_time(), "count": 1},
            {"tenant_id": policy.tenant_id, "receipt": record.receipt},
        )

    @staticmethod
    def _resolve(record: IncidentRecord, policy: AckPolicy, outcome: str) -> AckAction:
        override: Optional[AckAction] = getattr(record.ack, outcome)
        return override if override is not None else policy.action_for(outcome)
