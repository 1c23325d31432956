"""Incident transfer shapes as delivered by the 365 Defender incidents API."""

from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _none_as_empty(value: Any) -> Any:
    return [] if value is None else value


class AckAction(str, Enum):
    """What to do with a record when it settles."""

    ACK = "ack"
    NOOP = "noop"


class DefenderModel(BaseModel):
    """Base for API payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class Comment(DefenderModel):
    comment: Optional[str] = None
    created_by: Optional[str] = None
    created_time: Optional[str] = None


class Device(DefenderModel):
    aad_device_id: Optional[str] = None
    device_dns_name: Optional[str] = None
    device_id: Optional[str] = None
    first_seen: Optional[str] = None
    health_status: Optional[str] = None
    os_build: Optional[int] = None
    os_platform: Optional[str] = None
    rbac_group_name: Optional[str] = None
    risk_score: Optional[str] = None


class Entity(DefenderModel):
    aad_user_id: Optional[str] = None
    account_name: Optional[str] = None
    cluster_by: Optional[str] = None
    delivery_action: Optional[str] = None
    device_id: Optional[str] = None
    domain_name: Optional[str] = None
    entity_type: Optional[str] = None
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    ip_address: Optional[str] = None
    mailbox_address: Optional[str] = None
    mailbox_display_name: Optional[str] = None
    parent_process_creation_time: Optional[str] = None
    parent_process_id: Optional[int] = None
    process_command_line: Optional[str] = None
    process_creation_time: Optional[str] = None
    process_id: Optional[int] = None
    recipient: Optional[str] = None
    registry_hive: Optional[str] = None
    registry_key: Optional[str] = None
    registry_value: Optional[str] = None
    registry_value_type: Optional[str] = None
    security_group_id: Optional[str] = None
    security_group_name: Optional[str] = None
    sender: Optional[str] = None
    sha1: Optional[str] = None
    sha256: Optional[str] = None
    subject: Optional[str] = None
    url: Optional[str] = None
    user_principal_name: Optional[str] = None
    user_sid: Optional[str] = None


class Alert(DefenderModel):
    actor_name: Optional[str] = None
    alert_id: Optional[str] = None
    assigned_to: Optional[str] = None
    category: Optional[str] = None
    classification: Optional[str] = None
    creation_time: Optional[str] = None
    description: Optional[str] = None
    determination: Optional[str] = None
    devices: Annotated[List[Device], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    entities: Annotated[List[Entity], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    first_activity: Optional[str] = None
    incident_id: Optional[int] = None
    investigation_state: Optional[str] = None
    last_update_time: Optional[str] = None
    mitre_techniques: Annotated[List[str], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    resolved_time: Optional[str] = None
    service_source: Optional[str] = None
    severity: Optional[str] = None
    status: Optional[str] = None
    threat_family_name: Optional[str] = None
    title: Optional[str] = None


class IncidentMetadata(DefenderModel):
    """Incident-level fields. ``last_update_time`` is kept as sent; the
    watermark tracker parses it and tolerates garbage."""

    assigned_to: Optional[str] = None
    classification: Optional[str] = None
    comments: Annotated[List[Comment], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    created_time: Optional[str] = None
    detection_source: Optional[str] = None
    determination: Optional[str] = None
    incident_id: Optional[int] = None
    incident_name: Optional[str] = None
    # Not always a string upstream; a record with an unusable value is still delivered.
    last_update_time: Any = None
    redirect_incident_id: Optional[int] = None
    severity: Optional[str] = None
    status: Optional[str] = None
    tags: Annotated[List[str], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    tenant_id: Optional[str] = None


class AckHandle(BaseModel):
    """Correlates a delivered record back to its source incident.

    ``on_success``/``on_failure`` override the pipeline's registered policy
    for this record only when set.
    """

    model_config = ConfigDict(frozen=True)

    pipeline_id: str
    receipt: Dict[str, Any]
    on_success: Optional[AckAction] = None
    on_failure: Optional[AckAction] = None


class IncidentRecord(BaseModel):
    """One incident as emitted downstream: alerts as data, the rest as metadata."""

    model_config = ConfigDict(frozen=True)

    data: Annotated[List[Alert], BeforeValidator(_none_as_empty)] = Field(default_factory=list)
    metadata: IncidentMetadata
    ack: AckHandle

    @property
    def receipt(self) -> Dict[str, Any]:
        return self.ack.receipt

    @property
    def last_update_time(self) -> Any:
        return self.metadata.last_update_time

    def configure_ack(
        self,
        *,
        on_success: Optional[AckAction] = None,
        on_failure: Optional[AckAction] = None,
    ) -> "IncidentRecord":
        """Return a copy whose ack handle carries the given per-record overrides."""
        update: Dict[str, Any] = {}
        if on_success is not None:
            update["on_success"] = AckAction(on_success)
        if on_failure is not None:
            update["on_failure"] = AckAction(on_failure)
        return self.model_copy(update={"ack": self.ack.model_copy(update=update)})

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], *, pipeline_id: str, tenant_id: Optional[str]) -> "IncidentRecord":
        """Normalize one raw incident object from the API response."""
        metadata = IncidentMetadata.model_validate({**payload, "tenantId": tenant_id})
        ack = AckHandle(pipeline_id=pipeline_id, receipt={"id": metadata.incident_id})
        return cls(data=payload.get("alerts"), metadata=metadata, ack=ack)


class AckPolicy(BaseModel):
    """Registered acknowledgment behaviour for one pipeline instance."""

    model_config = ConfigDict(frozen=True)

    on_success: AckAction = AckAction.ACK
    on_failure: AckAction = AckAction.NOOP
    tenant_id: Optional[str] = None

    def action_for(self, outcome: str) -> AckAction:
        return self.on_success if outcome == "on_success" else self.on_failure
