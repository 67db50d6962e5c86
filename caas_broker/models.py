from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Plan(SQLModel):
    id: str
    name: str
    description: str | None = None
    memory: str
    disk: str


class ServiceInstanceBase(SQLModel):
    service_instance_id: str
    service_definition_id: str
    plan_id: str
    organization_guid: str
    space_guid: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class ServiceInstance(ServiceInstanceBase):
    """A service instance request as seen by the provisioning workflow."""

    caas_namespace: str | None = None
    caas_account_name: str | None = None
    caas_account_access_token: str | None = None

    def get_parameter(self, key: str) -> Any:
        return self.parameters.get(key)


class ServiceInstanceORM(ServiceInstanceBase, table=True):
    __tablename__ = "service_instance"

    service_instance_id: str = Field(primary_key=True)
    parameters: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    caas_namespace: Optional[str] = Field(default=None, index=True)
    caas_account_name: Optional[str] = Field(default=None)
    caas_account_access_token: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: Optional[datetime] = Field(default=None)
    deleted_at: Optional[datetime] = Field(default=None)


class ProvisionRequest(SQLModel):
    service_id: str
    plan_id: str
    organization_guid: str
    space_guid: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class UpdateRequest(SQLModel):
    service_id: str | None = None
    plan_id: str


class ServiceInstanceRead(SQLModel):
    service_instance_id: str
    service_definition_id: str
    plan_id: str
    organization_guid: str
    space_guid: str | None = None
    parameters: dict[str, Any]
    caas_namespace: str | None = None
    caas_account_name: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
