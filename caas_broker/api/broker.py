from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from caas_broker.api.deps import get_catalog, get_provisioner
from caas_broker.catalog import Catalog
from caas_broker.db import get_session
from caas_broker.models import ProvisionRequest, ServiceInstanceRead, UpdateRequest
from caas_broker.provisioner import Provisioner
from caas_broker.services import instances as instance_service

router = APIRouter(prefix="/v2", tags=["broker"])


@router.get("/catalog")
def get_catalog_endpoint(catalog: Catalog = Depends(get_catalog)) -> dict:
    return catalog.to_broker_dict()


@router.put(
    "/service_instances/{instance_id}",
    response_model=ServiceInstanceRead,
    status_code=status.HTTP_201_CREATED,
)
def provision_instance(
    instance_id: str,
    payload: ProvisionRequest,
    session: Session = Depends(get_session),
    provisioner: Provisioner = Depends(get_provisioner),
    catalog: Catalog = Depends(get_catalog),
) -> ServiceInstanceRead:
    return instance_service.create_instance(
        session,
        provisioner=provisioner,
        catalog=catalog,
        instance_id=instance_id,
        payload=payload,
    )


@router.get("/service_instances/{instance_id}", response_model=ServiceInstanceRead)
def get_instance(instance_id: str, session: Session = Depends(get_session)) -> ServiceInstanceRead:
    return instance_service.get_instance(session, instance_id=instance_id)


@router.patch("/service_instances/{instance_id}", response_model=ServiceInstanceRead)
def update_instance(
    instance_id: str,
    payload: UpdateRequest,
    session: Session = Depends(get_session),
    provisioner: Provisioner = Depends(get_provisioner),
    catalog: Catalog = Depends(get_catalog),
) -> ServiceInstanceRead:
    return instance_service.update_instance(
        session,
        provisioner=provisioner,
        catalog=catalog,
        instance_id=instance_id,
        payload=payload,
    )


@router.delete("/service_instances/{instance_id}")
def deprovision_instance(
    instance_id: str,
    session: Session = Depends(get_session),
    provisioner: Provisioner = Depends(get_provisioner),
) -> dict:
    instance_service.delete_instance(session, provisioner=provisioner, instance_id=instance_id)
    return {}
