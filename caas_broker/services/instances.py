from __future__ import annotations

from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from caas_broker.catalog import Catalog, validate_parameters, validate_plan_change
from caas_broker import naming
from caas_broker.errors import (
    ClusterCallError,
    IntegrityException,
    NotFoundException,
    ParameterValidationException,
    ProvisioningError,
)
from caas_broker.models import (
    ProvisionRequest,
    ServiceInstance,
    ServiceInstanceORM,
    ServiceInstanceRead,
    UpdateRequest,
)
from caas_broker.provisioner import STEP_NAMESPACE, Provisioner

logger = logging.getLogger(__name__)


def _get_instance_orm(session: Session, *, instance_id: str) -> ServiceInstanceORM:
    instance = session.get(ServiceInstanceORM, instance_id)
    if not instance or instance.deleted_at is not None:
        raise NotFoundException(f"Service instance {instance_id} not found")
    return instance


def _cleanup_failed_provision(provisioner: Provisioner, exc: ProvisioningError) -> None:
    if exc.step == STEP_NAMESPACE:
        # The namespace POST failed, so whatever namespace exists is not ours.
        logger.warning("Leaving namespace %s untouched; it was not created by this request", exc.namespace)
        return
    try:
        if provisioner.namespace_exists(exc.namespace, strict=True):
            logger.warning("Removing partially provisioned namespace %s", exc.namespace)
            provisioner.deprovision(exc.namespace)
    except ClusterCallError as cleanup_exc:
        logger.error("Cleanup of namespace %s failed: %s", exc.namespace, cleanup_exc)


def _validate_cluster_names(instance_id: str, payload: ProvisionRequest) -> None:
    namespace = naming.namespace_name(instance_id)
    if not naming.is_valid_dns_label(namespace):
        raise ParameterValidationException(f"Instance id {instance_id!r} yields invalid namespace name {namespace!r}")
    owner = payload.parameters.get("owner")
    if isinstance(owner, str) and owner:
        account = naming.account_name(payload.organization_guid, owner)
        if not naming.is_valid_dns_label(account):
            raise ParameterValidationException(
                f"Organization and owner yield invalid service account name {account!r}"
            )


def create_instance(
    session: Session,
    *,
    provisioner: Provisioner,
    catalog: Catalog,
    instance_id: str,
    payload: ProvisionRequest,
) -> ServiceInstanceRead:
    existing = session.get(ServiceInstanceORM, instance_id)
    if existing is not None and existing.deleted_at is None:
        raise IntegrityException(f"Service instance {instance_id} already exists")

    service = catalog.get_service(payload.service_id)
    plan = catalog.get_plan(payload.plan_id)
    validate_parameters(payload.parameters, service.parameters_schema)
    _validate_cluster_names(instance_id, payload)

    instance = ServiceInstance(
        service_instance_id=instance_id,
        service_definition_id=payload.service_id,
        plan_id=payload.plan_id,
        organization_guid=payload.organization_guid,
        space_guid=payload.space_guid,
        parameters=payload.parameters,
    )
    try:
        provisioned = provisioner.provision(instance, plan)
    except ProvisioningError as exc:
        logger.warning("Provisioning of service instance %s failed at step %s", instance_id, exc.step)
        _cleanup_failed_provision(provisioner, exc)
        raise

    if existing is not None:
        # Reuse the soft-deleted row for a re-provisioned instance id.
        record = existing
        for key, value in provisioned.model_dump().items():
            setattr(record, key, value)
        record.created_at = datetime.utcnow()
        record.updated_at = None
        record.deleted_at = None
    else:
        record = ServiceInstanceORM.model_validate(provisioned.model_dump())
    session.add(record)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise IntegrityException(f"Service instance {instance_id} already exists") from exc
    session.refresh(record)
    logger.info("Created service instance %s in namespace %s", instance_id, record.caas_namespace)
    return ServiceInstanceRead.model_validate(record)


def get_instance(session: Session, *, instance_id: str) -> ServiceInstanceRead:
    return ServiceInstanceRead.model_validate(_get_instance_orm(session, instance_id=instance_id))


def list_instances(session: Session) -> list[ServiceInstanceRead]:
    instances = session.exec(
        select(ServiceInstanceORM).where(ServiceInstanceORM.deleted_at == None)  # noqa: E711
    ).all()
    return [ServiceInstanceRead.model_validate(i) for i in instances]


def update_instance(
    session: Session,
    *,
    provisioner: Provisioner,
    catalog: Catalog,
    instance_id: str,
    payload: UpdateRequest,
) -> ServiceInstanceRead:
    record = _get_instance_orm(session, instance_id=instance_id)
    service = catalog.get_service(record.service_definition_id)
    if not service.plan_updateable:
        raise IntegrityException(f"Service {service.id} does not support plan changes")

    current = catalog.get_plan(record.plan_id)
    target = catalog.get_plan(payload.plan_id)
    validate_plan_change(current, target)

    assert record.caas_namespace is not None, "Provisioned instance should have a namespace"
    provisioner.change_resource_quota(record.caas_namespace, target)

    record.plan_id = target.id
    record.updated_at = datetime.utcnow()
    session.add(record)
    session.commit()
    session.refresh(record)
    logger.info("Changed plan of service instance %s from %s to %s", instance_id, current.id, target.id)
    return ServiceInstanceRead.model_validate(record)


def delete_instance(session: Session, *, provisioner: Provisioner, instance_id: str) -> ServiceInstanceRead:
    record = _get_instance_orm(session, instance_id=instance_id)
    if record.caas_namespace and provisioner.namespace_exists(record.caas_namespace, strict=True):
        provisioner.deprovision(record.caas_namespace)
    else:
        logger.warning("Namespace for service instance %s is already gone", instance_id)

    record.deleted_at = datetime.utcnow()
    session.add(record)
    session.commit()
    session.refresh(record)
    logger.info("Deleted service instance %s", instance_id)
    return ServiceInstanceRead.model_validate(record)
