from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

from jsonschema import ValidationError
from jsonschema import validate as jsonschema_validate
import yaml

from caas_broker.errors import IntegrityException, NotFoundException, ParameterValidationException
from caas_broker.models import Plan
from caas_broker.naming import quantity_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceOffering:
    id: str
    name: str
    description: str
    bindable: bool
    plan_updateable: bool
    parameters_schema: dict[str, Any] | None
    plans: list[Plan] = field(default_factory=list)

    def to_broker_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "bindable": self.bindable,
            "plan_updateable": self.plan_updateable,
            "plans": [
                {
                    "id": plan.id,
                    "name": plan.name,
                    "description": plan.description,
                    "metadata": {"memory": plan.memory, "disk": plan.disk},
                }
                for plan in self.plans
            ],
        }


def _load_plan(raw: dict[str, Any], path: Path) -> Plan:
    plan = Plan.model_validate(raw)
    for quantity in (plan.memory, plan.disk):
        try:
            quantity_bytes(quantity)
        except ValueError as exc:
            raise ValueError(f"Plan {plan.id} in catalog file {path} has an invalid quantity: {exc}") from exc
    return plan


class Catalog:
    def __init__(self, services: list[ServiceOffering]) -> None:
        self.services = services

    @classmethod
    def load(cls, path: Path) -> "Catalog":
        logger.debug("Loading service catalog from %s", path)
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ValueError(f"Unable to read catalog file {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in catalog file {path}: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("services"), list):
            raise ValueError(f"Catalog file {path} must define a 'services' list")

        services = []
        for raw in payload["services"]:
            services.append(
                ServiceOffering(
                    id=raw["id"],
                    name=raw["name"],
                    description=raw.get("description", ""),
                    bindable=bool(raw.get("bindable", True)),
                    plan_updateable=bool(raw.get("plan_updateable", True)),
                    parameters_schema=raw.get("parameters_schema"),
                    plans=[_load_plan(plan, path) for plan in raw.get("plans", [])],
                )
            )
        return cls(services)

    def to_broker_dict(self) -> dict[str, Any]:
        return {"services": [service.to_broker_dict() for service in self.services]}

    def get_service(self, service_id: str) -> ServiceOffering:
        for service in self.services:
            if service.id == service_id:
                return service
        raise NotFoundException(f"Service {service_id} not found")

    def get_plan(self, plan_id: str) -> Plan:
        for service in self.services:
            for plan in service.plans:
                if plan.id == plan_id:
                    return plan
        raise NotFoundException(f"Plan {plan_id} not found")


def validate_parameters(parameters: dict[str, Any] | None, schema: dict[str, Any] | None) -> None:
    """Validate provision request parameters against the service's schema."""
    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict):
        raise ParameterValidationException("parameters must be a JSON object")
    if schema is None:
        return
    try:
        jsonschema_validate(instance=parameters, schema=schema)
    except ValidationError as exc:
        raise ParameterValidationException(f"parameters are invalid: {exc.message}") from exc


def validate_plan_change(current: Plan, target: Plan) -> None:
    """Reject plan changes that would shrink memory or disk quota."""
    if current.id == target.id:
        raise IntegrityException(f"Service instance is already on plan {target.id}")
    try:
        memory = (quantity_bytes(current.memory), quantity_bytes(target.memory))
        disk = (quantity_bytes(current.disk), quantity_bytes(target.disk))
    except ValueError as exc:
        raise IntegrityException(f"Cannot compare plans {current.id} and {target.id}: {exc}") from exc
    if memory[1] < memory[0]:
        raise IntegrityException(
            f"Cannot change plan from {current.id} to {target.id}: memory {target.memory} < {current.memory}"
        )
    if disk[1] < disk[0]:
        raise IntegrityException(
            f"Cannot change plan from {current.id} to {target.id}: disk {target.disk} < {current.disk}"
        )
