from __future__ import annotations

import json
import logging

import typer
import yaml
from fastapi.encoders import jsonable_encoder

from caas_broker.api.deps import get_settings
from caas_broker.catalog import Catalog
from caas_broker.db import engine, init_db, session_scope
from caas_broker.errors import CaasBrokerException
from caas_broker.logging_config import configure_logging
from caas_broker.models import ProvisionRequest, UpdateRequest
from caas_broker.provisioner import Provisioner, build_provisioner
from caas_broker.services import instances as instance_service

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(help="CaaS service broker CLI", pretty_exceptions_show_locals=False)


def _build_provisioner() -> Provisioner:
    return build_provisioner(get_settings())


def _load_catalog() -> Catalog:
    return Catalog.load(get_settings().catalog_file)


def _parse_parameters(parameters_json: str | None) -> dict:
    if parameters_json is None:
        return {}
    try:
        parsed = json.loads(parameters_json)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Invalid JSON for --parameters-json: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise typer.BadParameter("--parameters-json must decode to a JSON object")
    return parsed


def _exit_for_domain_error(exc: CaasBrokerException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _echo_yaml_entity(entity: object) -> None:
    encoded = jsonable_encoder(entity)
    typer.echo(yaml.safe_dump(encoded, sort_keys=False), nl=False)


@app.command("init-db")
def init_database() -> None:
    init_db(engine)
    typer.echo("Database initialized")


@app.command("catalog")
def show_catalog() -> None:
    _echo_yaml_entity(_load_catalog().to_broker_dict())


@app.command("provision")
def provision(
    instance_id: str,
    *,
    plan_id: str = typer.Option(..., "--plan-id"),
    organization_guid: str = typer.Option(..., "--org"),
    owner: str = typer.Option(..., "--owner"),
    service_id: str | None = typer.Option(None, "--service-id"),
    space_guid: str | None = typer.Option(None, "--space"),
    parameters_json: str | None = typer.Option(None, "--parameters-json"),
) -> None:
    catalog = _load_catalog()
    parameters = _parse_parameters(parameters_json)
    parameters["owner"] = owner
    payload = ProvisionRequest(
        service_id=service_id or catalog.services[0].id,
        plan_id=plan_id,
        organization_guid=organization_guid,
        space_guid=space_guid,
        parameters=parameters,
    )
    with session_scope() as session:
        try:
            instance = instance_service.create_instance(
                session,
                provisioner=_build_provisioner(),
                catalog=catalog,
                instance_id=instance_id,
                payload=payload,
            )
        except CaasBrokerException as e:
            _exit_for_domain_error(e)
        _echo_yaml_entity(instance)


@app.command("deprovision")
def deprovision(instance_id: str) -> None:
    with session_scope() as session:
        try:
            instance = instance_service.delete_instance(
                session, provisioner=_build_provisioner(), instance_id=instance_id
            )
        except CaasBrokerException as e:
            _exit_for_domain_error(e)
        _echo_yaml_entity(instance)


@app.command("change-plan")
def change_plan(instance_id: str, *, plan_id: str = typer.Option(..., "--plan-id")) -> None:
    with session_scope() as session:
        try:
            instance = instance_service.update_instance(
                session,
                provisioner=_build_provisioner(),
                catalog=_load_catalog(),
                instance_id=instance_id,
                payload=UpdateRequest(plan_id=plan_id),
            )
        except CaasBrokerException as e:
            _exit_for_domain_error(e)
        _echo_yaml_entity(instance)


@app.command("list-instances")
def list_instances() -> None:
    with session_scope() as session:
        _echo_yaml_entity(instance_service.list_instances(session))


@app.command("get-instance")
def get_instance(instance_id: str) -> None:
    with session_scope() as session:
        try:
            instance = instance_service.get_instance(session, instance_id=instance_id)
        except CaasBrokerException as e:
            _exit_for_domain_error(e)
        _echo_yaml_entity(instance)


@app.command("namespace-exists")
def namespace_exists(
    namespace: str,
    *,
    strict: bool = typer.Option(False, "--strict", help="Only treat 404 as missing"),
) -> None:
    try:
        exists = _build_provisioner().namespace_exists(namespace, strict=strict)
    except CaasBrokerException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity({"namespace": namespace, "exists": exists})
    if not exists:
        raise typer.Exit(code=1)


@app.command("change-quota")
def change_quota(namespace: str, *, plan_id: str = typer.Option(..., "--plan-id")) -> None:
    """Replace a namespace's resource quota without touching instance records."""
    try:
        plan = _load_catalog().get_plan(plan_id)
        _build_provisioner().change_resource_quota(namespace, plan)
    except CaasBrokerException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity({"namespace": namespace, "plan_id": plan_id})


@app.command("delete-namespace")
def delete_namespace(namespace: str) -> None:
    """Delete a namespace directly; contained resources go with it."""
    try:
        _build_provisioner().deprovision(namespace)
    except CaasBrokerException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity({"namespace": namespace, "deleted": True})


if __name__ == "__main__":
    app()
