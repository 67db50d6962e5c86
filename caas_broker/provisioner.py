from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import time
from typing import Any, Callable

from caas_broker import naming
from caas_broker.cluster import NAMESPACES_PATH, RBAC_NAMESPACES_PATH, ClusterClient
from caas_broker.config import Settings
from caas_broker.errors import (
    ClusterCallError,
    ProvisioningError,
    RenderError,
    TokenExtractionError,
)
from caas_broker.models import Plan, ServiceInstance
from caas_broker.renderer import (
    ACCOUNT_CREATE,
    NAMESPACE_CREATE,
    RESOURCE_QUOTA_CREATE,
    ROLE_BINDING_CREATE,
    ROLE_CREATE,
    ManifestRenderer,
)

logger = logging.getLogger(__name__)

STEP_NAMESPACE = "namespace"
STEP_RESOURCE_QUOTA = "resource-quota"
STEP_SERVICE_ACCOUNT = "service-account"
STEP_ROLE = "role"
STEP_ROLE_BINDING = "role-binding"
STEP_TOKEN = "token"


@dataclass(frozen=True)
class NamespaceResult:
    name: str
    created: bool
    render_error: RenderError | None = None


def extract_token(document: str) -> str:
    """Return ``secrets[0].name`` from a service account document."""
    try:
        payload = json.loads(document)
    except json.JSONDecodeError as exc:
        raise TokenExtractionError("Service account response is not valid JSON") from exc

    secrets = payload.get("secrets") if isinstance(payload, dict) else None
    if not isinstance(secrets, list) or not secrets:
        raise TokenExtractionError("Service account has no secrets yet")
    first = secrets[0]
    name = first.get("name") if isinstance(first, dict) else None
    if not isinstance(name, str) or not name:
        raise TokenExtractionError("Service account secret entry has no name")
    return name


class Provisioner:
    """Stands up and tears down a tenant namespace on the cluster.

    Steps run strictly in order and each one blocks on its cluster call:
    namespace, resource quota, service account, role, role binding, token.
    A failing step raises ``ProvisioningError``; resources created by earlier
    steps are left in place for the caller to clean up with ``deprovision``.
    """

    def __init__(
        self,
        *,
        client: ClusterClient,
        renderer: ManifestRenderer | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._renderer = renderer or ManifestRenderer()
        self._settings = settings or Settings()
        self._sleep = sleep

    def _url(self, path: str) -> str:
        return f"{self._settings.api_url.rstrip('/')}{path}"

    def _namespace_url(self, namespace: str) -> str:
        return self._url(f"{NAMESPACES_PATH}/{namespace}")

    def _rbac_url(self, namespace: str, kind: str) -> str:
        return self._url(f"{RBAC_NAMESPACES_PATH}/{namespace}/{kind}")

    def _quota_manifest(self, namespace: str, plan: Plan) -> str:
        return self._renderer.render(
            RESOURCE_QUOTA_CREATE,
            {"quotaName": naming.quota_name(namespace), "plan": naming.normalize_plan(plan)},
        )

    def provision(self, instance: ServiceInstance, plan: Plan) -> ServiceInstance:
        logger.info(
            "Provisioning namespace for service instance %s (plan=%s)",
            instance.service_instance_id,
            plan.id,
        )
        owner = instance.get_parameter("owner")
        if not isinstance(owner, str) or not owner:
            raise ProvisioningError(
                step=STEP_SERVICE_ACCOUNT,
                namespace=naming.namespace_name(instance.service_instance_id),
                cause=ValueError("service instance parameter 'owner' is required"),
            )
        account = naming.account_name(instance.organization_guid, owner)

        result = self.create_namespace(instance.service_instance_id)
        namespace = result.name
        if not result.created:
            assert result.render_error is not None
            raise ProvisioningError(step=STEP_NAMESPACE, namespace=namespace, cause=result.render_error)

        self._run_step(STEP_RESOURCE_QUOTA, namespace, self.create_resource_quota, namespace, plan)
        self._run_step(STEP_SERVICE_ACCOUNT, namespace, self.create_service_account, namespace, account)
        self._run_step(STEP_ROLE, namespace, self.create_role, namespace, account)
        self._run_step(STEP_ROLE_BINDING, namespace, self.create_role_binding, namespace, account)
        token = self._run_step(STEP_TOKEN, namespace, self.fetch_token, namespace, account)

        logger.info("Provisioned namespace %s with account %s", namespace, account)
        return instance.model_copy(
            update={
                "caas_namespace": namespace,
                "caas_account_name": account,
                "caas_account_access_token": token,
            }
        )

    def _run_step(self, step: str, namespace: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        except (ClusterCallError, RenderError, TokenExtractionError) as exc:
            logger.error("Provisioning step %s failed for namespace %s: %s", step, namespace, exc)
            raise ProvisioningError(step=step, namespace=namespace, cause=exc) from exc

    def create_namespace(self, instance_id: str) -> NamespaceResult:
        name = naming.namespace_name(instance_id)
        logger.debug("Creating namespace %s for service instance %s", name, instance_id)
        try:
            manifest = self._renderer.render(NAMESPACE_CREATE, {"name": name})
        except RenderError as exc:
            logger.warning("Skipping creation of namespace %s: %s", name, exc)
            return NamespaceResult(name=name, created=False, render_error=exc)

        try:
            self._client.send(self._url(NAMESPACES_PATH), manifest, "POST")
        except ClusterCallError as exc:
            raise ProvisioningError(step=STEP_NAMESPACE, namespace=name, cause=exc) from exc
        logger.info("Created namespace %s", name)
        return NamespaceResult(name=name, created=True)

    def create_resource_quota(self, namespace: str, plan: Plan) -> None:
        logger.info("Creating resource quota for namespace %s (plan=%s)", namespace, plan.id)
        manifest = self._quota_manifest(namespace, plan)
        self._client.send(f"{self._namespace_url(namespace)}/resourcequotas", manifest, "POST")

    def create_service_account(self, namespace: str, account: str) -> None:
        logger.info("Creating service account %s in namespace %s", account, namespace)
        manifest = self._renderer.render(ACCOUNT_CREATE, {"spaceName": namespace, "userName": account})
        self._client.send(f"{self._namespace_url(namespace)}/serviceaccounts", manifest, "POST")

    def create_role(self, namespace: str, account: str) -> None:
        logger.info("Creating role %s for account %s", naming.role_name(namespace), account)
        manifest = self._renderer.render(
            ROLE_CREATE,
            {"spaceName": namespace, "userName": account, "roleName": naming.role_name(namespace)},
        )
        self._client.send(self._rbac_url(namespace, "roles"), manifest, "POST")

    def create_role_binding(self, namespace: str, account: str) -> None:
        logger.info("Binding role %s to account %s", naming.role_name(namespace), account)
        manifest = self._renderer.render(
            ROLE_BINDING_CREATE,
            {"spaceName": namespace, "userName": account, "roleName": naming.role_name(namespace)},
        )
        self._client.send(self._rbac_url(namespace, "rolebindings"), manifest, "POST")

    def fetch_token(self, namespace: str, account: str) -> str:
        """Read the name of the account's token secret.

        The secret is populated by the cluster shortly after the account is
        created, so an empty ``secrets`` list is polled with backoff.
        """
        url = f"{self._namespace_url(namespace)}/serviceaccounts/{account}"
        attempts = self._settings.token_poll_attempts
        delay = self._settings.token_poll_interval
        for attempt in range(1, attempts + 1):
            document = self._client.send(url, None, "GET")
            try:
                return extract_token(document)
            except TokenExtractionError as exc:
                if attempt >= attempts:
                    raise
                logger.debug(
                    "Token for %s/%s not available (attempt %s/%s): %s; retrying in %.1fs",
                    namespace,
                    account,
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
                self._sleep(delay)
                delay *= self._settings.token_poll_backoff
        raise TokenExtractionError(f"No token found for {namespace}/{account}")

    def deprovision(self, namespace: str) -> None:
        logger.info("Deleting namespace %s", namespace)
        self._client.send(self._namespace_url(namespace), None, "DELETE")
        logger.info("Deleted namespace %s", namespace)

    def namespace_exists(self, namespace: str, *, strict: bool = False) -> bool:
        """Check the namespace endpoint.

        By default any cluster error (including an unreachable cluster) reads as
        "does not exist". With ``strict=True`` only a 404 does, and every other
        error is re-raised.
        """
        try:
            self._client.send(self._namespace_url(namespace), None, "GET")
        except ClusterCallError as exc:
            if strict and not exc.not_found:
                raise
            logger.info("Namespace %s not found (status=%s)", namespace, exc.status_code)
            return False
        return True

    def change_resource_quota(self, namespace: str, plan: Plan) -> None:
        logger.info("Replacing resource quota for namespace %s (plan=%s)", namespace, plan.id)
        manifest = self._quota_manifest(namespace, plan)
        quota = naming.quota_name(namespace)
        response = self._client.send(f"{self._namespace_url(namespace)}/resourcequotas/{quota}", manifest, "PUT")
        if response:
            logger.debug("Resource quota replace response: %s", response)


def build_provisioner(settings: Settings) -> Provisioner:
    return Provisioner(client=ClusterClient.from_settings(settings), settings=settings)
