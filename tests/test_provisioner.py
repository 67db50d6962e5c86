from __future__ import annotations

import json

import pytest
import yaml

from caas_broker.config import Settings
from caas_broker.errors import ClusterCallError, ProvisioningError, RenderError, TokenExtractionError
from caas_broker.models import Plan, ServiceInstance
from caas_broker.provisioner import Provisioner, extract_token
from caas_broker.renderer import ManifestRenderer
from tests.cluster_utils import API_URL, FakeClusterClient, make_provisioner

NS = "paas-abc123-caas"


def _instance(**overrides) -> ServiceInstance:
    values = dict(
        service_instance_id="abc-123",
        service_definition_id="caas-namespace",
        plan_id="caas-micro",
        organization_guid="org1",
        parameters={"owner": "jane@corp.io"},
    )
    values.update(overrides)
    return ServiceInstance(**values)


def _plan() -> Plan:
    return Plan(id="caas-micro", name="Micro", memory="1GB", disk="10GB")


class _FailingRenderer(ManifestRenderer):
    def __init__(self, failing: str) -> None:
        super().__init__()
        self._failing = failing

    def render(self, template_id, variables):
        if template_id == self._failing:
            raise RenderError(template_id, "boom")
        return super().render(template_id, variables)


def test_provision_runs_steps_in_order_and_enriches_instance():
    cluster = FakeClusterClient()
    provisioner = make_provisioner(cluster)
    instance = _instance()
    plan = _plan()

    out = provisioner.provision(instance, plan)

    assert out.caas_namespace == "paas-abc-123-caas"
    assert out.caas_account_name == "org1-jane-admin"
    assert out.caas_account_access_token == "tok-xyz"
    assert instance.caas_namespace is None
    assert (plan.memory, plan.disk) == ("1GB", "10GB")

    assert cluster.methods == ["POST", "POST", "POST", "POST", "POST", "GET"]
    assert cluster.paths() == [
        "/api/v1/namespaces",
        "/api/v1/namespaces/paas-abc-123-caas/resourcequotas",
        "/api/v1/namespaces/paas-abc-123-caas/serviceaccounts",
        "/apis/rbac.authorization.k8s.io/v1/namespaces/paas-abc-123-caas/roles",
        "/apis/rbac.authorization.k8s.io/v1/namespaces/paas-abc-123-caas/rolebindings",
        "/api/v1/namespaces/paas-abc-123-caas/serviceaccounts/org1-jane-admin",
    ]
    quota = yaml.safe_load(cluster.calls[1][2])
    assert quota["metadata"]["name"] == "paas-abc-123-caas-resourcequota"
    assert quota["spec"]["hard"] == {"limits.memory": "1Gi", "requests.storage": "10Gi"}
    role = yaml.safe_load(cluster.calls[3][2])
    binding = yaml.safe_load(cluster.calls[4][2])
    assert role["metadata"]["name"] == binding["roleRef"]["name"] == "paas-abc-123-caas-role"
    assert binding["subjects"][0]["name"] == "org1-jane-admin"


def test_provision_failure_reports_step_and_stops_without_rollback():
    cluster = FakeClusterClient()
    cluster.fail("POST", "/serviceaccounts", 409, "AlreadyExists")
    provisioner = make_provisioner(cluster)

    with pytest.raises(ProvisioningError) as exc_info:
        provisioner.provision(_instance(), _plan())

    exc = exc_info.value
    assert exc.step == "service-account"
    assert exc.namespace == "paas-abc-123-caas"
    assert isinstance(exc.cause, ClusterCallError)
    assert exc.cause.status_code == 409
    assert cluster.methods == ["POST", "POST", "POST"]
    assert "DELETE" not in cluster.methods


def test_provision_namespace_conflict_is_a_namespace_step_failure():
    cluster = FakeClusterClient()
    cluster.fail("POST", "/api/v1/namespaces", 409)
    with pytest.raises(ProvisioningError) as exc_info:
        make_provisioner(cluster).provision(_instance(), _plan())
    assert exc_info.value.step == "namespace"
    assert len(cluster.calls) == 1


def test_provision_namespace_render_failure_never_posts():
    cluster = FakeClusterClient()
    provisioner = Provisioner(client=cluster, renderer=_FailingRenderer("namespace-create"))
    with pytest.raises(ProvisioningError) as exc_info:
        provisioner.provision(_instance(), _plan())
    assert exc_info.value.step == "namespace"
    assert isinstance(exc_info.value.cause, RenderError)
    assert cluster.calls == []


def test_provision_requires_owner():
    cluster = FakeClusterClient()
    with pytest.raises(ProvisioningError) as exc_info:
        make_provisioner(cluster).provision(_instance(parameters={}), _plan())
    assert exc_info.value.step == "service-account"
    assert cluster.calls == []


def test_create_namespace_returns_name_even_when_render_fails():
    cluster = FakeClusterClient()
    provisioner = Provisioner(client=cluster, renderer=_FailingRenderer("namespace-create"))
    result = provisioner.create_namespace("ABC123")
    assert result.name == NS
    assert result.created is False
    assert isinstance(result.render_error, RenderError)
    assert cluster.calls == []


def test_create_namespace_posts_manifest():
    cluster = FakeClusterClient()
    result = make_provisioner(cluster).create_namespace("ABC123")
    assert result.name == NS
    assert result.created is True
    method, url, body = cluster.calls[0]
    assert (method, url) == ("POST", f"{API_URL}/api/v1/namespaces")
    assert yaml.safe_load(body)["metadata"]["name"] == NS


def test_create_resource_quota_posts_to_collection():
    cluster = FakeClusterClient()
    make_provisioner(cluster).create_resource_quota(NS, _plan())
    method, url, _ = cluster.calls[0]
    assert method == "POST"
    assert url == f"{API_URL}/api/v1/namespaces/{NS}/resourcequotas"


def test_change_resource_quota_puts_to_named_quota():
    cluster = FakeClusterClient()
    plan = Plan(id="caas-small", name="Small", memory="2GB", disk="20GB")
    make_provisioner(cluster).change_resource_quota(NS, plan)

    method, url, body = cluster.calls[0]
    assert method == "PUT"
    assert url == f"{API_URL}/api/v1/namespaces/{NS}/resourcequotas/{NS}-resourcequota"
    assert yaml.safe_load(body)["spec"]["hard"] == {"limits.memory": "2Gi", "requests.storage": "20Gi"}
    assert plan.memory == "2GB"


def test_change_resource_quota_propagates_cluster_error():
    cluster = FakeClusterClient()
    cluster.fail("PUT", f"/resourcequotas/{NS}-resourcequota", 404)
    with pytest.raises(ClusterCallError):
        make_provisioner(cluster).change_resource_quota(NS, _plan())


def test_deprovision_issues_single_delete():
    cluster = FakeClusterClient()
    make_provisioner(cluster).deprovision(NS)
    assert cluster.calls == [("DELETE", f"{API_URL}/api/v1/namespaces/{NS}", None)]


def test_deprovision_surfaces_cluster_error():
    cluster = FakeClusterClient()
    cluster.fail("DELETE", f"/namespaces/{NS}", 404)
    with pytest.raises(ClusterCallError):
        make_provisioner(cluster).deprovision(NS)


def test_namespace_exists_true_on_success():
    cluster = FakeClusterClient()
    assert make_provisioner(cluster).namespace_exists(NS) is True
    assert cluster.calls == [("GET", f"{API_URL}/api/v1/namespaces/{NS}", None)]


@pytest.mark.parametrize("status_code", [404, 503, None])
def test_namespace_exists_false_on_any_error(status_code):
    cluster = FakeClusterClient()
    cluster.fail("GET", f"/namespaces/{NS}", status_code)
    assert make_provisioner(cluster).namespace_exists(NS) is False


def test_namespace_exists_strict_only_treats_404_as_missing():
    cluster = FakeClusterClient()
    cluster.fail("GET", f"/namespaces/{NS}", 404)
    assert make_provisioner(cluster).namespace_exists(NS, strict=True) is False

    cluster = FakeClusterClient()
    cluster.fail("GET", f"/namespaces/{NS}", 503)
    with pytest.raises(ClusterCallError) as exc_info:
        make_provisioner(cluster).namespace_exists(NS, strict=True)
    assert exc_info.value.status_code == 503


def test_extract_token():
    assert extract_token('{"secrets":[{"name":"tok-xyz"}]}') == "tok-xyz"


@pytest.mark.parametrize(
    "document",
    ['{"secrets":[]}', "{}", '{"secrets":"nope"}', '{"secrets":[{}]}', '{"secrets":[42]}', "[]", "not json"],
)
def test_extract_token_rejects_missing_or_malformed_secrets(document):
    with pytest.raises(TokenExtractionError):
        extract_token(document)


def test_fetch_token_polls_until_secret_appears():
    cluster = FakeClusterClient()
    empty = json.dumps({"secrets": []})
    ready = json.dumps({"secrets": [{"name": "tok-late"}]})
    cluster.respond("GET", "/serviceaccounts/acct", empty, empty, ready)
    sleeps: list[float] = []
    provisioner = Provisioner(
        client=cluster,
        settings=Settings(
            api_url=API_URL, token_poll_attempts=5, token_poll_interval=0.5, token_poll_backoff=2.0
        ),
        sleep=sleeps.append,
    )

    assert provisioner.fetch_token(NS, "acct") == "tok-late"
    assert sleeps == [0.5, 1.0]
    assert cluster.methods == ["GET", "GET", "GET"]


def test_fetch_token_gives_up_after_configured_attempts():
    cluster = FakeClusterClient()
    cluster.respond("GET", "/serviceaccounts/acct", '{"secrets":[]}')
    provisioner = make_provisioner(cluster, token_poll_attempts=3)
    with pytest.raises(TokenExtractionError):
        provisioner.fetch_token(NS, "acct")
    assert cluster.methods == ["GET", "GET", "GET"]


def test_fetch_token_single_attempt_raises_immediately():
    cluster = FakeClusterClient()
    cluster.respond("GET", "/serviceaccounts/acct", '{"secrets":[]}')
    with pytest.raises(TokenExtractionError):
        make_provisioner(cluster, token_poll_attempts=1).fetch_token(NS, "acct")
    assert len(cluster.calls) == 1


def test_provision_token_failure_is_token_step():
    cluster = FakeClusterClient()
    cluster.respond("GET", "/serviceaccounts/org1-jane-admin", '{"secrets":[]}')
    with pytest.raises(ProvisioningError) as exc_info:
        make_provisioner(cluster, token_poll_attempts=2).provision(_instance(), _plan())
    assert exc_info.value.step == "token"
    assert isinstance(exc_info.value.cause, TokenExtractionError)
