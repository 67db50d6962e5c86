from __future__ import annotations

import logging
from pathlib import Path
from string import Template
from typing import Any, Mapping

import yaml

from caas_broker.errors import RenderError

logger = logging.getLogger(__name__)

MANIFEST_DIR = Path(__file__).resolve().parent / "manifests"

NAMESPACE_CREATE = "namespace-create"
RESOURCE_QUOTA_CREATE = "resource-quota-create"
ACCOUNT_CREATE = "account-create"
ROLE_CREATE = "role-create"
ROLE_BINDING_CREATE = "role-binding-create"

TEMPLATE_IDS = (
    NAMESPACE_CREATE,
    RESOURCE_QUOTA_CREATE,
    ACCOUNT_CREATE,
    ROLE_CREATE,
    ROLE_BINDING_CREATE,
)


class _ManifestTemplate(Template):
    # Allow dotted references such as ${plan.memory}.
    idpattern = r"(?a:[_a-z][_a-z0-9]*(?:\.[_a-z][_a-z0-9]*)*)"


def flatten_variables(variables: Mapping[str, Any], *, prefix: str = "") -> dict[str, str]:
    """Flatten nested mappings and models into ``{"plan.memory": "1Gi"}`` form."""
    flat: dict[str, str] = {}
    for key, value in variables.items():
        name = f"{prefix}{key}"
        if hasattr(value, "model_dump"):
            value = value.model_dump()
        if isinstance(value, Mapping):
            flat.update(flatten_variables(value, prefix=f"{name}."))
        elif value is not None:
            flat[name] = str(value)
    return flat


class ManifestRenderer:
    """Renders the YAML manifest templates shipped with the package."""

    def __init__(self, *, template_dir: Path | None = None) -> None:
        self._template_dir = template_dir or MANIFEST_DIR

    def _load(self, template_id: str) -> _ManifestTemplate:
        path = self._template_dir / f"{template_id}.yaml"
        try:
            return _ManifestTemplate(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise RenderError(template_id, f"template not found at {path}") from exc

    def render(self, template_id: str, variables: Mapping[str, Any]) -> str:
        template = self._load(template_id)
        try:
            document = template.substitute(flatten_variables(variables))
        except KeyError as exc:
            raise RenderError(template_id, f"unresolved variable {exc.args[0]!r}") from exc
        except ValueError as exc:
            raise RenderError(template_id, str(exc)) from exc

        try:
            parsed = yaml.safe_load(document)
        except yaml.YAMLError as exc:
            raise RenderError(template_id, f"rendered document is not valid YAML: {exc}") from exc
        if not isinstance(parsed, dict):
            raise RenderError(template_id, "rendered document is not a YAML mapping")

        logger.debug("Rendered manifest %s:\n%s", template_id, document)
        return document
