from __future__ import annotations

import re

from caas_broker.models import Plan

NAMESPACE_PREFIX = "paas-"
NAMESPACE_SUFFIX = "-caas"
ACCOUNT_SUFFIX = "-admin"
QUOTA_SUFFIX = "-resourcequota"
ROLE_SUFFIX = "-role"

DNS_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
_ACCOUNT_STRIP_RE = re.compile(r"([:.#$&!_()`*%^~,<>\[\];+|-])+")
_QUANTITY_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)([A-Za-z]*)$")

_BINARY_UNITS = {"Ki": 1, "Mi": 2, "Gi": 3, "Ti": 4, "Pi": 5, "Ei": 6}
_DECIMAL_UNITS = {"k": 1, "K": 1, "M": 2, "G": 3, "T": 4, "P": 5, "E": 6}


def namespace_name(instance_id: str) -> str:
    return f"{NAMESPACE_PREFIX}{instance_id.lower()}{NAMESPACE_SUFFIX}"


def owner_local_part(owner: str) -> str:
    return owner.split("@", 1)[0]


def account_name(organization_id: str, owner: str) -> str:
    stripped = _ACCOUNT_STRIP_RE.sub("", owner_local_part(owner))
    return f"{organization_id}-{stripped}".lower() + ACCOUNT_SUFFIX


def is_valid_dns_label(value: str) -> bool:
    return bool(DNS_LABEL_RE.fullmatch(value))


def quota_name(namespace: str) -> str:
    return f"{namespace}{QUOTA_SUFFIX}"


def role_name(namespace: str) -> str:
    return f"{namespace}{ROLE_SUFFIX}"


def normalize_quantity(value: str) -> str:
    # Plans are stored as "1GB"; the cluster expects binary suffixes ("1Gi").
    return value.replace("B", "i")


def normalize_plan(plan: Plan) -> Plan:
    """Return a copy of ``plan`` with memory and disk in cluster quantity units."""
    return plan.model_copy(
        update={
            "memory": normalize_quantity(plan.memory),
            "disk": normalize_quantity(plan.disk),
        }
    )


def quantity_bytes(value: str) -> int:
    """Convert a quantity such as ``512Mi``, ``1GB`` or ``100M`` to bytes."""
    match = _QUANTITY_RE.fullmatch(normalize_quantity(value.strip()))
    if not match:
        raise ValueError(f"invalid quantity: {value!r}")
    number, unit = match.groups()
    if unit == "":
        return int(float(number))
    if unit in _BINARY_UNITS:
        return int(float(number) * 1024 ** _BINARY_UNITS[unit])
    if unit in _DECIMAL_UNITS:
        return int(float(number) * 1000 ** _DECIMAL_UNITS[unit])
    raise ValueError(f"unknown quantity unit {unit!r} in {value!r}")
