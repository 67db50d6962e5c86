from __future__ import annotations

from functools import lru_cache

from caas_broker.catalog import Catalog
from caas_broker.config import Settings
from caas_broker.provisioner import Provisioner, build_provisioner


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache
def _catalog() -> Catalog:
    return Catalog.load(get_settings().catalog_file)


@lru_cache
def _provisioner() -> Provisioner:
    return build_provisioner(get_settings())


def get_catalog() -> Catalog:
    return _catalog()


def get_provisioner() -> Provisioner:
    return _provisioner()
