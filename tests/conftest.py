import importlib

import pytest
from starlette.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session
from typer.testing import CliRunner

from caas_broker.api.deps import get_catalog, get_provisioner
from caas_broker.catalog import Catalog
from caas_broker.config import DEFAULT_CATALOG_FILE
from caas_broker.db import get_session, init_db
from caas_broker.main import app
from tests.cluster_utils import FakeClusterClient, make_provisioner


@pytest.fixture
def catalog() -> Catalog:
    return Catalog.load(DEFAULT_CATALOG_FILE)


@pytest.fixture
def fake_cluster() -> FakeClusterClient:
    return FakeClusterClient()


@pytest.fixture
def provisioner(fake_cluster):
    return make_provisioner(fake_cluster)


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(db_session, provisioner, catalog):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_session] = override_get_db
    app.dependency_overrides[get_provisioner] = lambda: provisioner
    app.dependency_overrides[get_catalog] = lambda: catalog

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture()
def cli_runner(tmp_path, monkeypatch, provisioner):
    db_path = tmp_path / "test_cli.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")

    import caas_broker.db as db

    importlib.reload(db)
    init_db(db.engine)

    import caas_broker.cli as cli

    importlib.reload(cli)
    monkeypatch.setattr(cli, "_build_provisioner", lambda: provisioner)

    return CliRunner(), cli.app
