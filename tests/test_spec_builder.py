from datetime import timedelta

import pytest

from swarm_deployer.application.services.spec_builder import (
    build_proxy_spec,
    build_service_spec,
    resolve_networks,
    resolve_update_order,
)
from swarm_deployer.errors import InvalidUpdateOrder
from swarm_deployer.models import AppConfig, SecretFileTarget, SecretRef


def make_app(**overrides) -> AppConfig:
    data = {"name": "web", "image": "registry.local/web:1.2.3"}
    data.update(overrides)
    return AppConfig.model_validate(data)


def test_defaults_replicas_and_order():
    spec = build_service_spec(make_app(), secrets=[], networks=["internal"])

    assert spec.replicas == 1
    assert spec.update_policy.order == "stop_first"
    assert spec.update_policy.failure_action == "rollback"
    assert spec.update_policy.parallelism == 1
    assert spec.rollback_policy.failure_action == "pause"
    assert spec.healthcheck is None
    assert spec.networks == ("internal",)
    assert spec.log_driver.options == {"max-size": "100m", "max-file": "3"}


def test_copies_app_description():
    secret = SecretRef(id="s1", name="db-1-ab", key="db", file=SecretFileTarget(name="db"))
    app = make_app(
        replicas=3,
        env={"MODE": "prod"},
        labels={"team": "core"},
        volumes={"data": "/var/lib/web"},
        healthcheck={"test": ["CMD", "true"], "interval": "5s", "retries": 3},
        deploy={"order": "start_first"},
    )

    spec = build_service_spec(
        app, secrets=[secret], networks=["internal", "public"], monitor=timedelta(seconds=30)
    )

    assert spec.replicas == 3
    assert spec.env == {"MODE": "prod"}
    assert spec.labels == {"team": "core"}
    assert spec.secrets == (secret,)
    assert spec.mounts[0].source == "data"
    assert spec.mounts[0].target == "/var/lib/web"
    assert spec.healthcheck is not None
    assert spec.healthcheck.test == ("CMD", "true")
    assert spec.healthcheck.interval == timedelta(seconds=5)
    assert spec.update_policy.order == "start_first"
    assert spec.update_policy.monitor == timedelta(seconds=30)
    assert spec.rollback_policy.order == "start_first"


@pytest.mark.parametrize("order", ["start-first", "blue_green", "STOP_FIRST"])
def test_rejects_unknown_update_order(order):
    with pytest.raises(InvalidUpdateOrder):
        build_service_spec(make_app(deploy={"order": order}), secrets=[], networks=["internal"])


def test_empty_order_falls_back_to_stop_first():
    assert resolve_update_order("") == "stop_first"
    assert resolve_update_order(None) == "stop_first"


def test_public_network_only_with_public_address():
    private = make_app()
    public = make_app(public={"address": "web.example.com"})

    assert resolve_networks(private, internal="in", public="out") == ["in"]
    assert resolve_networks(public, internal="in", public="out") == ["in", "out"]


def test_proxy_spec_serves_site_fragments():
    spec = build_proxy_spec(
        "swarm-deployer-caddy", image="caddy:latest", network="public", sites_dir="/srv/sites"
    )

    assert spec.image == "caddy:latest"
    assert spec.networks == ("public",)
    assert [(mount.source, mount.target) for mount in spec.mounts] == [
        ("caddy_data", "/data"),
        ("caddy_sites", "/srv/sites"),
    ]
    assert "import /srv/sites/*.conf" in spec.command[2]
    assert len(spec.ports) == 4
    assert spec.replicas == 1
