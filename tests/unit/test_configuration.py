"""
Unit tests for istio_mcp/tools/configuration.py handlers.
"""

from __future__ import annotations

import logging

import pytest
from kubernetes_asyncio import client
from kubernetes_asyncio.client.exceptions import ApiException

from istio_mcp.errors import ResourceListError, ToolInputError
from istio_mcp.tools.configuration import (
    Present,
    Skipped,
    handle_check_external_dependency,
    handle_discover_istio_namespaces,
    handle_get_envoy_filters,
    handle_get_istio_config,
    handle_get_pods_by_service,
    handle_get_services,
    handle_get_telemetry,
    has_istio_sidecar,
    rank_sidecar_namespaces,
    summarize_config,
)
from tests.conftest import (
    ALLOW_AP,
    DENY_ALL_AP,
    RDS_SE,
    cr,
    custom_items,
    make_pod,
    make_service,
)


def _by_plural(responses: dict):
    """side_effect routing list_namespaced_custom_object calls by (namespace, plural)."""

    def fake_list(group, version, namespace, plural, **kwargs):
        value = responses.get((namespace, plural), responses.get(plural, custom_items()))
        if isinstance(value, Exception):
            raise value
        return value

    return fake_list


# ---------------------------------------------------------------------------
# Envoy filters / telemetry
# ---------------------------------------------------------------------------

async def test_envoy_filters_workload_selector(backend):
    backend.custom.list_namespaced_custom_object.return_value = custom_items(
        cr("lua", {"workloadSelector": {"labels": {"app": "reviews"}}}), cr("global", {})
    )

    text = await handle_get_envoy_filters(backend, {})

    assert text == (
        "Found 2 Envoy Filters in namespace 'default':\n"
        "- lua\n"
        "  Workload Selector: app=reviews\n"
        "- global\n"
    )


async def test_telemetry_selector(backend):
    backend.custom.list_namespaced_custom_object.return_value = custom_items(
        cr("mesh-default", {"selector": {"matchLabels": {"app": "web"}}})
    )

    text = await handle_get_telemetry(backend, {"namespace": "istio-system"})

    assert text.startswith("Found 1 Telemetry configurations in namespace 'istio-system':\n")
    assert "  Selector: app=web" in text
    assert backend.custom.list_namespaced_custom_object.call_args.args[:2] == (
        "telemetry.istio.io",
        "v1alpha1",
    )


# ---------------------------------------------------------------------------
# Configuration summary
# ---------------------------------------------------------------------------

async def test_istio_config_summary_counts(backend):
    backend.custom.list_namespaced_custom_object.side_effect = _by_plural({
        "virtualservices": custom_items(cr("a"), cr("b")),
        "serviceentries": custom_items(RDS_SE),
    })

    text = await handle_get_istio_config(backend, {})

    assert text == (
        "Istio Configuration Summary for namespace 'default':\n\n"
        "Virtual Services: 2\n"
        "Destination Rules: 0\n"
        "Gateways: 0\n"
        "Service Entries: 1\n"
        "Authorization Policies: 0\n"
        "Peer Authentications: 0\n"
        "Envoy Filters: 0\n"
        "Telemetry Configurations: 0\n"
    )


async def test_istio_config_summary_skips_failures(backend, caplog):
    backend.custom.list_namespaced_custom_object.side_effect = _by_plural({
        "telemetries": ApiException(status=404, reason="Not Found"),
        "envoyfilters": ApiException(status=403, reason="Forbidden"),
    })

    with caplog.at_level(logging.WARNING, logger="istio_mcp.tools.configuration"):
        text = await handle_get_istio_config(backend, {"namespace": "prod"})

    assert "Telemetry Configurations" not in text
    assert "Envoy Filters" not in text
    assert "Virtual Services: 0" in text
    assert any("Telemetry Configurations" in r.getMessage() for r in caplog.records)


async def test_summarize_config_outcomes_keep_order(backend):
    backend.custom.list_namespaced_custom_object.side_effect = _by_plural({
        "gateways": ApiException(status=500, reason="Internal Server Error"),
    })

    outcomes = await summarize_config(backend, "default")

    assert [o.label for o in outcomes][:3] == ["Virtual Services", "Destination Rules", "Gateways"]
    assert isinstance(outcomes[2], Skipped)
    assert "Internal Server Error" in outcomes[2].reason
    assert all(isinstance(o, Present) for i, o in enumerate(outcomes) if i != 2)


# ---------------------------------------------------------------------------
# External dependency check
# ---------------------------------------------------------------------------

async def test_external_dependency_available(backend):
    host = "db.example.rds.amazonaws.com"
    backend.custom.list_namespaced_custom_object.side_effect = _by_plural({
        "serviceentries": custom_items(RDS_SE),
        "destinationrules": custom_items(cr("rds-tls", {"host": host})),
        "authorizationpolicies": custom_items(DENY_ALL_AP, ALLOW_AP),
    })

    text = await handle_check_external_dependency(
        backend, {"service-name": "orders", "external-host": host}
    )

    assert "[OK] Service Entry: 'rds' found in namespace 'default'" in text
    assert "[WARNING] Virtual Service: No specific routing rules found" in text
    assert "[OK] Destination Rule: 'rds-tls' found with traffic policies" in text
    assert "[OK] Authorization Policy: 'allow-frontend' found (ALLOW action)" in text
    assert f"[RESULT] External dependency '{host}' is available for service 'orders'" in text
    assert "Additional routing and traffic policies are configured." in text


async def test_external_dependency_global_service_entry(backend):
    host = "s3.amazonaws.com"
    backend.custom.list_namespaced_custom_object.side_effect = _by_plural({
        ("istio-system", "serviceentries"): custom_items(cr("s3", {"hosts": [host]})),
    })

    text = await handle_check_external_dependency(
        backend, {"service-name": "uploader", "external-host": host, "namespace": "apps"}
    )

    assert "[OK] Service Entry: 's3' found in namespace 'istio-system' (global)" in text
    assert "is available for service 'uploader'" in text


async def test_external_dependency_missing(backend):
    backend.custom.list_namespaced_custom_object.side_effect = _by_plural({
        ("istio-system", "serviceentries"): ApiException(status=403, reason="Forbidden"),
    })

    text = await handle_check_external_dependency(
        backend, {"service-name": "orders", "external-host": "api.stripe.com"}
    )

    assert "[MISSING] Service Entry: Not found for external host" in text
    assert "[RESULT] External dependency 'api.stripe.com' is NOT available" in text
    assert "[WARNING] Authorization Policy: No explicit ALLOW policies found" in text


async def test_external_dependency_mandatory_listing_failure(backend):
    backend.custom.list_namespaced_custom_object.side_effect = _by_plural({
        ("default", "virtualservices"): ApiException(status=403, reason="Forbidden"),
    })

    with pytest.raises(ResourceListError, match="failed to list virtual services"):
        await handle_check_external_dependency(
            backend, {"service-name": "orders", "external-host": "api.stripe.com"}
        )


@pytest.mark.parametrize(
    "args, message",
    [
        ({}, "service-name is required"),
        ({"service-name": "orders"}, "external-host is required"),
        ({"external-host": "x.com", "service-name": ""}, "service-name is required"),
    ],
)
async def test_external_dependency_required_params(backend, args, message):
    with pytest.raises(ToolInputError, match=f"^{message}$"):
        await handle_check_external_dependency(backend, args)
    backend.custom.list_namespaced_custom_object.assert_not_called()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

async def test_get_services_grouped_by_type(backend):
    backend.core.list_namespaced_service.return_value = client.V1ServiceList(items=[
        make_service("web", cluster_ip="10.96.0.5"),
        make_service("db", cluster_ip="None"),
        make_service("edge", svc_type="LoadBalancer", lb_ip="34.1.2.3"),
        make_service("debug", svc_type="NodePort", cluster_ip="10.96.0.9"),
    ])

    text = await handle_get_services(backend, {"namespace": "shop"})

    assert text.startswith("Services in namespace 'shop':\n\nFound 4 services:\n\n")
    assert f"   {'web':<30} (ClusterIP: 10.96.0.5)" in text
    assert f"   {'db':<30} (Headless)" in text
    assert f"   {'edge':<30} (LoadBalancer: 34.1.2.3)" in text
    assert f"   {'debug':<30} (NodePort: 10.96.0.9)" in text
    assert text.index(" ClusterIP Services:") < text.index(" NodePort Services:")
    assert "get-pods-by-service --namespace shop --service <service-name>" in text


async def test_get_services_pending_load_balancer(backend):
    backend.core.list_namespaced_service.return_value = client.V1ServiceList(items=[
        make_service("edge", svc_type="LoadBalancer"),
    ])

    text = await handle_get_services(backend, {})

    assert "(LoadBalancer: <pending>)" in text


async def test_get_services_empty(backend):
    backend.core.list_namespaced_service.return_value = client.V1ServiceList(items=[])

    text = await handle_get_services(backend, {})

    assert text.endswith("No services found in this namespace.\n")


# ---------------------------------------------------------------------------
# Pods by service
# ---------------------------------------------------------------------------

async def test_pods_by_service_requires_service(backend):
    with pytest.raises(ToolInputError) as excinfo:
        await handle_get_pods_by_service(backend, {"namespace": "default"})
    assert str(excinfo.value) == (
        "service name is required - use 'get-services' first to discover available services"
    )
    backend.core.read_namespaced_service.assert_not_called()


async def test_pods_by_service_lists_running_and_pending(backend):
    backend.core.read_namespaced_service.return_value = make_service(
        "reviews", selector={"version": "v1", "app": "reviews"}
    )
    backend.core.list_namespaced_pod.return_value = client.V1PodList(items=[
        make_pod("reviews-v1-abc", pod_ip="10.1.0.7"),
        make_pod("reviews-v1-def", containers=("app",), ready=False),
        make_pod("reviews-v1-ghi", phase="Pending"),
    ])

    text = await handle_get_pods_by_service(backend, {"namespace": "bookinfo", "service": "reviews"})

    backend.core.list_namespaced_pod.assert_called_once_with(
        "bookinfo", label_selector="app=reviews,version=v1", _request_timeout=30
    )
    assert " Service selector: app=reviews,version=v1" in text
    assert " Total pods found: 3 (2 running, 1 not running)" in text
    assert "✅ 🕸️ reviews-v1-abc" in text
    assert "❌ 🔗 reviews-v1-def" in text
    assert "🕸️  Istio mesh: ENABLED" in text
    assert "⚠️  Istio mesh: NOT ENABLED" in text
    assert "❌ reviews-v1-ghi (Status: Pending)" in text
    assert "get-proxy-status --namespace bookinfo --pod reviews-v1-abc" in text


async def test_pods_by_service_no_running_pods(backend):
    backend.core.read_namespaced_service.return_value = make_service("web", selector={"app": "web"})
    backend.core.list_namespaced_pod.return_value = client.V1PodList(items=[])

    text = await handle_get_pods_by_service(backend, {"service": "web"})

    assert "No running pods found backing this service!" in text
    assert "get-proxy-status" not in text


async def test_pods_by_service_without_selector_uses_endpoints(backend):
    backend.core.read_namespaced_service.return_value = make_service("external-db")
    backend.core.read_namespaced_endpoints.return_value = client.V1Endpoints(subsets=[
        client.V1EndpointSubset(addresses=[
            client.V1EndpointAddress(
                ip="10.2.0.4", target_ref=client.V1ObjectReference(kind="Pod", name="db-0")
            ),
            client.V1EndpointAddress(ip="192.168.1.20"),
        ])
    ])

    text = await handle_get_pods_by_service(backend, {"service": "external-db"})

    assert "Service 'external-db' has no selector" in text
    assert "   - Pod: db-0 (IP: 10.2.0.4)" in text
    assert "   - IP: 192.168.1.20" in text
    backend.core.list_namespaced_pod.assert_not_called()


async def test_pods_by_service_missing_service(backend):
    backend.core.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(ResourceListError, match=r"failed to get service ghost: \(404\) Not Found"):
        await handle_get_pods_by_service(backend, {"service": "ghost"})


# ---------------------------------------------------------------------------
# Namespace discovery
# ---------------------------------------------------------------------------

def test_has_istio_sidecar_native_sidecar():
    pod = make_pod("p", containers=("app",), init_containers=("istio-proxy",))
    assert has_istio_sidecar(pod)
    assert not has_istio_sidecar(make_pod("q", containers=("app",)))


def test_rank_sidecar_namespaces_count_then_name():
    pods = [
        make_pod("a1", "beta"),
        make_pod("a2", "beta"),
        make_pod("b1", "alpha"),
        make_pod("b2", "alpha"),
        make_pod("c1", "gamma"),
        make_pod("d1", "plain", containers=("app",)),
        make_pod("e1", "gamma", phase="Succeeded"),
    ]
    assert rank_sidecar_namespaces(pods) == [("alpha", 2), ("beta", 2), ("gamma", 1)]


def test_rank_sidecar_namespaces_counts_native_sidecars():
    pods = [
        make_pod("n1", "native", containers=("app",), init_containers=("istio-proxy",)),
        make_pod("n2", "native", containers=("app",), init_containers=("istio-validation",)),
    ]
    assert rank_sidecar_namespaces(pods) == [("native", 1)]


async def test_discover_namespaces_table(backend):
    pods = [make_pod(f"p{i}", ns) for i, ns in enumerate(["shop"] * 3 + ["auth"] * 2 + ["a", "b", "c", "d"])]
    backend.core.list_pod_for_all_namespaces.return_value = client.V1PodList(items=pods)

    text = await handle_discover_istio_namespaces(backend, {})

    backend.core.list_pod_for_all_namespaces.assert_called_once_with(
        field_selector="status.phase=Running", _request_timeout=30
    )
    lines = text.splitlines()
    assert lines[0] == "Found 6 namespaces with Istio sidecars:"
    assert lines[4] == f"{1:4d} | {'shop':<9} | {3:13d} | BEST - Most Istio-injected workloads"
    assert lines[5].endswith("Good - High Istio adoption")
    assert lines[7].endswith("Moderate - Some Istio usage")
    assert lines[9].endswith("Low - Minimal Istio usage")


async def test_discover_namespaces_none(backend):
    backend.core.list_pod_for_all_namespaces.return_value = client.V1PodList(
        items=[make_pod("plain", containers=("app",))]
    )

    assert await handle_discover_istio_namespaces(backend, {}) == "No namespaces with Istio sidecars found"
