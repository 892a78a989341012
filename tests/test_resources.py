"""
리소스 모델 변환 테스트
"""

import pytest
from kubernetes import client
from tunnel_lb_agent.resources import (
    KIND_INGRESS,
    KIND_SERVICE,
    AnnotationKeys,
    WatchedResource,
    meta_namespace_key,
    split_meta_namespace_key,
)

KEYS = AnnotationKeys()


def _ingress(rules, annotations=None):
    return client.V1Ingress(
        metadata=client.V1ObjectMeta(
            name="test-ingress",
            namespace="default",
            annotations=annotations,
            resource_version="42",
        ),
        spec=client.V1IngressSpec(rules=rules),
    )


def _path(port_number):
    return client.V1HTTPIngressPath(
        path="/",
        path_type="Prefix",
        backend=client.V1IngressBackend(
            service=client.V1IngressServiceBackend(
                name="backend",
                port=client.V1ServiceBackendPort(number=port_number),
            )
        ),
    )


def test_annotation_keys():
    """어노테이션 키 생성"""
    assert KEYS.enabled == "easy-tunnel-lb.quinnovator.com/enabled"
    assert KEYS.tunnel_id == "easy-tunnel-lb.quinnovator.com/tunnel-id"
    assert AnnotationKeys("example.com").enabled == "example.com/enabled"


def test_from_ingress_model():
    """V1Ingress 변환: 첫 rule 호스트, backend 포트 순서"""
    ingress = _ingress(
        rules=[
            client.V1IngressRule(
                host="test.example.com",
                http=client.V1HTTPIngressRuleValue(paths=[_path(80), _path(8080)]),
            ),
            client.V1IngressRule(
                host="other.example.com",
                http=client.V1HTTPIngressRuleValue(paths=[_path(443)]),
            ),
        ],
        annotations={KEYS.enabled: "true"},
    )

    resource = WatchedResource.from_object(KIND_INGRESS, ingress)

    assert resource.kind == KIND_INGRESS
    assert resource.key == "default/test-ingress"
    assert resource.hostname == "test.example.com"
    assert resource.ports == [80, 8080, 443]
    assert resource.resource_version == "42"
    assert resource.qualifies(KEYS)


def test_from_ingress_skips_named_ports_and_missing_http():
    """이름 포트/HTTP 없는 rule 무시"""
    named = client.V1HTTPIngressPath(
        path="/",
        path_type="Prefix",
        backend=client.V1IngressBackend(
            service=client.V1IngressServiceBackend(
                name="backend",
                port=client.V1ServiceBackendPort(name="http"),
            )
        ),
    )
    ingress = _ingress(rules=[
        client.V1IngressRule(http=client.V1HTTPIngressRuleValue(paths=[named, _path(80)])),
        client.V1IngressRule(host="ignored.example.com"),
    ])

    resource = WatchedResource.from_ingress(ingress)

    assert resource.ports == [80]
    assert resource.hostname == ""
    assert resource.annotations == {}


def test_from_ingress_without_rules():
    """rule이 없는 Ingress"""
    resource = WatchedResource.from_ingress(_ingress(rules=None))
    assert resource.ports == []
    assert resource.hostname == ""


def test_from_service_model():
    """V1Service 변환"""
    service = client.V1Service(
        metadata=client.V1ObjectMeta(name="web", namespace="prod", annotations={KEYS.enabled: ""}),
        spec=client.V1ServiceSpec(
            type="LoadBalancer",
            ports=[client.V1ServicePort(port=80), client.V1ServicePort(port=443)],
        ),
    )

    resource = WatchedResource.from_object(KIND_SERVICE, service)

    assert resource.ports == [80, 443]
    assert resource.service_type == "LoadBalancer"
    assert resource.hostname == ""
    assert resource.qualifies(KEYS)


def test_from_service_dict():
    """dict 형태 Service 변환"""
    raw = {
        "metadata": {"name": "web", "namespace": "prod", "resourceVersion": "7"},
        "spec": {"type": "ClusterIP", "ports": [{"port": 8080}]},
    }

    resource = WatchedResource.from_service(raw)

    assert resource.ports == [8080]
    assert resource.resource_version == "7"


@pytest.mark.parametrize("service_type, annotations, expected", [
    ("LoadBalancer", {KEYS.enabled: "true"}, True),
    ("ClusterIP", {KEYS.enabled: "true"}, False),
    ("NodePort", {KEYS.enabled: "true"}, False),
    ("LoadBalancer", {}, False),
])
def test_service_qualifies(service_type, annotations, expected):
    """Service는 LoadBalancer 타입 + 활성화 어노테이션"""
    resource = WatchedResource(KIND_SERVICE, "default", "svc", annotations=annotations,
                               service_type=service_type)
    assert resource.qualifies(KEYS) is expected


def test_tunnel_id_annotation():
    """터널 ID 어노테이션 조회"""
    resource = WatchedResource(KIND_INGRESS, "default", "ing", annotations={KEYS.tunnel_id: "abc"})
    assert resource.tunnel_id(KEYS) == "abc"
    assert not resource.is_enabled(KEYS)
    assert WatchedResource(KIND_INGRESS, "default", "ing").tunnel_id(KEYS) == ""


def test_unsupported_kind():
    """지원하지 않는 종류"""
    with pytest.raises(ValueError):
        WatchedResource.from_object("deployment", {})


def test_meta_namespace_key():
    """키 생성/분리"""
    assert meta_namespace_key("default", "web") == "default/web"
    assert meta_namespace_key("", "web") == "web"
    assert split_meta_namespace_key("default/web") == ("default", "web")
    assert split_meta_namespace_key("web") == ("", "web")


@pytest.mark.parametrize("key", ["", "a/b/c", "default/", 42, None])
def test_split_invalid_key(key):
    """잘못된 키"""
    with pytest.raises(ValueError):
        split_meta_namespace_key(key)
