import base64
import re
from urllib.parse import parse_qs, urlsplit

import pytest
import responses
import yaml

from cortextools.client import (
    ClientConfig,
    CortexAPIError,
    CortexClient,
    ResourceNotFoundError,
    build_url,
    join_path,
)

BASE = "http://cortex.example.com"
ANY_URL = re.compile(r"http://cortex\.example\.com/.*")


@pytest.fixture
def mocked():
    with responses.RequestsMock() as rsps:
        yield rsps


@pytest.mark.parametrize(
    "path,url,expected",
    [
        ("/api/v1/rules", "http://cortexurl.com/", "http://cortexurl.com/api/v1/rules"),
        ("/api/v1/rules", "http://cortexurl.com", "http://cortexurl.com/api/v1/rules"),
        ("/api/v1/rules", "http://cortexurl.com/apathto", "http://cortexurl.com/apathto/api/v1/rules"),
        ("/api/v1/rules", "http://cortexurl.com/apathto/", "http://cortexurl.com/apathto/api/v1/rules"),
        (
            "/api/v1/rules/%20%2Fspace%F0%9F%8D%BB",
            "http://cortexurl.com/",
            "http://cortexurl.com/api/v1/rules/%20%2Fspace%F0%9F%8D%BB",
        ),
        (
            "/api/v1/rules/%20%2Fspace%F0%9F%8D%BB",
            "http://cortexurl.com",
            "http://cortexurl.com/api/v1/rules/%20%2Fspace%F0%9F%8D%BB",
        ),
        (
            "/api/v1/rules/%20%2Fspace%F0%9F%8D%BB",
            "http://cortexurl.com/apathto",
            "http://cortexurl.com/apathto/api/v1/rules/%20%2Fspace%F0%9F%8D%BB",
        ),
        (
            "/api/v1/rules/%2F-first-char-slash",
            "http://cortexurl.com/apathto",
            "http://cortexurl.com/apathto/api/v1/rules/%2F-first-char-slash",
        ),
        (
            "/api/v1/rules/last-char-slash%2F",
            "http://cortexurl.com/apathto",
            "http://cortexurl.com/apathto/api/v1/rules/last-char-slash%2F",
        ),
    ],
)
def test_build_url(path, url, expected):
    assert build_url(path, url) == expected


def test_join_path_trims_only_one_slash():
    assert join_path("/a//", "/b") == "/a//b"
    assert join_path("/a", "/b") == "/a/b"


@pytest.mark.parametrize(
    "namespace,name,expected",
    [
        ("my-namespace", "my-name", "/api/v1/rules/my-namespace/my-name"),
        ("My: Namespace", "My: Name", "/api/v1/rules/My:%20Namespace/My:%20Name"),
        ("My/Namespace", "My/Name", "/api/v1/rules/My%2FNamespace/My%2FName"),
        ("My/Namespace", "/first-char-slash", "/api/v1/rules/My%2FNamespace/%2Ffirst-char-slash"),
        ("My/Namespace", "last-char-slash/", "/api/v1/rules/My%2FNamespace/last-char-slash%2F"),
    ],
)
def test_delete_rule_group_escapes_path(mocked, namespace, name, expected):
    mocked.add(responses.DELETE, ANY_URL, body="hello\n")
    client = CortexClient(ClientConfig(address=BASE, id="my-id", key="secret"))
    assert client.delete_rule_group(namespace, name) is None
    assert len(mocked.calls) == 1
    assert urlsplit(mocked.calls[0].request.url).path == expected


def test_basic_auth_uses_id_when_no_user(mocked):
    mocked.add(responses.DELETE, ANY_URL, body="ok")
    client = CortexClient(ClientConfig(address=BASE, id="my-id", key="secret"))
    assert client.delete_rule_group("ns", "group") is None
    request = mocked.calls[0].request
    assert request.headers["X-Scope-OrgID"] == "my-id"
    scheme, _, encoded = request.headers["Authorization"].partition(" ")
    assert scheme == "Basic"
    assert base64.b64decode(encoded).decode() == "my-id:secret"


def test_bearer_token_header(mocked):
    mocked.add(responses.DELETE, ANY_URL, body="ok")
    client = CortexClient(ClientConfig(address=BASE, id="tenant", auth_token="token"))
    assert client.delete_alertmanager_config() is None
    request = mocked.calls[0].request
    assert request.headers["Authorization"] == "Bearer token"
    assert urlsplit(request.url).path == "/api/v1/alerts"


def test_basic_auth_and_token_conflict():
    client = CortexClient(
        ClientConfig(address=BASE, id="tenant", user="user", auth_token="token")
    )
    with pytest.raises(CortexAPIError, match="atmost one of basic auth or auth token"):
        client.delete_rule_group("ns", "group")


def test_not_found_raises_resource_not_found(mocked):
    mocked.add(responses.GET, ANY_URL, status=404, body="missing")
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    with pytest.raises(ResourceNotFoundError):
        client.get_rule_group("ns", "group")


def test_server_error_message_uses_first_line(mocked):
    mocked.add(responses.GET, ANY_URL, status=500, body="boom\nmore detail")
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    with pytest.raises(CortexAPIError) as info:
        client.list_rules()
    assert not isinstance(info.value, ResourceNotFoundError)
    message = str(info.value)
    assert message.startswith("server returned HTTP status 500")
    assert message.endswith(": boom")


def test_create_rule_group_posts_yaml(mocked):
    mocked.add(responses.POST, ANY_URL, body="")
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    group = {"name": "group", "rules": [{"record": "job:up", "expr": "sum(up)"}]}
    assert client.create_rule_group("my ns", group) is None
    request = mocked.calls[0].request
    assert urlsplit(request.url).path == "/api/v1/rules/my%20ns"
    assert yaml.safe_load(request.body) == group


def test_legacy_routes(mocked):
    mocked.add(responses.POST, ANY_URL, body="")
    client = CortexClient(ClientConfig(address=BASE, id="tenant", use_legacy_routes=True))
    assert client.create_rule_group("ns", {"name": "g", "rules": []}) is None
    assert urlsplit(mocked.calls[0].request.url).path == "/api/prom/rules/ns"


def test_get_rule_group_parses_body(mocked):
    body = "name: group\nrules:\n- alert: Down\n  expr: up == 0\n"
    mocked.add(responses.GET, ANY_URL, body=body)
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    group = client.get_rule_group("ns", "group")
    assert group == {"name": "group", "rules": [{"alert": "Down", "expr": "up == 0"}]}
    assert urlsplit(mocked.calls[0].request.url).path == "/api/v1/rules/ns/group"


def test_list_rules_by_namespace(mocked):
    body = "ns1:\n- name: a\n  rules: []\nns2:\n- name: b\n  rules: []\n"
    mocked.add(responses.GET, ANY_URL, body=body)
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    rules = client.list_rules()
    assert sorted(rules) == ["ns1", "ns2"]
    assert rules["ns1"] == [{"name": "a", "rules": []}]


def test_list_rules_single_namespace_path(mocked):
    mocked.add(responses.GET, ANY_URL, body="ns1: []\n")
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    assert client.list_rules("ns1") == {"ns1": []}
    assert urlsplit(mocked.calls[0].request.url).path == "/api/v1/rules/ns1"


def test_alertmanager_config_round_trip(mocked):
    mocked.add(responses.POST, ANY_URL, body="")
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    client.create_alertmanager_config("route:\n  receiver: x\n", {"t.tmpl": "hello"})
    sent = mocked.calls[0].request.body
    parsed = yaml.safe_load(sent)
    assert parsed == {
        "template_files": {"t.tmpl": "hello"},
        "alertmanager_config": "route:\n  receiver: x\n",
    }

    mocked.add(responses.GET, ANY_URL, body=sent)
    config, templates = client.get_alertmanager_config()
    assert config == "route:\n  receiver: x\n"
    assert templates == {"t.tmpl": "hello"}


def test_get_alertmanager_config_rejects_non_mapping(mocked):
    mocked.add(responses.GET, ANY_URL, body="- a\n- b\n")
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    with pytest.raises(CortexAPIError, match="unable to unmarshal response"):
        client.get_alertmanager_config()


def test_query_sends_expression(mocked):
    mocked.add(responses.GET, ANY_URL, body="{}")
    client = CortexClient(ClientConfig(address=BASE, id="tenant"))
    response = client.query("up")
    assert response.status_code == 200
    parts = urlsplit(mocked.calls[0].request.url)
    assert parts.path == "/api/prom/api/v1/query"
    params = parse_qs(parts.query)
    assert params["query"] == ["up"]
    assert params["time"][0].isdigit()


def test_tls_cert_without_key_fails():
    with pytest.raises(CortexAPIError, match="client initialization unsuccessful"):
        CortexClient(ClientConfig(address=BASE, tls_cert_path="cert.pem"))