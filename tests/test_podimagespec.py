import json

import pytest

from admissionguard.admission import AdmissionRequest, Operation
from admissionguard.podimagespec import (
    ImageSpecMatch,
    PodImageSpecWebhook,
    RegistryClient,
    RegistryLookupError,
    check_container_image_spec,
    json_patch,
    pod_contains_internal_openshift_image,
)

CLI_IMAGE = "image-registry.openshift-image-registry.svc:5000/openshift/cli:latest"
SOURCE_IMAGE = "quay.io/example/cli@sha256:abc123"


class FakeRegistry(RegistryClient):
    def __init__(self, state=None, tags=None):
        self.state = state
        self.tags = tags or {}
        self.lookups = []

    def image_registry_management_state(self):
        if self.state is None:
            raise RegistryLookupError('config "cluster" not found')
        return self.state

    def image_stream_tag_reference(self, namespace, name):
        self.lookups.append((namespace, name))
        try:
            return self.tags[(namespace, name)]
        except KeyError:
            raise RegistryLookupError(f"imagestreamtag {name} not found") from None


def make_pod(containers=(), init_containers=()):
    pod = {"metadata": {"name": "test", "namespace": "my-ns"}, "spec": {}}
    if containers:
        pod["spec"]["containers"] = [{"name": f"c{i}", "image": img} for i, img in enumerate(containers)]
    if init_containers:
        pod["spec"]["initContainers"] = [
            {"name": f"i{i}", "image": img} for i, img in enumerate(init_containers)
        ]
    return pod


def make_request(obj, username="user1", kind="Pod"):
    raw = obj if isinstance(obj, (str, bytes)) or obj is None else json.dumps(obj)
    return AdmissionRequest(
        uid="uid-1", kind=kind, operation=Operation.CREATE, username=username, object=raw
    )


@pytest.mark.parametrize(
    "imagespec, expected",
    [
        ("ubuntu", ImageSpecMatch()),
        ("ubuntu:latest", ImageSpecMatch()),
        ("docker.io/library/ubuntu:latest", ImageSpecMatch()),
        (
            "quay.io/openshift-release-dev/ocp-release@sha256:"
            "4dbe2a75a516a947eab036ef6a1d086f1b1610f6bd21c6ab5f95db68ec177ea2",
            ImageSpecMatch(),
        ),
        (
            "image-registry.openshift-image-registry.svc:5000/openshift/cli@sha256:"
            "4dbe2a75a516a947eab036ef6a1d086f1b1610f6bd21c6ab5f95db68ec177ea2",
            ImageSpecMatch(),
        ),
        (CLI_IMAGE, ImageSpecMatch(matched=True, namespace="openshift", image="cli", tag="latest")),
    ],
)
def test_check_container_image_spec(imagespec, expected):
    assert check_container_image_spec(imagespec) == expected


@pytest.mark.parametrize(
    "pod, expected",
    [
        ({}, False),
        (make_pod(containers=[CLI_IMAGE]), True),
        (make_pod(init_containers=[CLI_IMAGE]), True),
        (make_pod(containers=["ubuntu"]), False),
        (make_pod(init_containers=["ubuntu"]), False),
        (make_pod(containers=["ubuntu"], init_containers=[CLI_IMAGE]), True),
        (make_pod(containers=[CLI_IMAGE], init_containers=["ubuntu"]), True),
        (make_pod(containers=[CLI_IMAGE], init_containers=[CLI_IMAGE]), True),
    ],
)
def test_pod_contains_internal_openshift_image(pod, expected):
    assert pod_contains_internal_openshift_image(pod) is expected


def test_other_internal_namespace_is_not_interesting():
    image = "image-registry.openshift-image-registry.svc:5000/team/tool:v1"
    assert pod_contains_internal_openshift_image(make_pod(containers=[image])) is False


def test_registry_config_missing_raises():
    hook = PodImageSpecWebhook(FakeRegistry(state=None))
    with pytest.raises(RegistryLookupError, match="failed to get image registry config"):
        hook.image_registry_available()


@pytest.mark.parametrize("state, expected", [("Managed", True), ("Removed", False), ("Unmanaged", False)])
def test_registry_availability(state, expected):
    assert PodImageSpecWebhook(FakeRegistry(state=state)).image_registry_available() is expected


def test_lookup_passes_through_unmatched_images():
    client = FakeRegistry(state="Removed")
    hook = PodImageSpecWebhook(client)
    assert hook.lookup_image_stream_tag("ubuntu:latest") == "ubuntu:latest"
    assert client.lookups == []


def test_lookup_resolves_image_stream_tag():
    client = FakeRegistry(state="Removed", tags={("openshift", "cli:latest"): SOURCE_IMAGE})
    hook = PodImageSpecWebhook(client)
    assert hook.lookup_image_stream_tag(CLI_IMAGE) == SOURCE_IMAGE
    assert client.lookups == [("openshift", "cli:latest")]


def test_lookup_failure_raises():
    hook = PodImageSpecWebhook(FakeRegistry(state="Removed"))
    with pytest.raises(RegistryLookupError, match="failed to get image spec"):
        hook.lookup_image_stream_tag(CLI_IMAGE)


def test_mutate_pod_rewrites_all_containers_and_keeps_original():
    client = FakeRegistry(state="Removed", tags={("openshift", "cli:latest"): SOURCE_IMAGE})
    pod = make_pod(containers=[CLI_IMAGE, "ubuntu"], init_containers=[CLI_IMAGE])
    mutated = PodImageSpecWebhook(client).mutate_pod(pod)
    assert [c["image"] for c in mutated["spec"]["containers"]] == [SOURCE_IMAGE, "ubuntu"]
    assert [c["image"] for c in mutated["spec"]["initContainers"]] == [SOURCE_IMAGE]
    assert pod["spec"]["containers"][0]["image"] == CLI_IMAGE


def test_json_patch_replace_add_remove():
    assert json_patch({"a": 1}, {"a": 2}) == [{"op": "replace", "path": "/a", "value": 2}]
    assert json_patch({}, {"b": [1]}) == [{"op": "add", "path": "/b", "value": [1]}]
    assert json_patch({"c": 1}, {}) == [{"op": "remove", "path": "/c"}]
    assert json_patch({"x": 1}, {"x": 1}) == []


def test_json_patch_escapes_and_lists():
    assert json_patch({"a/b~c": 1}, {"a/b~c": 2}) == [
        {"op": "replace", "path": "/a~1b~0c", "value": 2}
    ]
    assert json_patch({"l": [1, 2, 3]}, {"l": [1]}) == [
        {"op": "remove", "path": "/l/2"},
        {"op": "remove", "path": "/l/1"},
    ]
    assert json_patch({"l": [1]}, {"l": [1, 5]}) == [{"op": "add", "path": "/l/1", "value": 5}]


def test_authorized_allows_uninteresting_pod():
    hook = PodImageSpecWebhook(FakeRegistry(state=None))
    response = hook.authorized(make_request(make_pod(containers=["ubuntu"])))
    assert response.allowed is True
    assert response.uid == "uid-1"
    assert response.patches == ()


def test_authorized_allows_when_registry_managed():
    hook = PodImageSpecWebhook(FakeRegistry(state="Managed"))
    response = hook.authorized(make_request(make_pod(containers=[CLI_IMAGE])))
    assert response.allowed is True
    assert response.patches == ()
    assert response.reason == "Image registry is available, no mutation required"


def test_authorized_patches_when_registry_removed():
    client = FakeRegistry(state="Removed", tags={("openshift", "cli:latest"): SOURCE_IMAGE})
    response = PodImageSpecWebhook(client).authorized(make_request(make_pod(containers=[CLI_IMAGE])))
    assert response.allowed is True
    assert response.uid == "uid-1"
    assert response.patch_type == "JSONPatch"
    assert list(response.patches) == [
        {"op": "replace", "path": "/spec/containers/0/image", "value": SOURCE_IMAGE}
    ]


def test_authorized_errors_when_registry_status_unknown():
    response = PodImageSpecWebhook(FakeRegistry(state=None)).authorized(
        make_request(make_pod(containers=[CLI_IMAGE]))
    )
    assert response.allowed is False
    assert response.code == 500


def test_authorized_errors_when_tag_missing():
    response = PodImageSpecWebhook(FakeRegistry(state="Removed")).authorized(
        make_request(make_pod(containers=[CLI_IMAGE]))
    )
    assert response.allowed is False
    assert response.code == 500
    assert "failed to get image spec" in response.reason


def test_authorized_bad_object_is_bad_request():
    response = PodImageSpecWebhook(FakeRegistry(state="Managed")).authorized(make_request("not json"))
    assert response.allowed is False
    assert response.code == 400


def test_authorized_without_client_is_bad_request():
    response = PodImageSpecWebhook(None).authorized(make_request(make_pod(containers=[CLI_IMAGE])))
    assert response.allowed is False
    assert response.code == 400
    assert response.uid == "uid-1"


def test_validate():
    hook = PodImageSpecWebhook(FakeRegistry())
    assert hook.validate(make_request({}, username="alice")) is True
    assert hook.validate(make_request({}, username="")) is False
    assert hook.validate(make_request({}, kind="Node")) is False


def test_webhook_settings():
    hook = PodImageSpecWebhook(FakeRegistry())
    assert hook.uri == "/podimagespec-mutation"
    assert hook.classic_enabled is False
    assert hook.hypershift_enabled is True
    assert hook.timeout_seconds == 2
    assert hook.rules[0].operations == (Operation.CREATE,)