"""Mutating webhook that rewrites internal-registry debug images when the registry is gone."""

from __future__ import annotations

import copy
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from admissionguard.admission import (
    AdmissionRequest,
    AdmissionResponse,
    DecodeError,
    Operation,
    Rule,
    Scope,
    Webhook,
)

WEBHOOK_NAME = "podimagespec-mutation"

_IMAGE_RE = re.compile(
    r"^(image-registry\.openshift-image-registry\.svc:5000/)"
    r"(?P<namespace>\S*)(/)(?P<image>\w*)(:)(?P<tag>\S*)",
    re.ASCII,
)
_CONTAINER_FIELDS = ("containers", "initContainers")
_MANAGED_STATE = "Managed"

log = logging.getLogger(WEBHOOK_NAME)


class RegistryLookupError(LookupError):
    """Raised when the cluster cannot answer a registry or image stream question."""


@dataclass(frozen=True)
class ImageSpecMatch:
    """Result of matching an image reference against the internal registry pattern."""

    matched: bool = False
    namespace: str = ""
    image: str = ""
    tag: str = ""


class RegistryClient(ABC):
    """Access to the cluster objects the webhook needs."""

    @abstractmethod
    def image_registry_management_state(self) -> str:
        """Management state of the cluster image registry config.

        Raises RegistryLookupError when the config cannot be read.
        """

    @abstractmethod
    def image_stream_tag_reference(self, namespace: str, name: str) -> str:
        """The image the tag ``name`` (``image:tag``) in ``namespace`` points at.

        Raises RegistryLookupError when the tag cannot be read.
        """


def check_container_image_spec(imagespec: str) -> ImageSpecMatch:
    """Match an image reference pointing into the internal registry by tag."""
    found = _IMAGE_RE.match(imagespec)
    if found is None:
        return ImageSpecMatch()
    return ImageSpecMatch(
        matched=True,
        namespace=found.group("namespace"),
        image=found.group("image"),
        tag=found.group("tag"),
    )


def _containers(pod: Mapping[str, Any], field_name: str) -> list[dict[str, Any]]:
    spec = pod.get("spec") or {}
    if not isinstance(spec, dict):
        raise DecodeError("spec must be an object")
    containers = spec.get(field_name) or []
    if not isinstance(containers, list) or not all(isinstance(c, dict) for c in containers):
        raise DecodeError(f"spec.{field_name} must be a list of objects")
    return containers


def _images(pod: Mapping[str, Any]) -> Iterator[str]:
    for field_name in _CONTAINER_FIELDS:
        for container in _containers(pod, field_name):
            image = container.get("image") or ""
            if not isinstance(image, str):
                raise DecodeError("container image must be a string")
            yield image


def pod_contains_internal_openshift_image(pod: Mapping[str, Any]) -> bool:
    """Whether any container or init container uses an image from the internal openshift namespace."""
    for image in _images(pod):
        found = check_container_image_spec(image)
        if found.matched and found.namespace == "openshift":
            return True
    return False


def _escape(token: object) -> str:
    return str(token).replace("~", "~0").replace("/", "~1")


def _diff(path: str, old: Any, new: Any, ops: list[dict[str, Any]]) -> None:
    if isinstance(old, dict) and isinstance(new, dict):
        for key in old:
            if key not in new:
                ops.append({"op": "remove", "path": f"{path}/{_escape(key)}"})
        for key, value in new.items():
            child = f"{path}/{_escape(key)}"
            if key in old:
                _diff(child, old[key], value, ops)
            else:
                ops.append({"op": "add", "path": child, "value": copy.deepcopy(value)})
    elif isinstance(old, list) and isinstance(new, list):
        for index, (old_item, new_item) in enumerate(zip(old, new)):
            _diff(f"{path}/{index}", old_item, new_item, ops)
        for index in reversed(range(len(new), len(old))):
            ops.append({"op": "remove", "path": f"{path}/{index}"})
        for index, value in enumerate(new[len(old):], start=len(old)):
            ops.append({"op": "add", "path": f"{path}/{index}", "value": copy.deepcopy(value)})
    elif type(old) is not type(new) or old != new:
        ops.append({"op": "replace", "path": path, "value": copy.deepcopy(new)})


def json_patch(original: Any, modified: Any) -> list[dict[str, Any]]:
    """JSON Patch operations turning ``original`` into ``modified``."""
    ops: list[dict[str, Any]] = []
    _diff("", original, modified, ops)
    return ops


class PodImageSpecWebhook(Webhook):
    """Points pods at the image stream's source image when the internal registry is removed."""

    name = WEBHOOK_NAME
    doc = (
        "OpenShift debugging tools on Managed OpenShift clusters must be available even if "
        "internal image registry is removed."
    )
    kind = "Pod"
    rules = (
        Rule(
            operations=(Operation.CREATE,),
            api_groups=("",),
            api_versions=("v1",),
            resources=("pods",),
            scope=Scope.NAMESPACED,
        ),
    )
    timeout_seconds = 2
    classic_enabled = False
    hypershift_enabled = True

    def __init__(self, client: RegistryClient | None) -> None:
        self.client = client

    def image_registry_available(self) -> bool:
        """Whether the internal image registry is managed, and therefore operational."""
        try:
            state = self.client.image_registry_management_state()
        except Exception as exc:
            raise RegistryLookupError(f"failed to get image registry config: {exc}") from exc
        return state == _MANAGED_STATE

    def lookup_image_stream_tag(self, imagespec: str) -> str:
        """The image an internal registry reference resolves to; other references are returned as is."""
        found = check_container_image_spec(imagespec)
        if not found.matched:
            return imagespec
        try:
            return self.client.image_stream_tag_reference(
                found.namespace, f"{found.image}:{found.tag}"
            )
        except Exception as exc:
            raise RegistryLookupError(f"failed to get image spec: {exc}") from exc

    def mutate_pod(self, pod: Mapping[str, Any]) -> dict[str, Any]:
        """A copy of the pod with every container image resolved through image stream tags."""
        mutated = copy.deepcopy(dict(pod))
        for field_name in _CONTAINER_FIELDS:
            for container in _containers(mutated, field_name):
                image = container.get("image") or ""
                container["image"] = self.lookup_image_stream_tag(image)
        return mutated

    def authorized(self, request: AdmissionRequest) -> AdmissionResponse:
        if self.client is None:
            log.error("No cluster client available for %s", WEBHOOK_NAME)
            return AdmissionResponse.errored_with(400, "no cluster client configured", request.uid)

        try:
            pod = request.decode_object()
            needs_check = pod_contains_internal_openshift_image(pod)
        except DecodeError as exc:
            log.error("couldn't render a Pod from the incoming request: %s", exc)
            return AdmissionResponse.errored_with(400, exc, request.uid)

        if not needs_check:
            return AdmissionResponse.allowed_with("Pod image spec is valid", request.uid)

        try:
            available = self.image_registry_available()
        except RegistryLookupError as exc:
            log.error("failed to check image registry status: %s", exc)
            return AdmissionResponse.errored_with(500, exc, request.uid)

        if available:
            return AdmissionResponse.allowed_with(
                "Image registry is available, no mutation required", request.uid
            )

        try:
            mutated = self.mutate_pod(pod)
        except (RegistryLookupError, DecodeError) as exc:
            log.error("Unable mutate pod: %s", exc)
            return AdmissionResponse.errored_with(500, exc, request.uid)

        patches = tuple(json_patch(pod, mutated))
        return AdmissionResponse(
            allowed=True,
            uid=request.uid,
            code=200,
            patches=patches,
            patch_type="JSONPatch" if patches else None,
        )

    def validate(self, request: AdmissionRequest) -> bool:
        return super().validate(request)


def _encode(pod: Mapping[str, Any]) -> str:
    return json.dumps(pod)