"""Webhook that keeps customers from altering managed Node objects."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Mapping

from admissionguard.admission import (
    AdmissionRequest,
    AdmissionResponse,
    DecodeError,
    Operation,
    Rule,
    Scope,
    Webhook,
)

WEBHOOK_NAME = "node-validation-osd"

_ADMIN_GROUPS = frozenset({"system:serviceaccounts:openshift-backplane-srep"})
_ADMIN_USERS = frozenset({"backplane-cluster-admin"})

_SUPPORT_NOTE = (
    "This is in an effort to prevent harmful actions that may cause unintended consequences "
    "or affect the stability of the cluster. If you have any questions about this, please "
    "reach out to Red Hat support."
)

_PROTECTED_ROLES = (
    ("node-role.kubernetes.io/infra", "Prevented from modifying Red Hat managed infra nodes."),
    (
        "node-role.kubernetes.io/control-plane",
        "Prevented from modifying Red Hat managed control plane nodes.",
    ),
    ("node-role.kubernetes.io/master", "Prevented from modifying Red Hat managed master nodes."),
)

log = logging.getLogger(WEBHOOK_NAME)


def _node_metadata(node: Mapping[str, Any]) -> tuple[str, Mapping[str, Any]]:
    metadata = node.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise DecodeError("metadata must be an object")
    labels = metadata.get("labels") or {}
    if not isinstance(labels, dict):
        raise DecodeError("metadata.labels must be an object")
    name = metadata.get("name", "")
    return (name if isinstance(name, str) else str(name)), labels


class NodeWebhook(Webhook):
    """Denies customer changes to infra, control plane and master nodes and node deletion."""

    name = WEBHOOK_NAME
    doc = "Managed OpenShift customers may not alter Node objects."
    rules = (
        Rule(
            operations=(Operation.CREATE, Operation.UPDATE, Operation.DELETE),
            api_groups=("",),
            api_versions=("*",),
            resources=("nodes", "nodes/*"),
            scope=Scope.ALL,
        ),
    )
    timeout_seconds = 2

    def __init__(self) -> None:
        self.blocked_requests: Counter[str] = Counter()

    def _block(self, request: AdmissionRequest, reason: str) -> AdmissionResponse:
        self.blocked_requests[request.username] += 1
        return AdmissionResponse.denied_with(reason, request.uid)

    def authorized(self, request: AdmissionRequest) -> AdmissionResponse:
        username = request.username
        if username == "system:unauthenticated":
            log.info("system:unauthenticated made a webhook request. Check RBAC rules")
            return AdmissionResponse.denied_with("Unauthenticated", request.uid)
        if username.startswith("system:"):
            return AdmissionResponse.allowed_with("authenticated system: users are allowed", request.uid)
        if username.startswith("kube:"):
            return AdmissionResponse.allowed_with("kube: users are allowed", request.uid)
        if username in _ADMIN_USERS:
            return AdmissionResponse.allowed_with("Specified admin users are allowed", request.uid)
        if any(group in _ADMIN_GROUPS for group in request.groups):
            return AdmissionResponse.allowed_with("Members of admin groups are allowed", request.uid)

        if request.kind == "Node":
            try:
                # The object is empty on DELETE; the old object holds the node.
                if request.operation is Operation.DELETE:
                    node = request.decode_old_object()
                else:
                    node = request.decode_object()
                node_name, labels = _node_metadata(node)
            except DecodeError as exc:
                log.error("failed to render a Node from the request: %s", exc)
                return AdmissionResponse.errored_with(400, exc, request.uid)

            log.info(
                "Processing request for node=%s operation=%s user=%s",
                node_name,
                request.operation.value,
                username,
            )

            if request.operation is Operation.DELETE:
                return self._block(request, f"Prevented from deleting nodes. {_SUPPORT_NOTE}")

            for label, message in _PROTECTED_ROLES:
                if label in labels:
                    log.info("Denying access to protected node %s", node_name)
                    return self._block(request, f"{message} {_SUPPORT_NOTE}")

            return AdmissionResponse.allowed_with("Allowed to modify worker nodes", request.uid)

        log.info("Unexpectedly denying access for kind %s", request.kind)
        return AdmissionResponse.denied_with(
            f"Prevented from accessing Red Hat managed resources. {_SUPPORT_NOTE}", request.uid
        )

    def validate(self, request: AdmissionRequest) -> bool:
        return request.username != ""