"""Webhook that keeps customer Pods from tolerating infra and master node taints."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from admissionguard.admission import (
    AdmissionRequest,
    AdmissionResponse,
    DecodeError,
    NamespacePolicy,
    Operation,
    Rule,
    Scope,
    Webhook,
)

WEBHOOK_NAME = "pod-validation"

_UNPRIVILEGED_NAMESPACE_RE = re.compile(r"(openshift-logging|openshift-operators)")

_FORBIDDEN_TOLERATIONS = {
    ("node-role.kubernetes.io/infra", "NoSchedule"):
        "Not allowed to schedule a pod with NoSchedule taint on infra node",
    ("node-role.kubernetes.io/infra", "PreferNoSchedule"):
        "Not allowed to schedule a pod with PreferNoSchedule taint on infra node",
    ("node-role.kubernetes.io/master", "NoSchedule"):
        "Not allowed to schedule a pod with NoSchedule taint on master node",
    ("node-role.kubernetes.io/master", "PreferNoSchedule"):
        "Not allowed to schedule a pod with PreferNoSchedule taint on master node",
}

log = logging.getLogger(WEBHOOK_NAME)


def is_request_privileged(namespace: str, policy: NamespacePolicy) -> bool:
    """Whether a namespace is managed and not one of the customer-usable exceptions."""
    if not policy.is_privileged_namespace(namespace):
        return False
    return _UNPRIVILEGED_NAMESPACE_RE.search(namespace) is None


def _pod_namespace_and_tolerations(pod: Mapping[str, Any]) -> tuple[str, list[Mapping[str, Any]]]:
    metadata = pod.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise DecodeError("metadata must be an object")
    namespace = metadata.get("namespace") or ""
    if not isinstance(namespace, str):
        raise DecodeError("metadata.namespace must be a string")
    spec = pod.get("spec") or {}
    if not isinstance(spec, dict):
        raise DecodeError("spec must be an object")
    tolerations = spec.get("tolerations") or []
    if not isinstance(tolerations, list) or not all(isinstance(t, dict) for t in tolerations):
        raise DecodeError("spec.tolerations must be a list of objects")
    return namespace, tolerations


class PodWebhook(Webhook):
    """Denies tolerations of infra and master taints outside managed namespaces."""

    name = WEBHOOK_NAME
    doc = (
        "Managed OpenShift Customers may use tolerations on Pods that could cause those Pods "
        "to be scheduled on infra or master nodes."
    )
    kind = "Pod"
    rules = (
        Rule(
            operations=(Operation.ALL,),
            api_groups=("v1",),
            api_versions=("*",),
            resources=("pods",),
            scope=Scope.NAMESPACED,
        ),
    )
    timeout_seconds = 1

    def __init__(self, policy: NamespacePolicy) -> None:
        self.policy = policy

    def _render_pod(self, request: AdmissionRequest) -> dict[str, Any]:
        if request.old_object:
            return request.decode_old_object()
        return request.decode_object()

    def authorized(self, request: AdmissionRequest) -> AdmissionResponse:
        try:
            namespace, tolerations = _pod_namespace_and_tolerations(self._render_pod(request))
        except DecodeError as exc:
            log.error("Couldn't render a Pod from the incoming request: %s", exc)
            return AdmissionResponse.errored_with(400, exc, request.uid)

        if not is_request_privileged(namespace, self.policy):
            for toleration in tolerations:
                message = _FORBIDDEN_TOLERATIONS.get((toleration.get("key"), toleration.get("effect")))
                if message is not None:
                    return AdmissionResponse.denied_with(message, request.uid)

        return AdmissionResponse.allowed_with("Allowed to create Pod because of RBAC", request.uid)

    def validate(self, request: AdmissionRequest) -> bool:
        return super().validate(request)