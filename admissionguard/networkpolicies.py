"""Webhook that keeps customers from managing NetworkPolicies in managed namespaces."""

from __future__ import annotations

import logging
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

WEBHOOK_NAME = "networkpolicies-validation"

_ALLOWED_USERS = frozenset({"system:admin", "backplane-cluster-admin"})
_SRE_ADMIN_GROUPS = ("system:serviceaccounts:openshift-backplane-srep",)
_INGRESS_NAMESPACE = "openshift-ingress"
_INGRESS_LABEL = "ingresscontroller.operator.openshift.io/deployment-ingresscontroller"

_SUPPORT_NOTE = (
    "This is in an effort to prevent harmful actions that may cause unintended consequences "
    "or affect the stability of the cluster. If you have any questions about this, please "
    "reach out to Red Hat support."
)

log = logging.getLogger(WEBHOOK_NAME)


def is_allowed_user(request: AdmissionRequest) -> bool:
    """Whether the user or one of its groups may operate in managed namespaces."""
    if request.username in _ALLOWED_USERS:
        return True
    return any(group in request.groups for group in _SRE_ADMIN_GROUPS)


def _namespace_and_pod_selector_labels(policy: Mapping[str, Any]) -> tuple[str, Mapping[str, Any]]:
    metadata = policy.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise DecodeError("metadata must be an object")
    namespace = metadata.get("namespace") or ""
    if not isinstance(namespace, str):
        raise DecodeError("metadata.namespace must be a string")
    spec = policy.get("spec") or {}
    if not isinstance(spec, dict):
        raise DecodeError("spec must be an object")
    selector = spec.get("podSelector") or {}
    if not isinstance(selector, dict):
        raise DecodeError("spec.podSelector must be an object")
    labels = selector.get("matchLabels") or {}
    if not isinstance(labels, dict):
        raise DecodeError("spec.podSelector.matchLabels must be an object")
    return namespace, labels


class NetworkPolicyWebhook(Webhook):
    """Denies NetworkPolicy changes in managed namespaces and on the default ingress."""

    name = WEBHOOK_NAME
    doc = "Managed OpenShift Customers may not create NetworkPolicies in namespaces managed by Red Hat."
    kind = "NetworkPolicy"
    rules = (
        Rule(
            operations=(Operation.CREATE, Operation.UPDATE, Operation.DELETE),
            api_groups=("networking.k8s.io",),
            api_versions=("*",),
            resources=("networkpolicies",),
            scope=Scope.NAMESPACED,
        ),
    )
    timeout_seconds = 2

    def __init__(self, policy: NamespacePolicy) -> None:
        self.policy = policy

    def _is_allowed_namespace(self, namespace: str) -> bool:
        return not self.policy.is_privileged_namespace(namespace) or namespace == _INGRESS_NAMESPACE

    def _render_network_policy(self, request: AdmissionRequest) -> dict[str, Any]:
        if request.object:
            return request.decode_object()
        return request.decode_old_object()

    def authorized(self, request: AdmissionRequest) -> AdmissionResponse:
        try:
            namespace, labels = _namespace_and_pod_selector_labels(self._render_network_policy(request))
        except DecodeError as exc:
            log.error("Could not render a NetworkPolicy from the incoming request: %s", exc)
            return AdmissionResponse.errored_with(400, exc, request.uid)

        groups = ", ".join(request.groups)
        if not self._is_allowed_namespace(namespace):
            log.info("%s operation detected on managed namespace: %s", request.operation.value, namespace)
            if is_allowed_user(request):
                return AdmissionResponse.allowed_with(
                    f"User '{request.username}' in group(s) '{groups}' can operate on NetworkPolicies",
                    request.uid,
                )
            if any(self.policy.is_privileged_service_account_group(g) for g in request.groups):
                return AdmissionResponse.allowed_with(
                    f"Privileged service accounts in group(s) '{groups}' can operate on NetworkPolicies",
                    request.uid,
                )
            return AdmissionResponse.denied_with(
                f"User '{request.username}' prevented from accessing Red Hat managed resources. "
                f"{_SUPPORT_NOTE}",
                request.uid,
            )

        if namespace == _INGRESS_NAMESPACE:
            ingress_name = labels.get(_INGRESS_LABEL)
            if _INGRESS_LABEL not in labels or ingress_name == "default":
                return AdmissionResponse.denied_with(
                    f"User '{request.username}' prevented from creating network policy that may "
                    f"impact default ingress, which is managed by Red Hat. {_SUPPORT_NOTE}",
                    request.uid,
                )

        log.info("Allowing access for %s", request.uid)
        return AdmissionResponse.allowed_with("Non managed namespace", request.uid)

    def validate(self, request: AdmissionRequest) -> bool:
        return super().validate(request)