"""Webhook that keeps customers from managing PrometheusRules in managed namespaces."""

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

WEBHOOK_NAME = "prometheusrule-validation"

_ALLOWED_USERS = frozenset({"kube:admin", "system:admin", "backplane-cluster-admin"})
_SRE_ADMIN_GROUPS = ("system:serviceaccounts:openshift-backplane-srep",)
_PRIVILEGED_LABELS: Mapping[str, str] = {"app.kubernetes.io/name": "stackrox"}

# Partially managed namespaces in which customers may still define PrometheusRules.
_PRIVILEGED_NAMESPACES_ALLOWED = frozenset(
    {"openshift-customer-monitoring", "openshift-user-workload-monitoring"}
)

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


def has_privileged_label(labels: Mapping[str, Any]) -> bool:
    """Whether the labels carry one of the privileged label values."""
    return any(labels.get(key) == value for key, value in _PRIVILEGED_LABELS.items())


def _namespace_and_labels(rule: Mapping[str, Any]) -> tuple[str, Mapping[str, Any]]:
    metadata = rule.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise DecodeError("metadata must be an object")
    namespace = metadata.get("namespace") or ""
    if not isinstance(namespace, str):
        raise DecodeError("metadata.namespace must be a string")
    labels = metadata.get("labels") or {}
    if not isinstance(labels, dict):
        raise DecodeError("metadata.labels must be an object")
    return namespace, labels


class PrometheusRuleWebhook(Webhook):
    """Denies PrometheusRule changes in managed namespaces to unprivileged users."""

    name = WEBHOOK_NAME
    doc = "Managed OpenShift Customers may not create PrometheusRule in namespaces managed by Red Hat."
    kind = "PrometheusRule"
    rules = (
        Rule(
            operations=(Operation.CREATE, Operation.UPDATE, Operation.DELETE),
            api_groups=("monitoring.coreos.com",),
            api_versions=("*",),
            resources=("prometheusrules",),
            scope=Scope.NAMESPACED,
        ),
    )
    timeout_seconds = 2

    def __init__(self, policy: NamespacePolicy) -> None:
        self.policy = policy

    def _render_rule(self, request: AdmissionRequest) -> dict[str, Any]:
        if request.old_object:
            return request.decode_old_object()
        return request.decode_object()

    def authorized(self, request: AdmissionRequest) -> AdmissionResponse:
        try:
            namespace, labels = _namespace_and_labels(self._render_rule(request))
        except DecodeError as exc:
            log.error("Couldn't render a PrometheusRule from the incoming request: %s", exc)
            return AdmissionResponse.errored_with(400, exc, request.uid)

        if (
            self.policy.is_privileged_namespace(namespace)
            and namespace not in _PRIVILEGED_NAMESPACES_ALLOWED
        ):
            log.info("%s operation detected on managed namespace: %s", request.operation.value, namespace)
            if is_allowed_user(request):
                return AdmissionResponse.allowed_with(
                    "User can do operations on PrometheusRules", request.uid
                )
            if any(self.policy.is_privileged_service_account_group(g) for g in request.groups):
                return AdmissionResponse.allowed_with(
                    "Privileged service accounts do operations on PrometheusRules", request.uid
                )
            if has_privileged_label(labels):
                return AdmissionResponse.allowed_with(
                    "PrometheusRules with privileged labels can be modified", request.uid
                )
            return AdmissionResponse.denied_with(
                f"Prevented from accessing Red Hat managed resources. {_SUPPORT_NOTE}", request.uid
            )

        log.info("Allowing access")
        return AdmissionResponse.allowed_with("Non managed namespace", request.uid)

    def validate(self, request: AdmissionRequest) -> bool:
        return super().validate(request)