"""Admission webhooks for nodes, pods, NetworkPolicies, PrometheusRules and pod image specs on managed clusters."""

__version__ = "0.1.0"

__all__ = [
    "admission",
    "node",
    "pod",
    "networkpolicies",
    "prometheusrule",
    "podimagespec",
]