# admissionguard

Admission webhooks that keep customers of a managed cluster away from
resources that the platform operators look after. A webhook takes an
`AdmissionRequest` and decides whether to allow it. It returns an
`AdmissionResponse` that carries the request's UID.

The package has no third-party dependencies.

## Webhooks

| Class | What it guards |
| --- | --- |
| `admissionguard.node.NodeWebhook` | Node deletion, and changes to infra, control-plane and master nodes |
| `admissionguard.pod.PodWebhook` | Pods outside privileged namespaces that tolerate infra or master `NoSchedule`/`PreferNoSchedule` taints |
| `admissionguard.networkpolicies.NetworkPolicyWebhook` | NetworkPolicies in managed namespaces, and policies in `openshift-ingress` that may affect the default ingress controller |
| `admissionguard.prometheusrule.PrometheusRuleWebhook` | PrometheusRules in managed namespaces, apart from the customer monitoring namespaces |
| `admissionguard.podimagespec.PodImageSpecWebhook` | Rewrites internal-registry images in the `openshift` namespace when the image registry is not `Managed` |

Each webhook class has the following attributes, which describe how it
should be registered:

- `name`
- `doc`
- `rules`, a tuple of `Rule`
- `failure_policy`
- `match_policy`
- `side_effects`
- `timeout_seconds`
- `object_selector`
- `classic_enabled`
- `hypershift_enabled`

The `uri` property returns `"/" + name`.

## Namespace policy

A `NamespacePolicy` decides which namespaces count as managed. The pod,
NetworkPolicy and PrometheusRule webhooks each need one. It holds regular
expressions, and each is tried with `re.search`:

```python
from admissionguard.admission import NamespacePolicy

policy = NamespacePolicy(
    privileged_namespaces=(r"^openshift-.*", r"^kube-.*", r"^default$", r"^redhat-.*"),
    privileged_service_account_groups=(r"^system:serviceaccounts:(openshift|redhat)-.*",),
)
policy.is_privileged_namespace("openshift-monitoring")   # True
policy.is_privileged_service_account_group("system:serviceaccounts:openshift-x")  # True
```

## Judging a request

```python
import json

from admissionguard.admission import AdmissionRequest, Operation
from admissionguard.pod import PodWebhook

hook = PodWebhook(policy)
pod = {
    "metadata": {"name": "web", "namespace": "my-project"},
    "spec": {"tolerations": [{"key": "node-role.kubernetes.io/infra", "effect": "NoSchedule"}]},
}
request = AdmissionRequest(
    uid="1234",
    kind="Pod",
    operation=Operation.CREATE,
    username="alice",
    groups=["system:authenticated"],
    namespace="my-project",
    object=json.dumps(pod),
)
if hook.validate(request):
    response = hook.authorized(request)
    print(response.allowed, response.code, response.reason)
```

`validate` reports whether the webhook can judge the request at all. It
needs a non-empty user name. Webhooks that declare a `kind` also need
`request.kind` to match that kind. `NodeWebhook` checks only the user name.

`authorized` returns one of three kinds of response:

- an allowed response with code 200
- a denied response with code 403
- an errored response with code 400 or 500

`AdmissionResponse.allowed_with`, `denied_with` and `errored_with` build
these.

`AdmissionRequest.decode_object` and `decode_old_object` parse the raw JSON.
They raise `DecodeError`, a `ValueError`, when the JSON is empty, invalid,
or not an object. The webhooks catch it and answer with code 400.

`NodeWebhook` counts the requests it blocks, per user, in its
`blocked_requests` counter.

## Registry

`WebhookRegistry` maps names to factories that take no arguments:

```python
from admissionguard.admission import WebhookRegistry
from admissionguard.node import NodeWebhook
from admissionguard.pod import PodWebhook

registry = WebhookRegistry()
registry.register(NodeWebhook.name, NodeWebhook)
registry.register(PodWebhook.name, lambda: PodWebhook(policy))
hook = registry.create("node-validation-osd")
print(registry.names())   # sorted names
```

`create` raises `KeyError` for a name that is not registered.

## Image rewriting

`PodImageSpecWebhook(client)` takes a `RegistryClient` subclass, which you
implement against your cluster API. It has two methods:

- `image_registry_management_state()`
- `image_stream_tag_reference(namespace, name)`

`check_container_image_spec` matches references of the form
`image-registry.openshift-image-registry.svc:5000/<namespace>/<image>:<tag>`
and returns an `ImageSpecMatch`. `pod_contains_internal_openshift_image`
tells you whether any container or init container uses such an image from
the `openshift` namespace.

The webhook does not touch a pod whose images are all outside that
namespace. It also leaves pods alone while the registry is `Managed`.
Otherwise `mutate_pod` resolves every image through its image stream tag.
The response then carries the `json_patch` operations between the original
pod and the rewritten one, with `patch_type` set to `"JSONPatch"`.

When a lookup fails, `RegistryLookupError` is raised, and `authorized`
answers with code 500. If no client was given, `authorized` answers with
code 400.

## What the package does not do

It does not serve HTTP and does not read or write AdmissionReview
documents. You build an `AdmissionRequest` from the incoming review
yourself, and you turn the `AdmissionResponse` into the reply yourself.

It ships no `RegistryClient` that talks to a cluster, and no pre-filled
registry. It does not generate webhook configuration manifests, and it does
not export metrics.

## Tests

```
pip install -e .[test]
pytest
```