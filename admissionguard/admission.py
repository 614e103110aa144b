"""Core admission types: requests, responses, rules, namespace policy and the webhook registry."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Iterator, Mapping, Sequence


class Operation(str, Enum):
    """Operation carried by an admission request or matched by a rule."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"
    ALL = "*"


class FailurePolicy(str, Enum):
    """How the API server reacts when the webhook cannot be reached."""

    IGNORE = "Ignore"
    FAIL = "Fail"


class MatchPolicy(str, Enum):
    """How incoming requests are matched against the webhook's rules."""

    EXACT = "Exact"
    EQUIVALENT = "Equivalent"


class SideEffectClass(str, Enum):
    """Side effects a webhook may have when it is called."""

    NONE = "None"
    NONE_ON_DRY_RUN = "NoneOnDryRun"
    SOME = "Some"
    UNKNOWN = "Unknown"


class Scope(str, Enum):
    """Resource scope a rule applies to."""

    CLUSTER = "Cluster"
    NAMESPACED = "Namespaced"
    ALL = "*"


class DecodeError(ValueError):
    """Raised when an object in an admission request cannot be decoded."""


@dataclass(frozen=True)
class Rule:
    """A set of operations on resources that triggers a webhook."""

    operations: tuple[Operation, ...]
    api_groups: tuple[str, ...]
    api_versions: tuple[str, ...]
    resources: tuple[str, ...]
    scope: Scope = Scope.ALL


def _decode(raw: bytes | str | None) -> dict[str, Any]:
    if not raw:
        raise DecodeError("there is no content to decode")
    try:
        value = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecodeError(f"invalid JSON object: {exc}") from exc
    if not isinstance(value, dict):
        raise DecodeError("expected a JSON object")
    return value


@dataclass
class AdmissionRequest:
    """An admission review request as received by a webhook."""

    uid: str
    kind: str
    operation: Operation
    username: str
    groups: Sequence[str] = ()
    namespace: str = ""
    name: str = ""
    object: bytes | str | None = None
    old_object: bytes | str | None = None

    def __post_init__(self) -> None:
        self.operation = Operation(self.operation)
        self.groups = tuple(self.groups)

    def decode_object(self) -> dict[str, Any]:
        """Decode the raw object carried by the request."""
        return _decode(self.object)

    def decode_old_object(self) -> dict[str, Any]:
        """Decode the raw previous version of the object."""
        return _decode(self.old_object)


@dataclass(frozen=True)
class AdmissionResponse:
    """The verdict a webhook returns for a request."""

    allowed: bool
    uid: str = ""
    code: int = 200
    reason: str = ""
    patches: tuple[Mapping[str, Any], ...] = ()
    patch_type: str | None = None

    @classmethod
    def allowed_with(cls, reason: str, uid: str) -> AdmissionResponse:
        return cls(allowed=True, uid=uid, code=200, reason=reason)

    @classmethod
    def denied_with(cls, reason: str, uid: str) -> AdmissionResponse:
        return cls(allowed=False, uid=uid, code=403, reason=reason)

    @classmethod
    def errored_with(cls, code: int, error: object, uid: str) -> AdmissionResponse:
        return cls(allowed=False, uid=uid, code=code, reason=str(error))


@dataclass(frozen=True)
class NamespacePolicy:
    """Regular expressions naming managed namespaces and privileged service account groups."""

    privileged_namespaces: tuple[str, ...] = ()
    privileged_service_account_groups: tuple[str, ...] = ()
    _namespace_res: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)
    _group_res: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "privileged_namespaces", tuple(self.privileged_namespaces))
        object.__setattr__(
            self, "privileged_service_account_groups", tuple(self.privileged_service_account_groups)
        )
        object.__setattr__(self, "_namespace_res", tuple(map(re.compile, self.privileged_namespaces)))
        object.__setattr__(
            self, "_group_res", tuple(map(re.compile, self.privileged_service_account_groups))
        )

    def is_privileged_namespace(self, namespace: str) -> bool:
        return any(pattern.search(namespace) for pattern in self._namespace_res)

    def is_privileged_service_account_group(self, group: str) -> bool:
        return any(pattern.search(group) for pattern in self._group_res)


class Webhook(ABC):
    """Base class for admission webhooks."""

    name: ClassVar[str]
    doc: ClassVar[str] = ""
    kind: ClassVar[str | None] = None
    rules: ClassVar[tuple[Rule, ...]] = ()
    timeout_seconds: ClassVar[int] = 2
    failure_policy: ClassVar[FailurePolicy] = FailurePolicy.IGNORE
    match_policy: ClassVar[MatchPolicy] = MatchPolicy.EQUIVALENT
    side_effects: ClassVar[SideEffectClass] = SideEffectClass.NONE
    object_selector: ClassVar[Mapping[str, Any] | None] = None
    classic_enabled: ClassVar[bool] = True
    hypershift_enabled: ClassVar[bool] = False

    @property
    def uri(self) -> str:
        return "/" + self.name

    @abstractmethod
    def authorized(self, request: AdmissionRequest) -> AdmissionResponse:
        """Decide whether the request is allowed."""

    def validate(self, request: AdmissionRequest) -> bool:
        """Whether the request is one this webhook can judge."""
        if not request.username:
            return False
        return self.kind is None or request.kind == self.kind


WebhookFactory = Callable[[], Webhook]


class WebhookRegistry:
    """Maps webhook names to factories producing them."""

    def __init__(self) -> None:
        self._factories: dict[str, WebhookFactory] = {}

    def register(self, name: str, factory: WebhookFactory) -> None:
        self._factories[name] = factory

    def create(self, name: str) -> Webhook:
        try:
            factory = self._factories[name]
        except KeyError:
            raise KeyError(f"no webhook registered as {name!r}") from None
        return factory()

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __len__(self) -> int:
        return len(self._factories)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())