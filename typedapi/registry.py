"""
typedapi — Group and API Registries
====================================

What:  HttpApiGroup collects endpoints under a name; HttpApi collects groups
       into the single top-level description of an API.
Why:   The HttpApi value is the one source of truth for dispatch, the OpenAPI
       document and the client.
How:   Frozen value objects. add() returns a new registry with the entry
       appended and fails at construction time on a duplicate id/name.

Example:
    Greetings = (
        HttpApiGroup.make("Greetings")
        .add(HttpApiEndpoint.get("hello-world", "/").add_success(String))
        .add(HttpApiEndpoint.get("catchAll", "/*").add_success(String))
    )
    MyApi = HttpApi.make("MyApi").add(Greetings)
"""

from dataclasses import dataclass, replace
from typing import Iterator, Optional, Tuple

from typedapi.endpoint import HttpApiEndpoint
from typedapi.exceptions import DuplicateIdError


@dataclass(frozen=True)
class HttpApiGroup:
    """
    Named, ordered collection of endpoints.

    Endpoint order matters: the dispatcher tries endpoints in declaration
    order and the first structural match wins.
    """

    name: str
    endpoints: Tuple[HttpApiEndpoint, ...] = ()
    path_prefix: str = ""
    description: Optional[str] = None

    @classmethod
    def make(cls, name: str, description: Optional[str] = None) -> "HttpApiGroup":
        if not name:
            raise ValueError("Group name must not be empty")
        return cls(name=name, description=description)

    def add(self, endpoint: HttpApiEndpoint) -> "HttpApiGroup":
        """
        Return a new group with the endpoint appended.

        Raises:
            DuplicateIdError if the group already has an endpoint with that id
            InvalidEndpointError if the endpoint's path schema misses a parameter
        """
        if endpoint.id in self:
            raise DuplicateIdError("endpoint", endpoint.id, self.name)
        endpoint = endpoint.checked()
        if self.path_prefix:
            endpoint = endpoint.with_prefix(self.path_prefix)
        return replace(self, endpoints=self.endpoints + (endpoint,))

    def prefix(self, path_prefix: str) -> "HttpApiGroup":
        """
        Return a new group whose endpoints (current and future) live under a prefix.
        """
        cleaned = path_prefix.strip("/")
        if not cleaned:
            return self
        return replace(
            self,
            endpoints=tuple(endpoint.with_prefix(cleaned) for endpoint in self.endpoints),
            path_prefix=f"/{cleaned}{self.path_prefix}",
        )

    def endpoint(self, endpoint_id: str) -> HttpApiEndpoint:
        for endpoint in self.endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        raise KeyError(endpoint_id)

    def __contains__(self, endpoint_id: object) -> bool:
        return any(endpoint.id == endpoint_id for endpoint in self.endpoints)

    def __iter__(self) -> Iterator[HttpApiEndpoint]:
        return iter(self.endpoints)

    def __len__(self) -> int:
        return len(self.endpoints)


@dataclass(frozen=True)
class HttpApi:
    """Top-level API description: a name and an ordered sequence of groups."""

    name: str
    groups: Tuple[HttpApiGroup, ...] = ()

    @classmethod
    def make(cls, name: str) -> "HttpApi":
        if not name:
            raise ValueError("API name must not be empty")
        return cls(name=name)

    def add(self, group: HttpApiGroup) -> "HttpApi":
        """
        Return a new API with the group appended.

        Raises:
            DuplicateIdError if a group with the same name is already present
        """
        if group.name in self:
            raise DuplicateIdError("group", group.name, self.name)
        return replace(self, groups=self.groups + (group,))

    def group(self, name: str) -> HttpApiGroup:
        for group in self.groups:
            if group.name == name:
                return group
        raise KeyError(name)

    def iter_endpoints(self) -> Iterator[Tuple[HttpApiGroup, HttpApiEndpoint]]:
        """Every (group, endpoint) pair in declaration order."""
        for group in self.groups:
            for endpoint in group.endpoints:
                yield group, endpoint

    def __contains__(self, name: object) -> bool:
        return any(group.name == name for group in self.groups)

    def __iter__(self) -> Iterator[HttpApiGroup]:
        return iter(self.groups)
