"""Capability registry: resources, resource templates, tools and prompts.

Each namespace maps a unique name (or URI) to a spec carrying the handler
and the pydantic model its arguments are validated against. Templates
match concrete URIs such as ``mongodb://collection/users/schema`` against
``mongodb://collection/{name}/schema`` and bind the placeholders.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import quote, unquote

from mcp.types import (
    GetPromptResult,
    Prompt,
    PromptArgument,
    Resource,
    ResourceTemplate,
    TextContent,
    Tool,
    ToolAnnotations,
)
from pydantic import BaseModel, ValidationError

if TYPE_CHECKING:
    from .dispatcher import HandlerContext

ModelT = TypeVar("ModelT", bound=BaseModel)

ResourceHandler = Callable[["HandlerContext"], Awaitable[str]]
TemplateHandler = Callable[..., Awaitable[str]]
Enumerator = Callable[["HandlerContext"], Awaitable[list[Resource]]]
Completer = Callable[["HandlerContext", str], Awaitable[list[str]]]
ToolHandler = Callable[[Any, "HandlerContext"], Awaitable["str | list[TextContent]"]]
PromptHandler = Callable[[Any, "HandlerContext"], Awaitable[GetPromptResult]]

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


class DuplicateCapabilityError(ValueError):
    """A capability name or URI was registered twice."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"Duplicate {kind}: {name}")
        self.kind = kind
        self.name = name


class CapabilityNotFoundError(LookupError):
    """No capability is registered under the requested name or URI."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"Unknown {kind}: {name}")
        self.kind = kind
        self.name = name


class ArgumentValidationError(ValueError):
    """Arguments failed validation against a capability's model.

    Attributes:
        field: Dotted path of the first offending field.
        errors: Pydantic error details for every failure.
    """

    def __init__(self, capability: str, field: str, message: str, errors: list[dict[str, Any]]) -> None:
        super().__init__(f"Invalid arguments for {capability}: '{field}' {message}")
        self.capability = capability
        self.field = field
        self.errors = errors


def validate_arguments(
    model: type[ModelT], arguments: dict[str, Any] | None, capability: str = "request"
) -> ModelT:
    """Validate ``arguments`` against ``model``.

    Raises:
        ArgumentValidationError: Naming the first offending field.
    """
    try:
        return model.model_validate(arguments or {})
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        first = errors[0]
        field_path = ".".join(str(part) for part in first["loc"]) or "arguments"
        raise ArgumentValidationError(
            capability, field_path, first["msg"].lower(), errors
        ) from e


def expand_uri(uri_template: str, **bindings: str) -> str:
    """Fill ``uri_template``, percent-encoding each value so matching decodes it back."""
    return _PLACEHOLDER.sub(lambda m: quote(bindings[m.group(1)], safe=""), uri_template)


def deref_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Inline ``$ref``/``$defs`` so clients get a flat JSON Schema."""
    defs = schema.get("$defs", {})
    if not defs:
        return schema

    result = {k: v for k, v in schema.items() if k != "$defs"}

    def _resolve(node: Any, seen: frozenset[str] = frozenset()) -> Any:
        if isinstance(node, dict):
            if "$ref" in node:
                ref_name = node["$ref"].rsplit("/", 1)[-1]
                if ref_name in seen:
                    return {"type": "object"}
                if ref_name in defs:
                    return _resolve(dict(defs[ref_name]), seen | {ref_name})
                return node
            return {k: _resolve(v, seen) for k, v in node.items()}
        if isinstance(node, list):
            return [_resolve(item, seen) for item in node]
        return node

    return _resolve(result)


# ---------------------------------------------------------------------------
# Specs
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ResourceSpec:
    """A resource at a fixed URI."""

    uri: str
    name: str
    description: str
    handler: ResourceHandler
    mime_type: str = "text/plain"

    def descriptor(self) -> Resource:
        return Resource(
            uri=self.uri,
            name=self.name,
            description=self.description,
            mimeType=self.mime_type,
        )


@dataclass(slots=True)
class ResourceTemplateSpec:
    """A family of resources addressed by a URI template.

    Attributes:
        enumerate: Lists concrete instances for ``resources/list``.
        completers: Per-placeholder autocompletion callbacks.
    """

    uri_template: str
    name: str
    description: str
    handler: TemplateHandler
    enumerate: Enumerator | None = None
    completers: dict[str, Completer] = field(default_factory=dict)
    mime_type: str = "text/plain"
    _pattern: re.Pattern[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        parts = []
        position = 0
        for match in _PLACEHOLDER.finditer(self.uri_template):
            parts.append(re.escape(self.uri_template[position:match.start()]))
            parts.append(f"(?P<{match.group(1)}>[^/?#]+)")
            position = match.end()
        parts.append(re.escape(self.uri_template[position:]))
        self._pattern = re.compile("".join(parts))
        unknown = set(self.completers) - set(self.placeholders)
        if unknown:
            raise ValueError(
                f"Completers for unknown placeholders in {self.uri_template}: "
                f"{sorted(unknown)}"
            )

    @property
    def placeholders(self) -> list[str]:
        return _PLACEHOLDER.findall(self.uri_template)

    def match(self, uri: str) -> dict[str, str] | None:
        """Bindings for ``uri`` (URL-decoded), or None if it does not match."""
        match = self._pattern.fullmatch(uri)
        if match is None:
            return None
        return {k: unquote(v) for k, v in match.groupdict().items()}

    def descriptor(self) -> ResourceTemplate:
        return ResourceTemplate(
            uriTemplate=self.uri_template,
            name=self.name,
            description=self.description,
            mimeType=self.mime_type,
        )


@dataclass(slots=True)
class ToolSpec:
    """An invokable operation.

    Attributes:
        destructive: Gated behind the confirmation handshake (fully or for
            some argument values).
    """

    name: str
    description: str
    arguments: type[BaseModel]
    handler: ToolHandler
    destructive: bool = False

    def descriptor(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=deref_schema(self.arguments.model_json_schema()),
            annotations=ToolAnnotations(destructiveHint=self.destructive),
        )


@dataclass(slots=True)
class PromptSpec:
    """A prompt generator with optional argument autocompletion."""

    name: str
    description: str
    arguments: type[BaseModel]
    handler: PromptHandler
    completers: dict[str, Completer] = field(default_factory=dict)

    def descriptor(self) -> Prompt:
        arguments = [
            PromptArgument(
                name=info.alias or name,
                description=info.description,
                required=info.is_required(),
            )
            for name, info in self.arguments.model_fields.items()
        ]
        return Prompt(name=self.name, description=self.description, arguments=arguments)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class CapabilityRegistry:
    """Holds every capability a server exposes.

    Lookup order for ``resources/read``: fixed resources by exact URI, then
    templates in registration order; the first structural match wins.
    """

    def __init__(self) -> None:
        self._resources: dict[str, ResourceSpec] = {}
        self._templates: dict[str, ResourceTemplateSpec] = {}
        self._tools: dict[str, ToolSpec] = {}
        self._prompts: dict[str, PromptSpec] = {}

    def add_resource(self, spec: ResourceSpec) -> None:
        if spec.uri in self._resources:
            raise DuplicateCapabilityError("resource", spec.uri)
        self._resources[spec.uri] = spec

    def add_template(self, spec: ResourceTemplateSpec) -> None:
        if spec.uri_template in self._templates:
            raise DuplicateCapabilityError("resource template", spec.uri_template)
        self._templates[spec.uri_template] = spec

    def add_tool(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise DuplicateCapabilityError("tool", spec.name)
        self._tools[spec.name] = spec

    def add_prompt(self, spec: PromptSpec) -> None:
        if spec.name in self._prompts:
            raise DuplicateCapabilityError("prompt", spec.name)
        self._prompts[spec.name] = spec

    @property
    def resources(self) -> list[ResourceSpec]:
        return list(self._resources.values())

    @property
    def templates(self) -> list[ResourceTemplateSpec]:
        return list(self._templates.values())

    @property
    def tools(self) -> list[ToolSpec]:
        return list(self._tools.values())

    @property
    def prompts(self) -> list[PromptSpec]:
        return list(self._prompts.values())

    def resolve_resource(
        self, uri: str
    ) -> tuple[ResourceSpec | ResourceTemplateSpec, dict[str, str]]:
        """Find the resource serving ``uri`` and its placeholder bindings.

        Raises:
            CapabilityNotFoundError: If nothing matches.
        """
        fixed = self._resources.get(uri)
        if fixed is not None:
            return fixed, {}
        for template in self._templates.values():
            bindings = template.match(uri)
            if bindings is not None:
                return template, bindings
        raise CapabilityNotFoundError("resource", uri)

    def template(self, uri_template: str) -> ResourceTemplateSpec:
        try:
            return self._templates[uri_template]
        except KeyError:
            raise CapabilityNotFoundError("resource template", uri_template) from None

    def tool(self, name: str) -> ToolSpec:
        try:
            return self._tools[name]
        except KeyError:
            raise CapabilityNotFoundError("tool", name) from None

    def prompt(self, name: str) -> PromptSpec:
        try:
            return self._prompts[name]
        except KeyError:
            raise CapabilityNotFoundError("prompt", name) from None
