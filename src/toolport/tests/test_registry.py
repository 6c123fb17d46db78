"""Tests for capability definitions and the registry."""

import pytest
from pydantic import ValidationError

from toolport.foundation.core import CapabilityKind, Prompt, Resource, Tool, resource, tool
from toolport.foundation.errors import AmbiguousTemplateError, DuplicateNameError, NotFoundError
from toolport.foundation.registry import CapabilityRegistry


def _resource(name: str, template: str) -> Resource:
    return Resource(name=name, uri_template=template, handler=lambda args, session: name)


class TestCapabilities:
    def test_tool_schema_from_signature(self, registry: CapabilityRegistry) -> None:
        add = registry.lookup_tool("add")
        schema = add.json_schema
        assert set(schema["properties"]) == {"a", "b"}
        assert set(schema["required"]) == {"a", "b"}
        assert add.description == "Add two integers."
        assert add.cacheable

    def test_tool_requires_handler(self) -> None:
        with pytest.raises(ValidationError):
            Tool(name="nothing")

    def test_invalid_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Tool(name=" bad name", handler=lambda a, s: None)

    def test_resource_schema_from_template(self) -> None:
        res = _resource("readme", "docs://{project}/readme")
        assert res.json_schema["required"] == ["project"]
        assert res.cacheable

    def test_prompt_schema_from_placeholders(self) -> None:
        greet = Prompt(name="greet", template="Hello {name}, welcome to {place}")
        assert set(greet.json_schema["required"]) == {"name", "place"}

    def test_prompt_needs_template_or_handler(self) -> None:
        with pytest.raises(ValidationError):
            Prompt(name="empty")

    def test_derived_scope(self, registry: CapabilityRegistry) -> None:
        assert registry.lookup_tool("add").required_scopes == ("tools:call:add",)
        assert registry.lookup_prompt("greet").required_scopes == ("prompts:get:greet",)

    def test_explicit_scopes_override(self) -> None:
        @tool(scopes=("admin:*",))
        def wipe() -> None:
            pass

        assert wipe.required_scopes == ("admin:*",)

    def test_describe_resource(self, registry: CapabilityRegistry) -> None:
        entry = registry.resolve_resource("docs://acme/readme")[0].describe()
        assert entry["uri_template"] == "docs://{project}/readme"
        assert entry["mime_type"] == "text/markdown"


class TestRegistration:
    def test_duplicate_name_rejected(self, registry: CapabilityRegistry) -> None:
        @tool()
        def add(x: int) -> int:
            return x

        before = registry.snapshot
        with pytest.raises(DuplicateNameError):
            registry.register(add)
        assert registry.snapshot is before
        assert set(registry.lookup_tool("add").json_schema["required"]) == {"a", "b"}

    def test_same_name_in_different_catalogs(self) -> None:
        registry = CapabilityRegistry()
        registry.register(Tool(name="status", handler=lambda a, s: "tool"))
        registry.register(Prompt(name="status", template="Status?"))
        assert len(registry) == 2

    def test_ambiguous_template_rejected(self) -> None:
        registry = CapabilityRegistry([_resource("readme", "docs://{project}/readme")])
        with pytest.raises(AmbiguousTemplateError):
            registry.register(_resource("other", "docs://{name}/readme"))
        assert [r.name for r in registry.list_all(CapabilityKind.RESOURCES)] == ["readme"]

    def test_overlap_with_longer_prefix_allowed(self) -> None:
        registry = CapabilityRegistry([_resource("generic", "docs://{project}/readme")])
        registry.register(_resource("acme", "docs://acme/readme"))

        res, bindings = registry.resolve_resource("docs://acme/readme")
        assert res.name == "acme"
        assert bindings == {}
        res, bindings = registry.resolve_resource("docs://other/readme")
        assert res.name == "generic"
        assert bindings == {"project": "other"}

    def test_unregister(self, registry: CapabilityRegistry) -> None:
        assert registry.unregister(CapabilityKind.TOOLS, "echo")
        assert not registry.unregister(CapabilityKind.TOOLS, "echo")
        with pytest.raises(NotFoundError):
            registry.lookup_tool("echo")

    def test_replace_swaps_in_one_step(self, registry: CapabilityRegistry) -> None:
        @tool(name="echo")
        def shout(text: str) -> str:
            return text.upper()

        version = registry.snapshot.version
        previous = registry.replace(shout)
        assert previous is not None and previous.name == "echo"
        assert registry.lookup_tool("echo") is shout
        assert registry.snapshot.version == version + 1

    def test_list_preserves_insertion_order(self, registry: CapabilityRegistry) -> None:
        names = [c.name for c in registry.list_all(CapabilityKind.TOOLS)]
        assert names == ["add", "echo", "leak", "boom", "slow"]

    def test_snapshot_unchanged_by_later_registration(self, registry: CapabilityRegistry) -> None:
        snap = registry.snapshot
        registry.register(Tool(name="late", handler=lambda a, s: None))
        assert "late" not in snap.tools
        assert "late" in registry.snapshot.tools


class TestLookup:
    def test_unknown_tool(self, registry: CapabilityRegistry) -> None:
        with pytest.raises(NotFoundError):
            registry.lookup_tool("missing")

    def test_unmatched_uri(self, registry: CapabilityRegistry) -> None:
        with pytest.raises(NotFoundError):
            registry.resolve_resource("docs://acme/license")

    def test_resource_decorator_bindings(self) -> None:
        @resource("files://{+path}")
        def read(path: str) -> str:
            return path

        registry = CapabilityRegistry([read])
        res, bindings = registry.resolve_resource("files://a/b.txt")
        assert res is read
        assert bindings == {"path": "a/b.txt"}


class TestChangeNotification:
    def test_listeners_receive_kind(self, registry: CapabilityRegistry) -> None:
        seen: list[CapabilityKind] = []
        unsubscribe = registry.subscribe(seen.append)

        registry.register(Prompt(name="bye", template="Bye {name}"))
        registry.unregister(CapabilityKind.TOOLS, "echo")
        unsubscribe()
        registry.register(Tool(name="after", handler=lambda a, s: None))

        assert seen == [CapabilityKind.PROMPTS, CapabilityKind.TOOLS]

    def test_failing_listener_does_not_block_registration(self, registry: CapabilityRegistry) -> None:
        def broken(kind: CapabilityKind) -> None:
            raise RuntimeError("listener bug")

        registry.subscribe(broken)
        registry.register(Tool(name="fine", handler=lambda a, s: None))
        assert registry.lookup_tool("fine").name == "fine"
