"""Tests for tool registry functionality."""

from typing import Optional

import pytest
from pydantic import BaseModel, Field, ValidationError

from unifi_audit.tool_registry import ToolRegistry, get_registry, schema_parameters, tool


class SiteInput(BaseModel):
    """Sample input schema for testing."""
    site_id: str = Field(description="Site to audit")
    include_dns: bool = Field(default=True, description="Include DNS findings")


class ScoreOutput(BaseModel):
    """Sample output schema for testing."""
    score: int = Field(description="Security score")
    label: str = Field(default="", description="Score label")


def make_registry(handler, name="audit.score"):
    registry = ToolRegistry()
    registry.register(
        name=name,
        description="Score a site",
        input_schema=SiteInput,
        output_schema=ScoreOutput,
        handler=handler,
        tags=["audit"],
    )
    return registry


class TestToolRegistry:
    """Tests for ToolRegistry class."""

    def test_register_tool(self):
        """Test registering a new tool."""
        async def handler(params: SiteInput) -> ScoreOutput:
            return ScoreOutput(score=100)

        registry = make_registry(handler)

        definition = registry.get("audit.score")
        assert definition is not None
        assert definition.description == "Score a site"
        assert definition.tags == ["audit"]
        assert registry.get("missing") is None

    def test_register_duplicate_raises(self):
        """Test that registering duplicate tool raises error."""
        async def handler(params: SiteInput) -> ScoreOutput:
            return ScoreOutput(score=100)

        registry = make_registry(handler)

        with pytest.raises(ValueError, match="already registered"):
            registry.register(
                name="audit.score",
                description="Duplicate",
                input_schema=SiteInput,
                output_schema=ScoreOutput,
                handler=handler,
            )

    def test_manifest_parameters(self):
        """Test the manifest flattens input and output schemas."""
        async def handler(params: SiteInput) -> ScoreOutput:
            return ScoreOutput(score=100)

        manifest = make_registry(handler).get_manifest()

        assert len(manifest) == 1
        entry = manifest[0]
        assert entry["name"] == "audit.score"
        params = {p["name"]: p for p in entry["parameters"]}
        assert params["site_id"] == {
            "name": "site_id", "type": "string", "description": "Site to audit", "required": True,
        }
        assert params["include_dns"]["type"] == "boolean"
        assert params["include_dns"]["required"] is False
        assert params["include_dns"]["default"] is True
        assert [p["name"] for p in entry["returns"]] == ["score", "label"]

    @pytest.mark.asyncio
    async def test_execute_async_handler(self):
        """Test executing an async handler returning a model."""
        async def handler(params: SiteInput) -> ScoreOutput:
            return ScoreOutput(score=90 if params.include_dns else 95, label=params.site_id)

        result = await make_registry(handler).execute("audit.score", {"site_id": "default", "include_dns": False})
        assert result == {"score": 95, "label": "default"}

    @pytest.mark.asyncio
    async def test_execute_sync_handler_dict_result(self):
        """Test a sync handler's dict result is validated against the output schema."""
        def handler(params: SiteInput):
            return {"score": 70}

        result = await make_registry(handler).execute("audit.score", {"site_id": "default"})
        assert result == {"score": 70, "label": ""}

    @pytest.mark.asyncio
    async def test_execute_nonexistent_raises(self):
        """Test executing nonexistent tool raises error."""
        with pytest.raises(ValueError, match="not found"):
            await ToolRegistry().execute("nonexistent.tool", {})

    @pytest.mark.asyncio
    async def test_execute_with_invalid_params(self):
        """Test executing with invalid params raises validation error."""
        async def handler(params: SiteInput) -> ScoreOutput:
            return ScoreOutput(score=100)

        with pytest.raises(ValidationError):
            await make_registry(handler).execute("audit.score", {"include_dns": False})


class TestToolDecorator:
    """Tests for @tool decorator."""

    def test_decorator_registers_tool(self):
        """Test that decorator registers the tool in the global registry."""
        registry = get_registry()
        initial_count = len(registry.list_tools())

        @tool(
            name="decorator.audit_test",
            description="Decorator test tool",
            input_schema=SiteInput,
            output_schema=ScoreOutput,
            tags=["decorator"]
        )
        async def decorated_handler(params: SiteInput) -> ScoreOutput:
            return ScoreOutput(score=1)

        assert registry.get("decorator.audit_test").handler is decorated_handler
        assert len(registry.list_tools()) == initial_count + 1

    def test_audit_tools_registered(self):
        """Test importing the tools module registers every audit operation."""
        from unifi_audit import tools  # noqa: F401

        names = {t.name for t in get_registry().list_tools()}
        assert {
            "unifi_security_audit",
            "unifi_audit_summary",
            "unifi_audit_dismiss_issue",
            "unifi_audit_restore_issue",
            "unifi_audit_clear_dismissed",
            "unifi_audit_list_issues",
        } <= names


class TestManifestFiltering:
    """Tests for tag filtering and schema flattening."""

    def test_list_tools_by_tag(self):
        """Test only tools carrying the tag are listed."""
        async def handler(params: SiteInput) -> ScoreOutput:
            return ScoreOutput(score=100)

        registry = make_registry(handler)
        registry.register("other.tool", "Other", SiteInput, ScoreOutput, handler, tags=["other"])

        assert [t.name for t in registry.list_tools("audit")] == ["audit.score"]
        assert [t["name"] for t in registry.get_manifest("other")] == ["other.tool"]
        assert registry.get_manifest("missing") == []
        assert len(registry.get_manifest()) == 2

    def test_optional_field_type(self):
        """Test optional fields report their underlying type."""
        class OptionalInput(BaseModel):
            site_id: Optional[str] = Field(default=None, description="Site to audit")

        params = schema_parameters(OptionalInput)

        assert params == [{
            "name": "site_id", "type": "string", "description": "Site to audit",
            "required": False, "default": None,
        }]
