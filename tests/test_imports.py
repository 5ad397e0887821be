"""
Test that the public antcore imports resolve.
"""


def test_top_level_imports():
    import antcore
    from antcore import (
        AgentEngine,
        AntCore,
        ContextCompactor,
        MessageRouter,
        ProviderManager,
        ToolRegistry,
        call_provider_with_fallback,
        tool,
    )

    assert antcore.__version__ == "0.1.0"
    for name in antcore.__all__:
        assert hasattr(antcore, name), name
    assert AgentEngine is not None
    assert AntCore is not None
    assert ContextCompactor is not None
    assert MessageRouter is not None
    assert ProviderManager is not None
    assert ToolRegistry is not None
    assert call_provider_with_fallback is not None
    assert tool is not None


def test_subpackage_imports():
    from antcore.agent import AgentEngine, RunTelemetry, repair_transcript
    from antcore.channels import BaseChannelAdapter, MessageRouter, NormalizedMessage
    from antcore.llm import BaseLLMClient, LiteLLMClient, ProviderManager, resolve_tier_for_intent
    from antcore.server import create_app
    from antcore.tools import ToolPolicy, ToolRegistry, tool

    assert issubclass(LiteLLMClient, BaseLLMClient)
    assert BaseChannelAdapter is not None and NormalizedMessage is not None
    assert MessageRouter is not None and ProviderManager is not None
    assert ToolPolicy is not None and ToolRegistry is not None and tool is not None
    assert AgentEngine is not None and RunTelemetry is not None
    assert callable(create_app)
    assert callable(resolve_tier_for_intent)
    assert callable(repair_transcript)


def test_error_hierarchy():
    from antcore.errors import (
        AntCoreError,
        ContextOverflow,
        MaxIterationsReached,
        NoProviderAvailable,
        ProviderError,
        ToolPolicyDenied,
    )

    for cls in (ContextOverflow, MaxIterationsReached, NoProviderAvailable, ProviderError, ToolPolicyDenied):
        assert issubclass(cls, AntCoreError)
