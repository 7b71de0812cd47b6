"""Property-based tests for provider name resolution.

**Feature: video-upload, Property: Provider Registry Validation**

Tests that:
- Every supported name resolves, case-insensitively, to its provider
- Any other name fails with UnsupportedProviderError
- Providers are constructed once per registry
"""

from hypothesis import given, settings, strategies as st, assume
import pytest

from videohost.core.config import Settings
from videohost.modules.provider.errors import UnsupportedProviderError
from videohost.modules.provider.providers import MuxProvider, VimeoProvider
from videohost.modules.provider.registry import ProviderRegistry


def make_registry(**overrides) -> ProviderRegistry:
    config = Settings(
        MUX_TOKEN_ID="mux-id",
        MUX_TOKEN_SECRET="mux-secret",
        VIMEO_ACCESS_TOKEN="vimeo-token",
        **overrides,
    )
    return ProviderRegistry(config)


class TestProviderRegistry:

    @given(name=st.sampled_from(["mux", "MUX", "Mux", " mux "]))
    @settings(max_examples=20)
    def test_mux_resolves_case_insensitively(self, name: str) -> None:
        provider = make_registry().resolve(name)
        assert isinstance(provider, MuxProvider)
        assert provider.token_id == "mux-id"

    @given(name=st.sampled_from(["vimeo", "VIMEO", "Vimeo"]))
    @settings(max_examples=20)
    def test_vimeo_resolves_case_insensitively(self, name: str) -> None:
        provider = make_registry().resolve(name)
        assert isinstance(provider, VimeoProvider)
        assert provider.access_token == "vimeo-token"

    @given(name=st.text(max_size=20))
    @settings(max_examples=100)
    def test_unknown_names_are_rejected(self, name: str) -> None:
        assume(name.strip().lower() not in ("mux", "vimeo"))

        with pytest.raises(UnsupportedProviderError) as exc_info:
            make_registry().resolve(name)

        assert exc_info.value.status_code == 400
        assert exc_info.value.details["supported"] == ["mux", "vimeo"]

    def test_default_provider_used_when_name_omitted(self) -> None:
        registry = make_registry(DEFAULT_PROVIDER="mux")
        assert isinstance(registry.resolve(), MuxProvider)

    def test_instances_are_reused(self) -> None:
        registry = make_registry()
        assert registry.resolve("vimeo") is registry.resolve("Vimeo")

    def test_registered_instance_is_returned(self, resumable_provider) -> None:
        registry = make_registry()
        registry.register("Fake", resumable_provider)

        assert registry.resolve("fake") is resumable_provider
        assert registry.supported_providers() == ["fake", "mux", "vimeo"]
        assert registry.is_supported("FAKE")

    def test_registering_replaces_cached_instance(self, resumable_provider) -> None:
        registry = make_registry()
        registry.resolve("vimeo")
        registry.register("vimeo", resumable_provider)

        assert registry.resolve("vimeo") is resumable_provider

    def test_registries_do_not_share_registrations(self, resumable_provider) -> None:
        first = make_registry()
        first.register("fake", resumable_provider)

        assert not make_registry().is_supported("fake")
