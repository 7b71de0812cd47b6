"""Provider registry.

The single place where provider names are validated and turned into
configured ``VideoProviderInterface`` instances.
"""

import logging
from typing import Optional, Type, Union

import httpx

from videohost.core.config import Settings, settings
from videohost.modules.provider.errors import UnsupportedProviderError
from videohost.modules.provider.interface import ProviderName, VideoProviderInterface
from videohost.modules.provider.providers import MuxProvider, VimeoProvider

logger = logging.getLogger(__name__)


ProviderEntry = Union[Type[VideoProviderInterface], VideoProviderInterface]


class ProviderRegistry:
    """Registry of video provider implementations.

    Names are matched case-insensitively. Each provider is constructed from
    settings on first use and reused afterwards, so credentials are read
    once per registry.
    """

    _default_providers: dict[str, Type[VideoProviderInterface]] = {
        ProviderName.MUX.value: MuxProvider,
        ProviderName.VIMEO.value: VimeoProvider,
    }

    def __init__(
        self,
        config: Settings = settings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.client = client
        self._providers: dict[str, ProviderEntry] = dict(self._default_providers)
        self._instances: dict[str, VideoProviderInterface] = {}

    @staticmethod
    def normalize(name: Optional[str]) -> str:
        return (name or "").strip().lower()

    def resolve(self, name: Optional[str] = None) -> VideoProviderInterface:
        """Get the provider for a name.

        Args:
            name: Provider name; the configured default when omitted

        Returns:
            Configured provider instance

        Raises:
            UnsupportedProviderError: If the name is not registered
        """
        key = self.normalize(name if name is not None else self.config.DEFAULT_PROVIDER)

        if key in self._instances:
            return self._instances[key]

        entry = self._providers.get(key)
        if entry is None:
            raise UnsupportedProviderError(
                f"Unsupported provider: {name!r}. "
                f"Supported providers: {', '.join(self.supported_providers())}",
                provider=name,
                details={"supported": self.supported_providers()},
            )

        if isinstance(entry, VideoProviderInterface):
            instance = entry
        else:
            instance = entry.from_settings(self.config, client=self.client)
            logger.debug(f"Constructed {key} provider")

        self._instances[key] = instance
        return instance

    def register(self, name: str, provider: ProviderEntry) -> None:
        """Register a provider implementation class or a ready instance.

        Args:
            name: Provider identifier
            provider: Provider class (built with ``from_settings``) or instance
        """
        key = self.normalize(name)
        self._providers[key] = provider
        self._instances.pop(key, None)

    def supported_providers(self) -> list[str]:
        """Get list of supported provider identifiers."""
        return sorted(self._providers.keys())

    def is_supported(self, name: Optional[str]) -> bool:
        return self.normalize(name) in self._providers
