"""Provider registry for dynamic provider loading."""

from typing import Any, Callable, Dict, List, Optional, Type
import structlog

from .completion.base import CompletionProvider
from .stt.base import SpeechCapture
from .tts.base import SpeechSynthesis


logger = structlog.get_logger()


class ProviderRegistry:
    """Registry for managing provider implementations.

    Completion providers are registered as classes. Capture and synthesis
    providers are registered as factories so that audio libraries are only
    imported when a device is actually requested.
    """

    def __init__(self):
        self._completion_providers: Dict[str, Type[CompletionProvider]] = {}
        self._capture_factories: Dict[str, Callable[..., SpeechCapture]] = {}
        self._synthesis_factories: Dict[str, Callable[..., SpeechSynthesis]] = {}
        self._provider_configs: Dict[str, Callable[[], Dict[str, Any]]] = {}

    def register_completion_provider(
        self,
        name: str,
        provider_class: Type[CompletionProvider],
        config_getter: Callable[[], Dict[str, Any]] = None,
    ) -> None:
        """Register a completion provider."""
        self._completion_providers[name] = provider_class
        if config_getter:
            self._provider_configs[f"completion:{name}"] = config_getter
        logger.debug(
            "Registered completion provider", name=name, class_name=provider_class.__name__
        )

    def register_capture_provider(
        self,
        name: str,
        factory: Callable[..., SpeechCapture],
        config_getter: Callable[[], Dict[str, Any]] = None,
    ) -> None:
        """Register a speech capture provider factory."""
        self._capture_factories[name] = factory
        if config_getter:
            self._provider_configs[f"capture:{name}"] = config_getter
        logger.debug("Registered capture provider", name=name)

    def register_synthesis_provider(
        self,
        name: str,
        factory: Callable[..., SpeechSynthesis],
        config_getter: Callable[[], Dict[str, Any]] = None,
    ) -> None:
        """Register a speech synthesis provider factory."""
        self._synthesis_factories[name] = factory
        if config_getter:
            self._provider_configs[f"synthesis:{name}"] = config_getter
        logger.debug("Registered synthesis provider", name=name)

    def _config(self, key: str, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        merged = {}
        if key in self._provider_configs:
            merged.update(self._provider_configs[key]())
        merged.update(kwargs)
        return merged

    def get_completion_provider(self, name: str, **kwargs) -> CompletionProvider:
        """Get a completion provider instance."""
        if name not in self._completion_providers:
            raise ValueError(f"Unknown completion provider: {name}")

        provider_class = self._completion_providers[name]
        return provider_class(**self._config(f"completion:{name}", kwargs))

    def get_capture_provider(self, name: str, **kwargs) -> SpeechCapture:
        """Get a speech capture provider instance."""
        if name not in self._capture_factories:
            raise ValueError(f"Unknown capture provider: {name}")
        return self._capture_factories[name](**self._config(f"capture:{name}", kwargs))

    def get_synthesis_provider(self, name: str, **kwargs) -> SpeechSynthesis:
        """Get a speech synthesis provider instance."""
        if name not in self._synthesis_factories:
            raise ValueError(f"Unknown synthesis provider: {name}")
        return self._synthesis_factories[name](**self._config(f"synthesis:{name}", kwargs))

    def build_completion_chain(
        self,
        order: List[str],
        config_for: Optional[Callable[[str], Dict[str, Any]]] = None,
    ) -> List[CompletionProvider]:
        """
        Instantiate and initialize completion providers in fallback order.

        ``config_for(name)``, when given, supplies constructor arguments that
        take precedence over the registered config getter.

        Providers without a credential, or that fail to initialize, are
        left out of the chain. An empty chain is valid: the engine then
        answers with its degraded reply.
        """
        chain: List[CompletionProvider] = []
        for name in order:
            try:
                kwargs = config_for(name) if config_for else {}
                provider = self.get_completion_provider(name, **kwargs)
            except ValueError as e:
                logger.warning("Skipping completion provider", name=name, error=str(e))
                continue

            if not getattr(provider, "api_key", None):
                logger.info("Completion provider not configured", name=name)
                continue

            try:
                provider.initialize()
            except Exception as e:
                logger.error("Failed to initialize completion provider", name=name, error=str(e))
                continue

            chain.append(provider)
            logger.info("Completion provider enabled", name=name)

        return chain

    def list_completion_providers(self) -> List[str]:
        """List available completion providers."""
        return list(self._completion_providers.keys())

    def list_capture_providers(self) -> List[str]:
        """List available capture providers."""
        return list(self._capture_factories.keys())

    def list_synthesis_providers(self) -> List[str]:
        """List available synthesis providers."""
        return list(self._synthesis_factories.keys())

    def clear(self) -> None:
        """Clear all registered providers."""
        self._completion_providers.clear()
        self._capture_factories.clear()
        self._synthesis_factories.clear()
        self._provider_configs.clear()


# Global registry instance
registry = ProviderRegistry()
