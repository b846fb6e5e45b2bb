"""Completion, capture and synthesis providers behind one registry."""

from .registry import ProviderRegistry, registry


def register_builtin_providers(target: ProviderRegistry = registry) -> ProviderRegistry:
    """Register the built-in providers of every kind on ``target``."""
    # Provider packages import the registry, so they load after it exists
    from . import completion, stt, tts

    for kind in (completion, stt, tts):
        kind.register_providers(target)
    return target


register_builtin_providers()

__all__ = ["ProviderRegistry", "registry", "register_builtin_providers"]
