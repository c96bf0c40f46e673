from __future__ import annotations

from collections.abc import Iterable
import importlib
import json

from review_harvester.sources.base import SourceAdapter

PORTAL_ORDER = ("naver", "kakao", "yanolja", "agoda", "google")


class SourceRegistry:
    """Adapters keyed by portal, iterated in the fixed portal order."""

    def __init__(self, adapters: Iterable[SourceAdapter] = ()) -> None:
        self._adapters: dict[str, SourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        portal = getattr(adapter, "portal", None)
        if portal not in PORTAL_ORDER:
            raise ValueError(f"unsupported portal {portal!r}; expected one of: {', '.join(PORTAL_ORDER)}")
        self._adapters[portal] = adapter

    def ordered(self) -> list[SourceAdapter]:
        return [self._adapters[portal] for portal in PORTAL_ORDER if portal in self._adapters]

    def __len__(self) -> int:
        return len(self._adapters)


def load_registry(raw: str | None) -> SourceRegistry:
    """Build a registry from ``{"portal": "package.module:Attribute"}`` JSON.

    The attribute may be an adapter class (instantiated without arguments) or
    a ready adapter instance.
    """
    registry = SourceRegistry()
    if not raw:
        return registry

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("source adapter config must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValueError("source adapter config must be a JSON object")

    for portal, target in payload.items():
        if not isinstance(target, str) or ":" not in target:
            raise ValueError(f"adapter path for {portal!r} must look like 'package.module:Attribute'")
        module_name, _, attribute = target.partition(":")
        loaded = getattr(importlib.import_module(module_name), attribute)
        adapter = loaded() if isinstance(loaded, type) else loaded
        if not isinstance(adapter, SourceAdapter):
            raise ValueError(f"{target} is not a SourceAdapter")
        if adapter.portal != portal:
            raise ValueError(f"{target} serves portal {adapter.portal!r}, not {portal!r}")
        registry.register(adapter)
    return registry
