"""Config and stylesheet injection for pages hosted in an embedded web surface."""
from __future__ import annotations

from css_injector.asset_cache import AssetBundle, AssetCache, DirectoryAssetStore
from css_injector.command_bridge import BridgeResult, CommandBridge
from css_injector.context import InjectionContext, InjectionState
from css_injector.injector import AssetInjector
from css_injector.lifecycle import InterceptorPhase, LifecycleInterceptor
from css_injector.payload_builders import InjectionPayload, PayloadBuilder
from css_injector.retry_scheduler import RetryPolicy, RetryScheduler

__all__ = [
    "AssetBundle",
    "AssetCache",
    "AssetInjector",
    "BridgeResult",
    "CommandBridge",
    "DirectoryAssetStore",
    "InjectionContext",
    "InjectionPayload",
    "InjectionState",
    "InterceptorPhase",
    "LifecycleInterceptor",
    "PayloadBuilder",
    "RetryPolicy",
    "RetryScheduler",
]
