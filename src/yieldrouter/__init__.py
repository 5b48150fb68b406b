"""yieldrouter: capital allocation and rebalancing across yield backends."""

__all__ = ["EventBus", "YieldManager", "YieldRouterSettings", "__version__"]
__version__ = "0.1.0"


def __getattr__(name: str):
    if name == "EventBus":
        from .core.bus import EventBus

        return EventBus
    if name == "YieldManager":
        from .manager import YieldManager

        return YieldManager
    if name == "YieldRouterSettings":
        from .config import YieldRouterSettings

        return YieldRouterSettings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
