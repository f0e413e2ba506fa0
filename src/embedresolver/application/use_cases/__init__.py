from .resolve_source import ResolveResponse, ResolveSourceUseCase

__all__ = ["ResolveResponse", "ResolveSourceUseCase"]
