"""依赖解析"""

from gottabe.resolver.graph import DependencyGraph
from gottabe.resolver.resolver import DependencyResolver

__all__ = ["DependencyGraph", "DependencyResolver"]
