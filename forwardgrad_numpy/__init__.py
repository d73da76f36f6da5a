"""ForwardGrad-NumPy: forward-mode autodiff over scalar expression graphs."""

from .engine import ScalarPair, Graph, Node, NodeKind, UnaryKind, topological_sort, draw_graph
from .optim import GradientDescent, optimize, OptimizationResult, OptimizationStatus, IterationRecord

__all__ = [
    "ScalarPair",
    "Graph",
    "Node",
    "NodeKind",
    "UnaryKind",
    "topological_sort",
    "draw_graph",
    "GradientDescent",
    "optimize",
    "OptimizationResult",
    "OptimizationStatus",
    "IterationRecord",
]
