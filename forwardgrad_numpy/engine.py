"""
ForwardGrad-NumPy: A Forward-Mode Expression Graph
==================================================

A compact implementation of forward-mode automatic differentiation over an
explicit expression graph. Built on NumPy scalars, no tracing, no tape.

Every node answers a single question: "what is your value, and what is your
derivative with respect to this one variable?" Leaves answer directly (their
derivative is 1 if they are the variable being asked about, 0 otherwise).
Interior nodes ask their operands the same question and combine the answers
with their own local derivative rule. One traversal per variable gives one
partial derivative.

The graph is an arena: a Graph owns all of its nodes and hands out Node
handles. Operands must exist before the node that uses them, so the graph
is acyclic by construction, and shared subexpressions are simply handles
used more than once.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Set, Tuple, Union

import numpy as np


# Type alias for numeric inputs
Numeric = Union[int, float, np.integer, np.floating]

SUPPORTED_DTYPES = (np.float32, np.float64)


class ScalarPair(NamedTuple):
    """Value of a subexpression and its partial w.r.t. one target variable."""

    value: np.floating
    partial: np.floating


class NodeKind(enum.Enum):
    """The closed set of node variants a Graph can hold."""

    VARIABLE = 'variable'
    SUM = 'sum'
    PRODUCT = 'product'
    UNARY = 'unary'


class UnaryKind(enum.Enum):
    """Elementary functions available as unary nodes."""

    SIN = 'sin'
    COS = 'cos'
    TAN = 'tan'
    COT = 'cot'
    SEC = 'sec'
    ASIN = 'asin'
    ACOS = 'acos'
    EXP = 'exp'
    LOG = 'log'


# =============================================================================
# Local Derivative Rules
# =============================================================================
#
# Each rule receives the operand's (value, partial) and returns the pair for
# the function applied to it. Out-of-domain inputs are not checked: NaN and
# Inf flow through exactly as IEEE-754 arithmetic produces them.

def _sin(v: np.floating, p: np.floating) -> ScalarPair:
    return ScalarPair(np.sin(v), np.cos(v) * p)


def _cos(v: np.floating, p: np.floating) -> ScalarPair:
    return ScalarPair(np.cos(v), -np.sin(v) * p)


def _tan(v: np.floating, p: np.floating) -> ScalarPair:
    # d/dx tan(x) = sec^2(x)
    sec = 1 / np.cos(v)
    return ScalarPair(np.tan(v), sec * sec * p)


def _cot(v: np.floating, p: np.floating) -> ScalarPair:
    # d/dx cot(x) = -csc^2(x)
    s = np.sin(v)
    return ScalarPair(1 / np.tan(v), -1 / (s * s) * p)


def _sec(v: np.floating, p: np.floating) -> ScalarPair:
    sec = 1 / np.cos(v)
    return ScalarPair(sec, sec * np.tan(v) * p)


def _asin(v: np.floating, p: np.floating) -> ScalarPair:
    return ScalarPair(np.arcsin(v), p / np.sqrt(1 - v * v))


def _acos(v: np.floating, p: np.floating) -> ScalarPair:
    return ScalarPair(np.arccos(v), -p / np.sqrt(1 - v * v))


def _exp(v: np.floating, p: np.floating) -> ScalarPair:
    e = np.exp(v)
    return ScalarPair(e, e * p)


def _log(v: np.floating, p: np.floating) -> ScalarPair:
    return ScalarPair(np.log(v), (1 / v) * p)


_UNARY_RULES: Dict[UnaryKind, Callable[[np.floating, np.floating], ScalarPair]] = {
    UnaryKind.SIN: _sin,
    UnaryKind.COS: _cos,
    UnaryKind.TAN: _tan,
    UnaryKind.COT: _cot,
    UnaryKind.SEC: _sec,
    UnaryKind.ASIN: _asin,
    UnaryKind.ACOS: _acos,
    UnaryKind.EXP: _exp,
    UnaryKind.LOG: _log,
}


@dataclass
class _Record:
    """Storage for one node inside the arena."""

    kind: NodeKind
    operands: Tuple[int, ...] = ()
    unary: Optional[UnaryKind] = None
    value: Optional[np.floating] = None
    label: str = ''


# =============================================================================
# Node Handles
# =============================================================================

class Node:
    """
    Handle to a node owned by a Graph.

    Two handles are equal when they refer to the same slot of the same
    graph; this is what decides whether a Variable is the target of an
    evaluation. Handles are cheap and can be created freely; the node data
    lives in the graph.

    Arithmetic on handles builds new nodes in the same graph:

        >>> g = Graph()
        >>> x = g.variable(2.0, label='x')
        >>> y = g.variable(3.0, label='y')
        >>> f = x * y + x.sin()
        >>> float(f.evaluate_and_derive(x).partial)  # y + cos(x)
        2.5838531634528574
    """

    __slots__ = ('graph', 'index')

    def __init__(self, graph: Graph, index: int) -> None:
        self.graph = graph
        self.index = index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self.graph is other.graph and self.index == other.index

    def __hash__(self) -> int:
        return hash((id(self.graph), self.index))

    def __repr__(self) -> str:
        record = self.graph._record(self)
        name = record.label or f'v{self.index}'
        if record.kind is NodeKind.VARIABLE:
            return f"Node({name}={float(record.value):.4f})"
        op = record.unary.value if record.kind is NodeKind.UNARY else record.kind.value
        args = ', '.join(f'v{i}' for i in record.operands)
        return f"Node({name} = {op}({args}))"

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def kind(self) -> NodeKind:
        return self.graph._record(self).kind

    @property
    def operands(self) -> Tuple[Node, ...]:
        return tuple(Node(self.graph, i) for i in self.graph._record(self).operands)

    @property
    def unary_kind(self) -> Optional[UnaryKind]:
        return self.graph._record(self).unary

    @property
    def label(self) -> str:
        return self.graph._record(self).label

    @property
    def value(self) -> np.floating:
        """Stored value of a Variable node."""
        return self.graph.value_of(self)

    @value.setter
    def value(self, new_value: Numeric) -> None:
        self.graph.set_value(self, new_value)

    def evaluate_and_derive(self, target: Optional[Node] = None) -> ScalarPair:
        """Evaluate this node; see Graph.evaluate_and_derive."""
        return self.graph.evaluate_and_derive(self, target)

    # -------------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------------

    def _lift(self, other: Union[Node, Numeric]) -> Node:
        # Plain numbers become leaves that are never the target.
        if isinstance(other, Node):
            return other
        return self.graph.variable(other, label=f'{other}')

    def __add__(self, other: Union[Node, Numeric]) -> Node:
        return self.graph.sum(self, self._lift(other))

    def __radd__(self, other: Numeric) -> Node:
        return self.graph.sum(self._lift(other), self)

    def __mul__(self, other: Union[Node, Numeric]) -> Node:
        return self.graph.product(self, self._lift(other))

    def __rmul__(self, other: Numeric) -> Node:
        return self.graph.product(self._lift(other), self)

    def __neg__(self) -> Node:
        return self * -1

    def __sub__(self, other: Union[Node, Numeric]) -> Node:
        return self + (-other)

    def __rsub__(self, other: Numeric) -> Node:
        return other + (-self)

    # -------------------------------------------------------------------------
    # Elementary Functions
    # -------------------------------------------------------------------------

    def sin(self) -> Node:
        return self.graph.unary(UnaryKind.SIN, self)

    def cos(self) -> Node:
        return self.graph.unary(UnaryKind.COS, self)

    def tan(self) -> Node:
        return self.graph.unary(UnaryKind.TAN, self)

    def cot(self) -> Node:
        return self.graph.unary(UnaryKind.COT, self)

    def sec(self) -> Node:
        return self.graph.unary(UnaryKind.SEC, self)

    def asin(self) -> Node:
        return self.graph.unary(UnaryKind.ASIN, self)

    def acos(self) -> Node:
        return self.graph.unary(UnaryKind.ACOS, self)

    def exp(self) -> Node:
        return self.graph.unary(UnaryKind.EXP, self)

    def log(self) -> Node:
        return self.graph.unary(UnaryKind.LOG, self)


# =============================================================================
# The Graph
# =============================================================================

class Graph:
    """
    Arena owning every node of one expression graph.

    All values are stored and combined in a single floating-point dtype,
    either numpy.float32 or numpy.float64.

    Attributes:
        dtype: The NumPy scalar type used for every value and partial.

    Example:
        >>> g = Graph()
        >>> a, b = g.variable(2.0), g.variable(5.0)
        >>> f = g.product(a, b, a)
        >>> tuple(float(t) for t in f.evaluate_and_derive(a))
        (20.0, 20.0)
    """

    def __init__(self, dtype: type = np.float64) -> None:
        """
        Create an empty graph.

        Args:
            dtype: numpy.float32 or numpy.float64 (or anything numpy.dtype
                maps to one of them).

        Raises:
            TypeError: If dtype is not one of the supported float widths.
        """
        # numpy.dtype(None) means float64; an explicit None is not a dtype here
        try:
            scalar_type = np.dtype(dtype).type if dtype is not None else None
        except TypeError:
            scalar_type = None
        if scalar_type not in SUPPORTED_DTYPES:
            raise TypeError(
                f"Graph dtype must be numpy.float32 or numpy.float64, got {dtype!r}"
            )
        self.dtype = dtype = scalar_type
        self._zero = dtype(0)
        self._one = dtype(1)
        self._records: List[_Record] = []

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"Graph(dtype={self.dtype.__name__}, nodes={len(self)})"

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def variable(self, value: Numeric, label: str = '') -> Node:
        """
        Add a leaf holding a mutable scalar.

        Args:
            value: Initial value, converted to the graph's dtype.
            label: Optional name for debugging and visualization.

        Returns:
            Handle to the new Variable.

        Raises:
            TypeError: If value is not numeric.
        """
        return self._add(_Record(NodeKind.VARIABLE, value=self._coerce(value), label=label))

    def sum(self, *operands: Node, label: str = '') -> Node:
        """
        Add a node computing the sum of one or more operands.

        Raises:
            ValueError: If no operands are given or a handle is invalid.
        """
        return self._add(_Record(NodeKind.SUM, self._operand_indices('sum', operands), label=label))

    def product(self, *operands: Node, label: str = '') -> Node:
        """
        Add a node computing the product of one or more operands.

        Raises:
            ValueError: If no operands are given or a handle is invalid.
        """
        return self._add(
            _Record(NodeKind.PRODUCT, self._operand_indices('product', operands), label=label)
        )

    def unary(self, kind: Union[UnaryKind, str], operand: Node, label: str = '') -> Node:
        """
        Add a node applying an elementary function to one operand.

        Args:
            kind: A UnaryKind, or its name ('sin', 'log', ...).
            operand: Handle of the argument node.
            label: Optional name.

        Raises:
            ValueError: If kind is unknown or the handle is invalid.
        """
        try:
            kind = UnaryKind(kind)
        except ValueError:
            names = ', '.join(k.value for k in UnaryKind)
            raise ValueError(f"unknown unary kind {kind!r}, expected one of: {names}") from None
        index = self._check(operand)
        return self._add(_Record(NodeKind.UNARY, (index,), unary=kind, label=label))

    def _add(self, record: _Record) -> Node:
        self._records.append(record)
        return Node(self, len(self._records) - 1)

    def _operand_indices(self, what: str, operands: Tuple[Node, ...]) -> Tuple[int, ...]:
        if not operands:
            raise ValueError(f"{what} needs at least one operand")
        return tuple(self._check(op) for op in operands)

    def _coerce(self, value: Numeric) -> np.floating:
        if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
            raise TypeError(f"Variable value must be numeric, got {type(value).__name__}")
        return self.dtype(value)

    def _check(self, node: Node) -> int:
        """Validate a handle and return its arena index."""
        if not isinstance(node, Node):
            raise TypeError(f"expected a Node handle, got {type(node).__name__}")
        if node.graph is not self:
            raise ValueError(f"{node!r} belongs to a different graph")
        if not 0 <= node.index < len(self._records):
            raise ValueError(f"node index {node.index} is out of range")
        return node.index

    def _record(self, node: Node) -> _Record:
        return self._records[self._check(node)]

    # -------------------------------------------------------------------------
    # Variable State
    # -------------------------------------------------------------------------

    def value_of(self, node: Node) -> np.floating:
        """Return the stored value of a Variable."""
        record = self._record(node)
        if record.kind is not NodeKind.VARIABLE:
            raise TypeError(f"only Variables hold a value, {node!r} is a {record.kind.value}")
        return record.value

    def set_value(self, node: Node, value: Numeric) -> None:
        """
        Overwrite the stored value of a Variable.

        Must not be called while an evaluation is in progress.

        Raises:
            TypeError: If node is not a Variable or value is not numeric.
        """
        record = self._record(node)
        if record.kind is not NodeKind.VARIABLE:
            raise TypeError(f"only Variables hold a value, {node!r} is a {record.kind.value}")
        record.value = self._coerce(value)

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate_and_derive(self, node: Node, target: Optional[Node] = None) -> ScalarPair:
        """
        Compute a node's value and its partial w.r.t. one Variable.

        This is forward-mode AD: the target Variable is seeded with
        derivative 1, every other Variable with 0, and each node combines
        its operands' (value, partial) pairs with its local rule on the way
        back up. Nothing is cached between calls.

        Domain errors (log of a non-positive number, asin outside [-1, 1],
        tan at a pole, ...) are not reported: they show up as NaN or Inf in
        the result, whatever numpy's global error settings are.

        Args:
            node: Root of the subexpression to evaluate.
            target: The Variable to differentiate with respect to, or None
                to only compute the value (the partial is then 0 and
                carries no meaning).

        Returns:
            ScalarPair(value, partial) in the graph's dtype.

        Raises:
            ValueError: If target is not a Variable of this graph.

        Example:
            >>> g = Graph()
            >>> x = g.variable(0.5)
            >>> x.exp().evaluate_and_derive(x)  # (e^0.5, e^0.5)
        """
        index = self._check(node)
        target_index = None
        if target is not None:
            target_index = self._check(target)
            if self._records[target_index].kind is not NodeKind.VARIABLE:
                raise ValueError(f"target must be a Variable, got {target!r}")

        with np.errstate(divide='ignore', invalid='ignore', over='ignore', under='ignore'):
            return self._evaluate(index, target_index)

    def _evaluate(self, index: int, target: Optional[int]) -> ScalarPair:
        # Post-order walk with an explicit stack so deep chains do not hit the
        # recursion limit. Each frame collects its operands' pairs in order;
        # an operand shared by two parents is evaluated once for each.
        stack: List[Tuple[int, List[ScalarPair]]] = [(index, [])]
        while True:
            node, results = stack[-1]
            operands = self._records[node].operands
            if len(results) < len(operands):
                stack.append((operands[len(results)], []))
                continue
            stack.pop()
            pair = self._combine(node, results, target)
            if not stack:
                return pair
            stack[-1][1].append(pair)

    def _combine(self, index: int, evals: List[ScalarPair], target: Optional[int]) -> ScalarPair:
        """Apply a node's local rule to its operands' (value, partial) pairs."""
        record = self._records[index]
        kind = record.kind

        if kind is NodeKind.VARIABLE:
            return ScalarPair(record.value, self._one if index == target else self._zero)

        if kind is NodeKind.SUM:
            # Differentiation is linear: partials add like values do
            value, partial = self._zero, self._zero
            for v, p in evals:
                value = value + v
                partial = partial + p
            return ScalarPair(value, partial)

        if kind is NodeKind.PRODUCT:
            value = self._one
            for v, _ in evals:
                value = value * v

            # Generalized product rule: sum_i p_i * prod_{j != i} v_j.
            # Built explicitly rather than as value / v_i, which breaks at v_i == 0.
            partial = self._zero
            for i, (_, p_i) in enumerate(evals):
                term = p_i
                for j, (v_j, _) in enumerate(evals):
                    if i != j:
                        term = term * v_j
                partial = partial + term
            return ScalarPair(value, partial)

        if kind is NodeKind.UNARY:
            v, p = evals[0]
            return _UNARY_RULES[record.unary](v, p)

        raise AssertionError(f"unhandled node kind {kind!r}")


# =============================================================================
# Utilities
# =============================================================================

def topological_sort(root: Node) -> List[Node]:
    """
    List the nodes reachable from `root`, operands before the nodes using them.

    Shared subexpressions appear once.

    Args:
        root: The root node of the expression.

    Returns:
        List of Node handles in topological order (root is last).

    Example:
        >>> g = Graph()
        >>> a, b = g.variable(1.0), g.variable(2.0)
        >>> c = a + b
        >>> d = c * a
        >>> topo = topological_sort(d)
        >>> # topo will be [a, b, c, d]
    """
    topo: List[Node] = []
    visited: Set[Node] = {root}
    # Iterative DFS: each frame holds a node and an iterator over its operands
    stack = [(root, iter(root.operands))]
    while stack:
        node, operands = stack[-1]
        for operand in operands:
            if operand not in visited:
                visited.add(operand)
                stack.append((operand, iter(operand.operands)))
                break
        else:
            stack.pop()
            topo.append(node)
    return topo


def draw_graph(root: Node, format: str = 'text', target: Optional[Node] = None) -> str:
    """
    Generate a visualization of the expression graph.

    Each node is shown with its value and its partial w.r.t. `target`.

    Args:
        root: Root node of the graph to visualize.
        format: 'text' for a table, 'dot' for Graphviz DOT format.
        target: Variable the partials are taken with respect to.

    Returns:
        String representation of the graph.

    Raises:
        ValueError: If format is not 'text' or 'dot'.
    """
    if format not in ('text', 'dot'):
        raise ValueError(f"format must be 'text' or 'dot', got {format!r}")

    nodes = topological_sort(root)
    pairs = {n: n.evaluate_and_derive(target) for n in nodes}

    def name(n: Node) -> str:
        return n.label if n.label else f'v{n.index}'

    def op_name(n: Node) -> str:
        if n.kind is NodeKind.UNARY:
            return n.unary_kind.value
        return {NodeKind.SUM: '+', NodeKind.PRODUCT: '*'}.get(n.kind, '')

    if format == 'dot':
        lines = ['digraph G {', '  rankdir=LR;']
        for node in nodes:
            nid = node.index
            value, partial = pairs[node]
            lines.append(
                f'  n{nid} [label="{name(node)}\\n'
                f'value={value:.4f}\\n'
                f'partial={partial:.4f}", shape=box];'
            )
            if node.kind is not NodeKind.VARIABLE:
                op_id = f'op{nid}'
                lines.append(f'  {op_id} [label="{op_name(node)}", shape=circle];')
                lines.append(f'  {op_id} -> n{nid};')
                for operand in node.operands:
                    lines.append(f'  n{operand.index} -> {op_id};')
        lines.append('}')
        return '\n'.join(lines)

    lines = ['Expression Graph:', '=' * 50]
    for node in reversed(nodes):
        value, partial = pairs[node]
        op_str = ''
        if node.kind is not NodeKind.VARIABLE:
            op_str = f' = {op_name(node)}(' + ', '.join(name(o) for o in node.operands) + ')'
        lines.append(
            f'{name(node):>10}: value={value:>10.4f}, '
            f'partial={partial:>10.4f}{op_str}'
        )
    return '\n'.join(lines)
