"""
Gradient Descent
================

Minimize an expression graph by moving its Variables against the gradient.

The gradient is assembled one partial at a time: for every Variable the
objective is re-evaluated in forward mode with that Variable as the seed.
That costs one traversal of the graph per Variable per iteration, which is
the price of forward mode.

Updates are Jacobi-style: all partials are computed from the same snapshot
of Variable values, then every Variable is moved at once.
"""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .engine import Node, NodeKind

logger = logging.getLogger(__name__)


class OptimizationStatus(enum.Enum):
    """How a run of gradient descent ended."""

    CONVERGED = 'converged'
    MAX_ITERATIONS = 'max_iterations'
    ABORTED = 'aborted'


@dataclass(frozen=True)
class IterationRecord:
    """
    Progress of one iteration.

    Attributes:
        iteration: 1-based iteration number.
        value: Objective value before this iteration's update.
        variable_values: Variable values after the update, in input order.
    """

    iteration: int
    value: float
    variable_values: Tuple[float, ...]


@dataclass
class OptimizationResult:
    """Outcome of GradientDescent.run()."""

    status: OptimizationStatus
    iterations: int = 0
    value: Optional[float] = None
    history: List[IterationRecord] = field(default_factory=list)
    message: str = ''

    @property
    def converged(self) -> bool:
        return self.status is OptimizationStatus.CONVERGED


IterationCallback = Callable[[IterationRecord], None]


class GradientDescent:
    """
    Plain gradient descent over the Variables of an expression graph.

    Updates parameters: v = v - lr * d(objective)/dv

    Attributes:
        variables: Variables to optimize, updated in place.
        lr: Learning rate.
        max_iterations: Hard cap on the number of iterations.
        tol: Stop once the objective changes by less than this between
            two iterations.
    """

    def __init__(
        self,
        variables: Sequence[Node],
        lr: float = 0.01,
        max_iterations: int = 1000,
        tol: float = 1e-9
    ) -> None:
        """
        Initialize the optimizer.

        Nothing is validated here; run() checks its preconditions and
        reports problems through the result instead of raising.

        Args:
            variables: Variable nodes to optimize.
            lr: Learning rate (step size).
            max_iterations: Iteration budget, must be positive.
            tol: Convergence tolerance on the objective value.
        """
        self.variables: List[Node] = list(variables) if variables is not None else []
        self.lr = lr
        self.max_iterations = max_iterations
        self.tol = tol

    def gradients(self, objective: Node) -> List[np.floating]:
        """
        Compute d(objective)/dv for every variable.

        One full forward-mode evaluation per variable, all at the current
        variable values.
        """
        return [objective.evaluate_and_derive(v).partial for v in self.variables]

    def step(self, objective: Node) -> np.floating:
        """
        Perform one optimization step.

        Evaluates the objective, computes every partial from that same
        state, then updates all variables together.

        Returns:
            The objective value before the update.
        """
        current = objective.evaluate_and_derive(None).value
        grads = self.gradients(objective)

        graph = objective.graph
        lr = graph.dtype(self.lr)
        with np.errstate(over='ignore', invalid='ignore'):
            new_values = [v.value - lr * g for v, g in zip(self.variables, grads)]
        for v, new_value in zip(self.variables, new_values):
            graph.set_value(v, new_value)
        return current

    def run(
        self,
        objective: Node,
        callback: Optional[IterationCallback] = None
    ) -> OptimizationResult:
        """
        Iterate until the objective stops changing or the budget runs out.

        Args:
            objective: Root node of the expression to minimize.
            callback: Called once per iteration with an IterationRecord.

        Returns:
            OptimizationResult. Failing preconditions give status ABORTED
            and leave every variable untouched.
        """
        problem = self._check_preconditions(objective)
        if problem is not None:
            logger.error("gradient descent aborted: %s", problem)
            return OptimizationResult(OptimizationStatus.ABORTED, message=problem)

        result = OptimizationResult(OptimizationStatus.MAX_ITERATIONS)
        # +inf so the first iteration never counts as converged
        previous = objective.graph.dtype(np.inf)

        for iteration in range(1, self.max_iterations + 1):
            current = self.step(objective)

            record = IterationRecord(
                iteration=iteration,
                value=float(current),
                variable_values=tuple(float(v.value) for v in self.variables),
            )
            result.history.append(record)
            result.iterations = iteration
            result.value = record.value

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "iteration %d: value = %g, %s",
                    iteration,
                    record.value,
                    ', '.join(f'x_{i} = {x:g}' for i, x in enumerate(record.variable_values)),
                )
            if callback is not None:
                callback(record)

            # NaN never compares below tol, so a diverged run keeps going
            with np.errstate(invalid='ignore'):
                change = abs(current - previous)
            if change < self.tol:
                result.status = OptimizationStatus.CONVERGED
                result.message = f"converged within tolerance after {iteration} iterations"
                logger.info(result.message)
                return result

            previous = current

        result.message = f"maximum iterations reached ({self.max_iterations})"
        logger.info(result.message)
        return result

    def _check_preconditions(self, objective: Optional[Node]) -> Optional[str]:
        if objective is None:
            return "null objective"
        if not isinstance(objective, Node):
            return f"objective must be a Node, got {type(objective).__name__}"
        if not self.variables:
            return "no variables to optimize"
        budget = self.max_iterations
        if isinstance(budget, bool) or not isinstance(budget, (int, np.integer)):
            return f"max_iterations must be an integer, got {budget!r}"
        if budget <= 0:
            return f"max_iterations must be positive, got {budget}"
        for v in self.variables:
            if not isinstance(v, Node) or v.graph is not objective.graph:
                return f"{v!r} is not a node of the objective's graph"
            if v.kind is not NodeKind.VARIABLE:
                return f"{v!r} is not a Variable"
        if len(set(self.variables)) != len(self.variables):
            return "variables must be distinct"
        return None


def optimize(
    objective: Node,
    variables: Sequence[Node],
    learning_rate: float,
    max_iterations: int,
    tolerance: float,
    callback: Optional[IterationCallback] = None
) -> OptimizationResult:
    """
    Minimize `objective` by gradient descent over `variables`.

    Convenience wrapper around GradientDescent.

    Example:
        >>> g = Graph()
        >>> x = g.variable(10.0, label='x')
        >>> result = optimize(x * x, [x], 0.1, 1000, 1e-9)
        >>> result.converged
        True
    """
    return GradientDescent(
        variables, lr=learning_rate, max_iterations=max_iterations, tol=tolerance
    ).run(objective, callback)
