#!/usr/bin/env python3
"""
ForwardGrad Demo: Derivatives and Gradient Descent
==================================================

This demo shows the complete workflow:
1. Build an expression graph and read off partial derivatives
2. Inspect the graph with the value and partial of every node
3. Minimize a function with gradient descent
4. Plot the objective over the iterations

Run: python examples/demo.py
"""

import logging
import math
from typing import List

import matplotlib.pyplot as plt

from forwardgrad_numpy import Graph, IterationRecord, draw_graph, optimize


def plot_objective_curve(values: List[float]) -> None:
    """
    Plot the objective value per iteration on a log scale.

    Args:
        values: Objective value at each iteration.
    """
    plt.figure(figsize=(10, 6))
    plt.semilogy(range(1, len(values) + 1), values, 'b-', linewidth=2)
    plt.xlabel('Iteration')
    plt.ylabel('Objective')
    plt.title('Gradient Descent Convergence')
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig('./objective_curve.png', dpi=150)
    plt.close()
    print("Saved objective curve to: objective_curve.png")


def demo_partial_derivatives():
    """
    Show forward-mode derivatives on small formulas.
    """
    print("=" * 60)
    print("DEMO 1: Forward-Mode Partial Derivatives")
    print("=" * 60)
    print()

    # f(x) = x² + 2x + 1
    print("Computing df/dx for f(x) = x² + 2x + 1 at x = 3")
    print()
    g = Graph()
    x = g.variable(3.0, label='x')
    f = x * x + 2 * x + 1
    value, partial = f.evaluate_and_derive(x)
    print(f"f(3) = {value}")
    print(f"df/dx at x=3 = {partial}")
    print(f"(Analytical: df/dx = 2x + 2 = 2(3) + 2 = 8)")
    print()

    # h(a, b) = sin(a*b) * exp(a)
    print("Computing partials of h(a,b) = sin(a*b) * exp(a)")
    print()
    a = g.variable(0.5, label='a')
    b = g.variable(2.0, label='b')
    h = (a * b).sin() * a.exp()
    print(f"h(0.5, 2) = {h.evaluate_and_derive(None).value:.6f}")
    print(f"dh/da = {h.evaluate_and_derive(a).partial:.6f}")
    print(f"dh/db = {h.evaluate_and_derive(b).partial:.6f}")
    print(f"(Analytical dh/db = a*cos(a*b)*exp(a) = {0.5 * math.cos(1.0) * math.exp(0.5):.6f})")
    print()


def demo_graph_visualization():
    """
    Show the expression graph with each node's value and partial.
    """
    print("=" * 60)
    print("DEMO 2: Expression Graph Visualization")
    print("=" * 60)
    print()

    g = Graph()
    x = g.variable(2.0, label='x')
    y = g.variable(3.0, label='y')
    z = g.product(x, y, label='z=x*y')
    w = g.sum(z, x, label='w=z+x')
    out = g.unary('log', w, label='out=log(w)')

    print("Expression: out = log(x*y + x)")
    print(f"At x=2, y=3: out = log(8) = {out.evaluate_and_derive(None).value:.6f}")
    print()
    print("Partials (one forward pass each):")
    print(f"  d(out)/dx = {out.evaluate_and_derive(x).partial:.6f}  (y + 1) / 8")
    print(f"  d(out)/dy = {out.evaluate_and_derive(y).partial:.6f}  x / 8")
    print()
    print("Expression Graph w.r.t. x (text format):")
    print(draw_graph(out, format='text', target=x))
    print()


def demo_gradient_descent():
    """
    Minimize a shifted bowl with a trigonometric ripple.
    """
    print("=" * 60)
    print("DEMO 3: Gradient Descent")
    print("=" * 60)
    print()

    # f(x, y) = (x - 1)² + (y + 2)² + 0.1 * sin(x)²
    g = Graph()
    x = g.variable(4.0, label='x')
    y = g.variable(3.0, label='y')
    dx = x - 1
    dy = y + 2
    s = x.sin()
    f = dx * dx + dy * dy + 0.1 * s * s

    def report(record: IterationRecord) -> None:
        if record.iteration % 10 == 0:
            xs = ', '.join(f'{v:+.6f}' for v in record.variable_values)
            print(f"Iteration {record.iteration:4d} | Objective: {record.value:.8f} | ({xs})")

    print("Minimizing f(x, y) = (x - 1)² + (y + 2)² + 0.1·sin²(x) from (4, 3)")
    print("-" * 40)
    result = optimize(f, [x, y], learning_rate=0.1, max_iterations=1000,
                      tolerance=1e-12, callback=report)
    print("-" * 40)
    print(f"Status: {result.status.value} after {result.iterations} iterations")
    print(f"Minimum near x = {float(x.value):.6f}, y = {float(y.value):.6f}")
    print()

    print("Generating visualization...")
    plot_objective_curve([r.value for r in result.history])
    print()


def main():
    """Run all demos."""
    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    print()
    print("╔══════════════════════════════════════════════════════════╗")
    print("║        ForwardGrad-NumPy: Forward-Mode AD Demo           ║")
    print("║                                                          ║")
    print("║   One variable at a time, value and derivative together. ║")
    print("╚══════════════════════════════════════════════════════════╝")
    print()

    demo_partial_derivatives()
    demo_graph_visualization()
    demo_gradient_descent()

    print("=" * 60)
    print("ALL DEMOS COMPLETE")
    print("=" * 60)
    print()


if __name__ == "__main__":
    main()
