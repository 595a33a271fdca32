"""Dependency ordering of system layers.

Layers are resolved by repeated extraction: among the layers whose
dependencies are already placed, the one with the lowest priority goes next,
ties broken by name. Priority therefore only orders layers that are ready at
the same time and never overrides a dependency edge.

Resolution never raises for graph problems. Missing dependencies and cycles
are collected into a `LayerResolution` so an author sees every problem at once.
"""

from __future__ import annotations

import heapq
from collections.abc import Sequence
from dataclasses import dataclass

from horizon_deploy.models import LayersConfig, SystemLayer
from horizon_deploy.types import LayerIssue, LayerIssueKind


@dataclass(frozen=True)
class LayerResolution:
    """Outcome of ordering system layers.

    Attributes:
        order: Layers in application order (empty when issues were found).
        issues: Every problem that prevented an order from being produced.
    """

    order: tuple[SystemLayer, ...] = ()
    issues: tuple[LayerIssue, ...] = ()

    def __post_init__(self) -> None:
        """Validate invariants."""
        if self.order and self.issues:
            raise ValueError("A resolution with issues cannot carry an order")

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def names(self) -> list[str]:
        return [layer.name for layer in self.order]


def _index(layers: Sequence[SystemLayer]) -> dict[str, SystemLayer]:
    index: dict[str, SystemLayer] = {}
    for layer in layers:
        index.setdefault(layer.name, layer)
    return index


def _missing_dependencies(index: dict[str, SystemLayer]) -> list[LayerIssue]:
    return [
        LayerIssue(LayerIssueKind.MISSING_DEPENDENCY, layer.name, (dep,))
        for layer in index.values()
        for dep in layer.dependencies
        if dep not in index
    ]


def _cycles(index: dict[str, SystemLayer], among: set[str]) -> list[LayerIssue]:
    """Find dependency cycles among the given layer names.

    Uses Tarjan's strongly connected components over edges between existing
    layers. A component is a cycle if it has more than one member or a layer
    depends on itself.
    """
    counter = 0
    indices: dict[str, int] = {}
    lowlinks: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[list[str]] = []

    def connect(name: str) -> None:
        nonlocal counter
        indices[name] = lowlinks[name] = counter
        counter += 1
        stack.append(name)
        on_stack.add(name)
        for dep in sorted(set(index[name].dependencies)):
            if dep not in among:
                continue
            if dep not in indices:
                connect(dep)
                lowlinks[name] = min(lowlinks[name], lowlinks[dep])
            elif dep in on_stack:
                lowlinks[name] = min(lowlinks[name], indices[dep])
        if lowlinks[name] == indices[name]:
            component = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == name:
                    break
            components.append(component)

    for name in sorted(among):
        if name not in indices:
            connect(name)

    issues = []
    for component in components:
        members = sorted(component)
        self_loop = len(members) == 1 and members[0] in index[members[0]].dependencies
        if len(members) > 1 or self_loop:
            issues.append(LayerIssue(LayerIssueKind.CYCLE, members[0], tuple(members)))
    return sorted(issues, key=lambda issue: issue.related)


def resolve_layers(layers: Sequence[SystemLayer]) -> LayerResolution:
    """Order system layers so every dependency precedes its dependents.

    Args:
        layers: System layers in declaration order. Names are assumed unique
            (duplicates are a validation error; the first declaration wins).

    Returns:
        LayerResolution with the total order, or with every missing
        dependency and cycle found.
    """
    index = _index(layers)
    issues = _missing_dependencies(index)

    pending = {
        name: {dep for dep in layer.dependencies if dep in index}
        for name, layer in index.items()
    }
    dependents: dict[str, list[str]] = {name: [] for name in index}
    for name, deps in pending.items():
        for dep in deps:
            dependents[dep].append(name)

    blocked = {name for name, layer in index.items() if any(d not in index for d in layer.dependencies)}
    ready = [
        (index[name].priority, name)
        for name, deps in pending.items()
        if not deps and name not in blocked
    ]
    heapq.heapify(ready)

    order: list[SystemLayer] = []
    while ready:
        _, name = heapq.heappop(ready)
        order.append(index[name])
        for dependent in dependents[name]:
            pending[dependent].discard(name)
            if not pending[dependent] and dependent not in blocked:
                heapq.heappush(ready, (index[dependent].priority, dependent))

    if len(order) < len(index):
        placed = {layer.name for layer in order}
        issues.extend(_cycles(index, set(index) - placed))

    if issues:
        return LayerResolution(issues=tuple(issues))
    return LayerResolution(order=tuple(order))


def check_layer_order(layers: Sequence[SystemLayer], layer_order: Sequence[str]) -> LayerResolution:
    """Check an explicit layer order against the declared dependencies.

    The explicit order must name every system layer, name no unknown layer,
    and never place a layer before one of its dependencies. Repeated names
    after the first occurrence are ignored.

    Args:
        layers: System layers in declaration order.
        layer_order: Layer names in the requested application order.

    Returns:
        LayerResolution following `layer_order`, or every issue found.
    """
    index = _index(layers)
    graph = resolve_layers(layers)
    issues = [
        issue for issue in graph.issues
        if issue.kind in (LayerIssueKind.MISSING_DEPENDENCY, LayerIssueKind.CYCLE)
    ]

    positions: dict[str, int] = {}
    for name in layer_order:
        if name not in index:
            issues.append(LayerIssue(LayerIssueKind.UNKNOWN_LAYER_IN_ORDER, name))
        elif name not in positions:
            positions[name] = len(positions)

    for name in index:
        if name not in positions:
            issues.append(LayerIssue(LayerIssueKind.ORDER_INCOMPLETE, name))

    for name, position in positions.items():
        for dep in index[name].dependencies:
            if dep in positions and positions[dep] > position:
                issues.append(LayerIssue(LayerIssueKind.ORDER_VIOLATION, name, (dep,)))

    if issues:
        return LayerResolution(issues=tuple(issues))
    return LayerResolution(order=tuple(index[name] for name in positions))


def plan_layers(config: LayersConfig | None) -> LayerResolution:
    """Produce the application order for a layers block.

    An explicit `layer_order` takes precedence over automatic resolution.
    A missing layers block yields an empty order.
    """
    if config is None:
        return LayerResolution()
    if config.layer_order:
        return check_layer_order(config.system, config.layer_order)
    return resolve_layers(config.system)
