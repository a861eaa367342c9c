"""
Directed acyclic graphs of operators.

A Graph holds operators as nodes and explicit edges describing which
operator output feeds which operator input. Acyclicity and fan-in are
validated when an edge is added. Fitting runs every operator's fit exactly
once in topological order; applying runs every operator's apply once in the
same order, reusing the state captured during fit.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .dataset import Dataset
from .errors import GraphStructureError, SchemaMismatchError, UntrainedError
from .operators import FrozenState, Operator, register_operator
from .schema import OperatorKey

logger = logging.getLogger(__name__)


@register_operator
class FeatureUnion(Operator):
    """
    Merges the outputs of several branches column-wise.

    All inputs must have the same rows in the same order. Feature columns are
    concatenated in input order and the target column is carried once.
    Overlapping feature names are rejected unless ``prefix_inputs`` is set, in
    which case every column is prefixed with the id of the node producing it.
    """

    key = OperatorKey.FEATURE_UNION
    defaults = {"prefix_inputs": False}
    n_inputs = None

    def fit(self, *datasets: Dataset, input_names: Optional[Sequence[str]] = None) -> Dataset:
        self.reset()
        merged = self._merge(datasets, input_names)
        self._columns = {}
        self._state = FrozenState({"n_inputs": len(datasets), "columns": list(merged.feature_names)})
        return merged

    def apply(self, *datasets: Dataset, input_names: Optional[Sequence[str]] = None) -> Dataset:
        if not self.is_trained:
            raise UntrainedError(f"Operator '{self.id}' must be fit before apply")
        if len(datasets) != self._state["n_inputs"]:
            raise SchemaMismatchError(
                f"Operator '{self.id}' was fit on {self._state['n_inputs']} inputs, got {len(datasets)}"
            )

        merged = self._merge(datasets, input_names)
        if tuple(merged.feature_names) != self._state["columns"]:
            raise SchemaMismatchError(f"Operator '{self.id}' produced different columns than at fit time")
        return merged

    def _merge(self, datasets: Sequence[Dataset], input_names: Optional[Sequence[str]]) -> Dataset:
        if not datasets:
            raise GraphStructureError(f"Operator '{self.id}' needs at least one input")
        input_names = list(input_names) if input_names else [f"input{i}" for i in range(len(datasets))]

        base = datasets[0]
        for other in datasets[1:]:
            if other.nrow != base.nrow or not other.row_ids.equals(base.row_ids):
                raise SchemaMismatchError(
                    f"Operator '{self.id}' cannot merge inputs that are not row-aligned "
                    f"({base.nrow} vs {other.nrow} rows)"
                )
            if other.target != base.target:
                raise SchemaMismatchError(f"Operator '{self.id}' cannot merge inputs with different targets")
            if base.target is not None and not other.target_values().equals(base.target_values()):
                raise SchemaMismatchError(f"Operator '{self.id}' received inputs with diverging target values")

        blocks = []
        types = {}
        for name, dataset in zip(input_names, datasets):
            features = dataset.features()
            column_types = dataset.feature_types
            if self.params["prefix_inputs"]:
                features = features.add_prefix(f"{name}.")
                column_types = {f"{name}.{column}": kind for column, kind in column_types.items()}
            blocks.append(features)
            types.update(column_types)

        merged = pd.concat(blocks, axis=1)
        duplicated = sorted(set(merged.columns[merged.columns.duplicated()]))
        if duplicated:
            raise SchemaMismatchError(
                f"Operator '{self.id}' received overlapping feature columns: {duplicated}",
                column=duplicated[0],
            )

        return base.with_features(merged, types)


GraphItem = Union["Graph", Operator]


def as_graph(item: GraphItem) -> "Graph":
    """Wrap an untrained copy of an operator into a single-node graph; graphs are returned as they are."""
    if isinstance(item, Graph):
        return item
    if isinstance(item, Operator):
        graph = Graph()
        graph.add_operator(item.clone())
        return graph
    raise TypeError(f"Cannot convert {type(item).__name__} to a Graph")


class Graph:
    """A DAG of operators that fits and applies as a single unit."""

    def __init__(self):
        self._nodes: Dict[str, Operator] = {}
        self._edges: List[Tuple[str, str]] = []

    # Construction

    def add_operator(self, operator: Operator) -> "Graph":
        """Add ``operator`` itself as a node; the graph owns it from then on."""
        if not isinstance(operator, Operator):
            raise TypeError(f"Expected an Operator, got {type(operator).__name__}")
        if operator.id in self._nodes:
            raise GraphStructureError(f"Duplicate operator id: '{operator.id}'")

        self._nodes[operator.id] = operator
        self.reset()
        return self

    def add_edge(self, src_id: str, dst_id: str) -> "Graph":
        """Connect the output of ``src_id`` to an input of ``dst_id``."""
        for node_id in (src_id, dst_id):
            if node_id not in self._nodes:
                raise GraphStructureError(f"Unknown operator id: '{node_id}'")
        if src_id == dst_id:
            raise GraphStructureError(f"Self-loop on operator '{src_id}'")
        if (src_id, dst_id) in self._edges:
            raise GraphStructureError(f"Duplicate edge: '{src_id}' -> '{dst_id}'")

        n_inputs = self._nodes[dst_id].n_inputs
        if n_inputs is not None and len(self.predecessors(dst_id)) >= n_inputs:
            raise GraphStructureError(f"Operator '{dst_id}' accepts only {n_inputs} input(s)")

        if self._reachable(dst_id, src_id):
            raise GraphStructureError(f"Edge '{src_id}' -> '{dst_id}' would create a cycle")

        self._edges.append((src_id, dst_id))
        self.reset()
        return self

    def _reachable(self, start: str, goal: str) -> bool:
        stack = [start]
        seen = set()
        while stack:
            node_id = stack.pop()
            if node_id == goal:
                return True
            if node_id in seen:
                continue
            seen.add(node_id)
            stack.extend(self.successors(node_id))
        return False

    @classmethod
    def chain(cls, *items: GraphItem) -> "Graph":
        """
        Connect items one after another; each item's sink feeds the next item's sources.

        The new graph holds untrained copies of the items' operators, so the
        items themselves (trained or not) are left as they are.
        """
        graph = cls()
        for item in items:
            graph._append(as_graph(item))
        return graph

    @classmethod
    def branch(cls, *items: GraphItem, merge: Optional[Operator] = None) -> "Graph":
        """
        Place items in parallel and merge their outputs.

        All branch sources receive the same input. The sink of every branch
        feeds ``merge`` (a new FeatureUnion by default), in argument order.
        Like ``chain``, the branches are copied.
        """
        if len(items) < 2:
            raise GraphStructureError("A parallel section needs at least two branches")

        graph = cls()
        sinks = []
        for item in items:
            branch = as_graph(item)
            sinks.append(branch._single_sink())
            graph._absorb(branch)

        merge = merge.clone() if merge is not None else FeatureUnion()
        graph.add_operator(merge)
        for sink in sinks:
            graph.add_edge(sink, merge.id)
        return graph

    def _append(self, other: "Graph") -> None:
        if not other._nodes:
            return
        tail = self._single_sink() if self._nodes else None
        heads = other.sources
        self._absorb(other)
        if tail is not None:
            for head in heads:
                self.add_edge(tail, head)

    def _absorb(self, other: "Graph") -> None:
        for operator in other._nodes.values():
            self.add_operator(operator.clone())
        for src_id, dst_id in other._edges:
            self.add_edge(src_id, dst_id)

    def __rshift__(self, other: GraphItem) -> "Graph":
        return Graph.chain(self, other)

    # Structure

    @property
    def ids(self) -> List[str]:
        return list(self._nodes)

    @property
    def edges(self) -> List[Tuple[str, str]]:
        return list(self._edges)

    def __getitem__(self, node_id: str) -> Operator:
        return self._nodes[node_id]

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def predecessors(self, node_id: str) -> List[str]:
        """Upstream operator ids in edge declaration order."""
        return [src for src, dst in self._edges if dst == node_id]

    def successors(self, node_id: str) -> List[str]:
        return [dst for src, dst in self._edges if src == node_id]

    @property
    def sources(self) -> List[str]:
        return [node_id for node_id in self._nodes if not self.predecessors(node_id)]

    @property
    def sinks(self) -> List[str]:
        return [node_id for node_id in self._nodes if not self.successors(node_id)]

    def _single_sink(self) -> str:
        sinks = self.sinks
        if len(sinks) != 1:
            raise GraphStructureError(f"Graph must have exactly one output operator, found {sinks}")
        return sinks[0]

    def topological_order(self) -> List[str]:
        """Operator ids in dependency order; ties keep insertion order."""
        in_degree = {node_id: len(self.predecessors(node_id)) for node_id in self._nodes}
        order = []
        ready = [node_id for node_id in self._nodes if in_degree[node_id] == 0]

        while ready:
            node_id = ready.pop(0)
            order.append(node_id)
            for successor in self.successors(node_id):
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    ready.append(successor)

        if len(order) != len(self._nodes):
            raise GraphStructureError("Graph contains a cycle")
        return order

    # Lifecycle

    @property
    def is_trained(self) -> bool:
        return bool(self._nodes) and all(operator.is_trained for operator in self._nodes.values())

    def reset(self) -> None:
        """Discard the learned state of every operator."""
        for operator in self._nodes.values():
            operator.reset()

    def fit(self, dataset: Dataset) -> Dataset:
        """
        Fit every operator once in topological order.

        Args:
            dataset: Training data fed to every source operator

        Returns:
            Output of the graph's single sink operator

        If any operator fails, the state of all operators is discarded and
        the error is re-raised.
        """
        self._single_sink()
        self.reset()
        logger.info(f"Fitting graph with {len(self)} operators on {dataset.nrow} rows")

        try:
            output = self._run(dataset, "fit")
        except Exception as e:
            logger.error(f"Graph fit failed, discarding operator state: {e}")
            self.reset()
            raise

        logger.info(f"Graph fit complete: {len(output.feature_names)} output features")
        return output

    def apply(self, dataset: Dataset) -> Dataset:
        """Apply every operator once, reusing the state learned by ``fit``."""
        if not self.is_trained:
            raise UntrainedError("Graph must be fit before apply")

        logger.debug(f"Applying graph to {dataset.nrow} rows")
        return self._run(dataset, "apply")

    def _run(self, dataset: Dataset, phase: str) -> Dataset:
        outputs: Dict[str, Dataset] = {}
        remaining = {node_id: len(self.successors(node_id)) for node_id in self._nodes}
        sink = self._single_sink()

        for node_id in self.topological_order():
            operator = self._nodes[node_id]
            upstream = self.predecessors(node_id)
            inputs = [outputs[src] for src in upstream] or [dataset]

            if operator.n_inputs == 1:
                outputs[node_id] = getattr(operator, phase)(inputs[0])
            else:
                outputs[node_id] = getattr(operator, phase)(*inputs, input_names=upstream or ["input"])

            # Drop intermediate outputs once every consumer has run
            for src in upstream:
                remaining[src] -= 1
                if remaining[src] == 0 and src != sink:
                    del outputs[src]

        return outputs[sink]

    # Parameters

    def get_params(self) -> Dict[str, Any]:
        """All operator parameters, named ``<operator_id>.<param>``."""
        params = {}
        for node_id, operator in self._nodes.items():
            for name, value in operator.get_params().items():
                params[f"{node_id}.{name}"] = value
        return params

    def set_params(self, **params) -> "Graph":
        by_node: Dict[str, Dict[str, Any]] = {}
        for full_name, value in params.items():
            node_id, _, name = full_name.rpartition(".")
            if node_id not in self._nodes:
                raise ValueError(f"Unknown graph parameter: {full_name}")
            by_node.setdefault(node_id, {})[name] = value

        for node_id, node_params in by_node.items():
            self._nodes[node_id].set_params(**node_params)
        return self

    def clone(self) -> "Graph":
        """Untrained deep copy of the graph."""
        cloned = copy.deepcopy(self)
        cloned.reset()
        return cloned

    def __repr__(self) -> str:
        edges = ", ".join(f"{src}->{dst}" for src, dst in self._edges)
        return f"Graph(operators={self.ids}, edges=[{edges}])"
