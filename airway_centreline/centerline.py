"""Centreline extraction: topological thinning and branch tree decomposition."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
from scipy import ndimage
from skimage.morphology import skeletonize

from .config import SkeletonParams
from .errors import Diagnostic, DiagnosticKind, PipelineCancelled, ThinningTopologyViolation
from .graph_structure import AirwayTree, Branch, Coord, as_coord
from .segmentation_interface import SegmentedTreeInput

logger = logging.getLogger(__name__)

CancelCheck = Optional[Callable[[], bool]]

STRUCTURE_26 = ndimage.generate_binary_structure(rank=3, connectivity=3)

# One offset from each +/- pair of the 26-neighbourhood.
_FORWARD_OFFSETS = [
    (dx, dy, dz)
    for dx in (-1, 0, 1)
    for dy in (-1, 0, 1)
    for dz in (-1, 0, 1)
    if (dx, dy, dz) > (0, 0, 0)
]


def check_cancel(should_cancel: CancelCheck, where: str) -> None:
    if should_cancel is not None and should_cancel():
        raise PipelineCancelled(f"Cancelled {where}.")


def _skeletonize(mask: np.ndarray) -> np.ndarray:
    """Lee thinning (26-connectivity) restricted to the mask bounding box."""
    coords = np.argwhere(mask)
    lo = np.maximum(coords.min(axis=0) - 1, 0)
    hi = np.minimum(coords.max(axis=0) + 2, mask.shape)
    window = tuple(slice(int(a), int(b)) for a, b in zip(lo, hi))
    skeleton = np.zeros(mask.shape, dtype=bool)
    skeleton[window] = skeletonize(mask[window]) > 0
    return skeleton


def _restore_erased_components(mask: np.ndarray, skeleton: np.ndarray, spacing: np.ndarray) -> int:
    """Give every mask component that thinned away one skeleton voxel.

    Lee thinning deletes blocks and rods with an even cross-section
    entirely. The kept voxel is the component's deepest point (largest
    distance to the wall), ties going to the smallest coordinate.
    """
    labels, num = ndimage.label(mask, structure=STRUCTURE_26)
    erased = set(range(1, num + 1)) - set(np.unique(labels[skeleton]).tolist())
    if not erased:
        return 0
    depth = ndimage.distance_transform_edt(mask, sampling=spacing)
    for label in sorted(erased):
        coords = np.argwhere(labels == label)
        best = coords[int(np.argmax(depth[tuple(coords.T)]))]
        skeleton[tuple(best)] = True
    logger.debug("Restored a single skeleton voxel for %d erased component(s)", len(erased))
    return len(erased)


def _build_graph(skeleton: np.ndarray, spacing: Sequence[float]) -> nx.Graph:
    """26-adjacency graph of skeleton voxels, weighted by physical edge length."""
    coords = np.argwhere(skeleton)
    lookup = -np.ones(np.asarray(skeleton.shape) + 2, dtype=np.int64)
    lookup[tuple((coords + 1).T)] = np.arange(coords.shape[0])
    spacing_arr = np.asarray(spacing, dtype=np.float64)

    graph = nx.Graph()
    nodes = [as_coord(c) for c in coords]
    graph.add_nodes_from(nodes)
    for offset in _FORWARD_OFFSETS:
        off = np.asarray(offset)
        neighbour = lookup[tuple((coords + 1 + off).T)]
        hits = np.nonzero(neighbour >= 0)[0]
        weight = float(np.linalg.norm(off * spacing_arr))
        graph.add_edges_from((nodes[a], nodes[neighbour[a]], {"weight": weight}) for a in hits)
    return graph


def _remove_diagonal_shortcuts(graph: nx.Graph) -> int:
    """Drop edges bridged by a common neighbour through two strictly shorter edges."""
    removed = 0
    edges = sorted(graph.edges(data="weight"), key=lambda e: (-e[2], e[0], e[1]))
    for u, v, weight in edges:
        if not graph.has_edge(u, v):
            continue
        for c in sorted(set(graph[u]) & set(graph[v])):
            if graph[u][c]["weight"] < weight and graph[c][v]["weight"] < weight:
                graph.remove_edge(u, v)
                removed += 1
                break
    return removed


def _split_cycle(graph: nx.Graph, cycle: List[Coord]) -> Tuple[List[List[Coord]], int]:
    """Split an ordered cycle into chains running between junction voxels."""
    junctions = [i for i, node in enumerate(cycle) if graph.degree[node] >= 3]
    if not junctions:
        return [cycle + [cycle[0]]], 0
    rotated = cycle[junctions[0]:] + cycle[: junctions[0]]
    chains: List[List[Coord]] = []
    current = [rotated[0]]
    for node in rotated[1:]:
        current.append(node)
        if graph.degree[node] >= 3:
            chains.append(current)
            current = [node]
    current.append(rotated[0])
    chains.append(current)
    return chains, len(junctions)


def _chain_length(graph: nx.Graph, chain: List[Coord]) -> float:
    return float(sum(graph[a][b]["weight"] for a, b in zip(chain[:-1], chain[1:])))


def _break_cycles(graph: nx.Graph) -> List[Coord]:
    """Open every cycle of the skeleton graph; return the voxels deleted doing so.

    The shortest chain of each cycle is cut. Its interior voxels are deleted
    when the cycle has two or more junctions; otherwise (rings, lassos, small
    junction triangles) only its shortest voxel edge is removed.
    """
    removed: List[Coord] = []
    while True:
        cycles = nx.cycle_basis(graph)
        if not cycles:
            break
        cycle = min(cycles, key=lambda c: (len(c), min(c)))
        chains, num_junctions = _split_cycle(graph, cycle)
        chain = min(chains, key=lambda ch: (_chain_length(graph, ch), ch[0], ch[-1]))
        interior = chain[1:-1]
        if num_junctions >= 2 and interior:
            graph.remove_nodes_from(interior)
            removed.extend(interior)
            logger.debug("Broke cycle of %d voxels by removing %d voxels", len(cycle), len(interior))
        else:
            u, v = min(
                zip(chain[:-1], chain[1:]),
                key=lambda e: (graph[e[0]][e[1]]["weight"], e),
            )
            graph.remove_edge(u, v)
            logger.debug("Broke cycle of %d voxels by removing edge %s-%s", len(cycle), u, v)
    return removed


def _check_topology(
    mask: np.ndarray,
    graph: nx.Graph,
    tree_input: SegmentedTreeInput,
) -> List[List[Coord]]:
    """Return skeleton components; raise if thinning split a mask component."""
    mask_labels, num_mask_components = ndimage.label(mask, structure=STRUCTURE_26)
    components = sorted((sorted(c) for c in nx.connected_components(graph)), key=lambda c: c[0])
    per_label: Dict[int, List[List[Coord]]] = {}
    for component in components:
        per_label.setdefault(int(mask_labels[component[0]]), []).append(component)

    for label in range(1, num_mask_components + 1):
        found = per_label.get(label, [])
        if len(found) <= 1:
            continue
        coords = [comp[0] for comp in found]
        message = f"Thinning split a connected mask component into {len(found)} pieces"
        raise ThinningTopologyViolation(message, tree_input.branch_for_voxel(coords[0]), coords)
    return components


def _choose_start(
    graph: nx.Graph,
    component: List[Coord],
    seed: Optional[np.ndarray],
    spacing: np.ndarray,
    boundary_distance: Optional[np.ndarray],
) -> Tuple[Coord, float]:
    """Pick the component's start endpoint and return it with its seed distance."""
    endpoints = [node for node in component if graph.degree[node] <= 1] or component
    points = np.asarray(endpoints, dtype=np.float64)
    if seed is not None:
        distances = np.linalg.norm((points - seed) * spacing, axis=1)
        idx = int(np.argmin(distances))
        return endpoints[idx], float(distances[idx])
    values = boundary_distance[tuple(np.asarray(endpoints).T)]
    return endpoints[int(np.argmax(values))], float("inf")


def _decompose(
    graph: nx.Graph,
    start: Coord,
    tree: AirwayTree,
    parent_id: Optional[int],
) -> int:
    """Split an acyclic component into branches by a depth-first walk from ``start``."""
    visited = set()
    root_id = tree.next_id()
    next_id = root_id
    stack: List[Tuple[Coord, Optional[int]]] = [(start, parent_id)]
    while stack:
        node, parent = stack.pop()
        points: List[Coord] = []
        exits: List[Coord] = []
        bifurcation: Optional[Coord] = None
        terminal = False
        current = node
        while True:
            points.append(current)
            visited.add(current)
            if graph.degree[current] >= 3:
                cluster = _junction_cluster(graph, current, visited)
                visited.update(cluster)
                points.extend(cluster[1:])
                bifurcation = max(cluster, key=lambda n: graph.degree[n])
                exits = sorted({n for c in cluster for n in graph[c] if n not in visited})
                break
            following = sorted(n for n in graph[current] if n not in visited)
            if not following:
                terminal = True
                break
            current = following[0]

        branch = Branch(
            id=next_id,
            points=np.asarray(points, dtype=np.int64),
            parent_id=parent,
            terminal=terminal,
            bifurcation=bifurcation,
        )
        tree.add_branch(branch)
        for exit_node in reversed(exits):
            stack.append((exit_node, branch.id))
        next_id += 1
    return root_id


def _junction_cluster(graph: nx.Graph, first: Coord, visited: set) -> List[Coord]:
    """Junction voxels connected to ``first`` through junction voxels, BFS order."""
    cluster = [first]
    members = {first}
    queue = deque([first])
    while queue:
        node = queue.popleft()
        for n in sorted(graph[node]):
            if n not in members and n not in visited and graph.degree[n] >= 3:
                members.add(n)
                cluster.append(n)
                queue.append(n)
    return cluster


def skeletonize_tree(
    tree_input: SegmentedTreeInput,
    seed: Optional[Sequence[float]] = None,
    params: Optional[SkeletonParams] = None,
    should_cancel: CancelCheck = None,
) -> Tuple[AirwayTree, List[Diagnostic]]:
    """Thin the segmented airway to a centreline and decompose it into a branch tree.

    ``seed`` is the trachea point in local voxel coordinates; the endpoint
    nearest to it becomes the start point. Without a seed the endpoint with
    the largest distance to the airway wall is used.
    """
    params = params or SkeletonParams()
    diagnostics: List[Diagnostic] = []
    tree = AirwayTree()

    mask = tree_input.to_mask()
    if not mask.any():
        message = "Segmented airway mask is empty; returning an empty tree."
        logger.warning(message)
        diagnostics.append(Diagnostic(DiagnosticKind.INPUT_EMPTY, message))
        return tree, diagnostics

    spacing = np.asarray(tree_input.spacing, dtype=np.float64)
    skeleton = _skeletonize(mask)
    _restore_erased_components(mask, skeleton, spacing)
    graph = _build_graph(skeleton, spacing)
    components = _check_topology(mask, graph, tree_input)
    shortcuts = _remove_diagonal_shortcuts(graph)
    logger.info(
        "Thinned %d mask voxels to %d skeleton voxels in %d component(s); %d shortcut edges dropped",
        int(mask.sum()),
        graph.number_of_nodes(),
        len(components),
        shortcuts,
    )

    seed_arr = None if seed is None else np.asarray(seed, dtype=np.float64).reshape(3)
    boundary_distance = None
    if seed_arr is None:
        boundary_distance = ndimage.distance_transform_edt(mask, sampling=spacing)

    prepared = []
    for component in components:
        check_cancel(should_cancel, "during skeleton decomposition")
        subgraph = graph.subgraph(component).copy()
        removed = _break_cycles(subgraph)
        tree.loop_removed_points.extend(removed)
        kept = [n for n in component if n in subgraph]
        start, distance = _choose_start(subgraph, kept, seed_arr, spacing, boundary_distance)
        prepared.append((subgraph, kept, start, distance))

    if seed_arr is not None:
        main = min(range(len(prepared)), key=lambda i: prepared[i][3])
        if prepared[main][3] > params.seed_tolerance_mm:
            logger.warning(
                "Seed %s is %.1f mm from the nearest skeleton endpoint",
                tuple(seed_arr),
                prepared[main][3],
            )
    else:
        main = max(range(len(prepared)), key=lambda i: len(prepared[i][1]))
    order = [main] + [i for i in range(len(prepared)) if i != main]

    parent_id = None
    if len(prepared) > 1:
        tree.add_branch(Branch(id=0, points=np.zeros((0, 3), dtype=np.int64)))
        tree.root_id = 0
        tree.synthetic_root = True
        parent_id = 0
        message = f"Airway mask has {len(prepared)} disconnected components; joined under a synthetic root."
        logger.info(message)
        diagnostics.append(Diagnostic(DiagnosticKind.INPUT_DISCONNECTED, message))

    for i in order:
        check_cancel(should_cancel, "during skeleton decomposition")
        subgraph, _, start, _ = prepared[i]
        component_root = _decompose(subgraph, start, tree, parent_id)
        if tree.root_id is None:
            tree.root_id = component_root
    tree.start_point = prepared[main][2]

    logger.info(
        "Decomposed skeleton into %d branches (%d loop voxels removed), start point %s",
        tree.num_branches(),
        len(tree.loop_removed_points),
        tree.start_point,
    )
    return tree, diagnostics


def radius_prior_from_distance_transform(
    mask: np.ndarray,
    tree: AirwayTree,
    spacing: Sequence[float],
) -> Dict[int, float]:
    """Coarse per-branch radius (mm): median distance-to-wall over branch points."""
    dt = ndimage.distance_transform_edt(np.asarray(mask) > 0, sampling=tuple(float(s) for s in spacing))
    priors: Dict[int, float] = {}
    for branch in tree.iter_branches():
        if branch.num_points() == 0:
            continue
        values = dt[tuple(branch.points.T)]
        priors[branch.id] = float(np.median(values))
    return priors
