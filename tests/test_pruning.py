import numpy as np
import pytest

from airway_centreline.centerline import skeletonize_tree
from airway_centreline.config import PruningParams
from airway_centreline.errors import PipelineCancelled
from airway_centreline.graph_structure import AirwayTree, Branch
from airway_centreline.pruning import remove_trailing_endpoints
from airway_centreline.segmentation_interface import SegmentedTreeInput


def _fork(line, trunk, left, right):
    tree = AirwayTree(root_id=0)
    tree.add_branch(Branch(id=0, points=line((10, 10, 0), trunk), bifurcation=(10, 10, trunk - 1)))
    tree.add_branch(Branch(id=1, points=line((10, 9, trunk), left), parent_id=0, terminal=True))
    tree.add_branch(Branch(id=2, points=line((10, 11, trunk), right), parent_id=0, terminal=True))
    tree.start_point = (10, 10, 0)
    return tree


def test_short_terminal_branch_is_removed(line):
    tree = _fork(line, 200, 10, 300)
    removed = remove_trailing_endpoints(tree)

    assert tree.removed_branch_ids == [1]
    assert len(removed) == 10
    assert removed[0] == (10, 9, 200)
    assert tree.get_branch(0).child_ids == [2]


def test_pruning_is_not_cascading(line):
    tree = _fork(line, 30, 10, 20)
    tree.add_branch(Branch(id=3, points=line((11, 11, 30), 5), parent_id=0, terminal=True))

    remove_trailing_endpoints(tree)
    assert sorted(tree.removed_branch_ids) == [1, 2, 3]
    root = tree.get_branch(0)
    # The exposed root still ends at its bifurcation and is kept.
    assert root.is_leaf() and not root.terminal and not root.removed


def test_pruning_is_idempotent(line):
    tree = _fork(line, 200, 10, 300)
    remove_trailing_endpoints(tree)
    before = tree.to_dict()
    assert remove_trailing_endpoints(tree) == []
    assert tree.to_dict() == before


def test_single_branch_tree_is_kept(line):
    tree = AirwayTree(root_id=0)
    tree.add_branch(Branch(id=0, points=line((0, 0, 0), 20), terminal=True))
    tree.start_point = (0, 0, 0)
    assert remove_trailing_endpoints(tree) == []
    assert not tree.get_branch(0).removed


def test_start_branch_under_synthetic_root_is_kept(line):
    tree = AirwayTree(root_id=0)
    tree.synthetic_root = True
    tree.add_branch(Branch(id=0, points=np.zeros((0, 3))))
    tree.add_branch(Branch(id=1, points=line((0, 0, 0), 20), parent_id=0, terminal=True))
    tree.add_branch(Branch(id=2, points=line((9, 9, 0), 20), parent_id=0, terminal=True))
    tree.start_point = (0, 0, 0)

    remove_trailing_endpoints(tree)
    assert tree.removed_branch_ids == [2]


def test_threshold_is_configurable(line):
    tree = _fork(line, 200, 10, 300)
    remove_trailing_endpoints(tree, PruningParams(voxel_limit=10))
    assert tree.removed_branch_ids == []
    remove_trailing_endpoints(tree, PruningParams(voxel_limit=11))
    assert tree.removed_branch_ids == [1]


def test_cancellation_between_branches(line):
    tree = _fork(line, 200, 10, 20)
    with pytest.raises(PipelineCancelled):
        remove_trailing_endpoints(tree, should_cancel=lambda: True)
    assert tree.removed_branch_ids == []


def test_stub_is_removed_from_long_tube(stub_tube):
    mask, seed = stub_tube
    tree, _ = skeletonize_tree(SegmentedTreeInput.from_mask(mask), seed=seed)
    removed = remove_trailing_endpoints(tree)

    assert tree.removed_branch_ids
    assert any(p[0] >= 90 for p in removed)
    live = np.vstack([br.points for br in tree.iter_depth_first()])
    assert live[:, 0].max() <= 24
    assert live[:, 2].max() >= 340
    assert live[:, 2].min() <= 20
    assert remove_trailing_endpoints(tree) == []
