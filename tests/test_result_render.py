import json

import numpy as np
import pytest

from airway_centreline.graph_structure import AirwayTree, Branch, PointClass
from airway_centreline.io import VolumeData
from airway_centreline.pruning import remove_trailing_endpoints
from airway_centreline.render import LABEL_VALUES, render_label_volume
from airway_centreline.result import assemble_result


@pytest.fixture
def pruned_tree(line):
    tree = AirwayTree(root_id=0)
    tree.add_branch(Branch(id=0, points=line((5, 5, 0), 10), bifurcation=(5, 5, 9)))
    tree.add_branch(Branch(id=1, points=line((5, 6, 10), 4), parent_id=0, terminal=True))
    tree.add_branch(Branch(id=2, points=line((5, 4, 10), 8), parent_id=0, terminal=True))
    tree.start_point = (5, 5, 0)
    tree.loop_removed_points = [(7, 7, 7)]
    remove_trailing_endpoints(tree)
    tree.get_branch(0).radii = np.full(10, 2.0)
    tree.get_branch(0).radii[3] = np.nan
    return tree


def test_collections_partition_the_original_centreline(pruned_tree):
    result = assemble_result(pruned_tree)

    assert len(result.original_centreline_points) == 10 + 4 + 8 + 1
    assert set(result.centreline_points) == set(result.original_centreline_points) - set(result.removed_points)
    assert not set(result.centreline_points) & set(result.removed_points)
    assert result.removed_points[-1] == (7, 7, 7)
    assert result.bifurcation_points == [(5, 5, 9)]
    assert result.start_point == (5, 5, 0)
    assert result.radii[(5, 5, 0)] == pytest.approx(2.0)
    assert result.radii[(5, 5, 3)] is None
    assert (5, 6, 10) not in result.radii


def test_point_classes_follow_write_order(pruned_tree):
    classes = assemble_result(pruned_tree).point_classes()
    assert list(classes.values()).count(PointClass.START) == 1
    assert classes[(5, 5, 0)] is PointClass.START
    assert classes[(5, 5, 9)] is PointClass.BIFURCATION
    assert classes[(5, 5, 4)] is PointClass.SKELETON
    assert classes[(5, 6, 11)] is PointClass.REMOVED


def test_records_and_json(pruned_tree, tmp_path):
    result = assemble_result(pruned_tree, spacing=(0.5, 0.5, 1.0))
    records = result.to_records()
    assert [r["branch_id"] for r in records] == [0, 1, 2]
    assert records[0]["radii"][3] is None
    assert records[0]["classes"][0] == "start"
    assert records[1]["parent_id"] == 0
    assert records[0]["length_mm"] == pytest.approx(9.0)
    assert records[2]["length_mm"] == pytest.approx(7.0)
    assert set(records[1]["classes"]) == {"removed"}

    path = tmp_path / "tree.json"
    result.save_records(path)
    with path.open(encoding="utf-8") as fh:
        payload = json.load(fh)
    assert payload["branches"] == records
    assert payload["spacing"] == [0.5, 0.5, 1.0]

    summary = result.summary()
    assert summary["branches"] == 1
    assert summary["removed_branches"] == 2
    assert summary["radii_absent"] == 1


def test_render_labels(pruned_tree):
    labels = render_label_volume(assemble_result(pruned_tree), shape=(12, 12, 20))

    assert labels.dtype == np.uint8
    assert labels[5, 5, 0] == LABEL_VALUES[PointClass.START] == 4
    assert labels[5, 5, 9] == 3
    assert labels[5, 5, 5] == 1
    assert labels[5, 6, 12] == 6
    assert labels[7, 7, 7] == 6
    assert np.count_nonzero(labels) == 23
    assert set(np.unique(labels)) == {0, 1, 3, 4, 6}


def test_render_maps_global_coordinates_and_skips_outside(pruned_tree):
    result = assemble_result(pruned_tree, origin=(100, 100, 100))
    template = VolumeData(
        data=np.zeros((8, 8, 8)), affine=np.eye(4), spacing=(1.0, 1.0, 1.0), origin=(102, 102, 102)
    )
    labels = render_label_volume(result, template=template)

    assert labels.shape == (8, 8, 8)
    # Global (105, 105, 104) -> template-local (3, 3, 2).
    assert labels[3, 3, 2] == 1
    # Start point (105, 105, 100) lies below the template and is skipped.
    assert 4 not in np.unique(labels)


def test_render_requires_a_grid(pruned_tree):
    with pytest.raises(ValueError):
        render_label_volume(assemble_result(pruned_tree))


def test_empty_result_renders_blank():
    result = assemble_result(AirwayTree())
    assert result.is_empty()
    labels = render_label_volume(result, shape=(4, 4, 4))
    assert not labels.any()
