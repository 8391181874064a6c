import pytest
from PhyCalPy.Tree import *


################
### HELPERS ####
################

SIX_TAXA = "((((A:1,B:1):1,(C:0.5,D:0.5):1.5):1,E:3):1,F:4);"


def mrca(tree : Tree, *names : str) -> int:
    return tree.common_ancestor_of(tree.taxon_index(n) for n in names)

################
#### TESTS #####
################

def test_from_newick():
    """
    Leaves come first, heights are measured from the tips and every internal
    node has two children.
    """
    tree = Tree.from_newick(SIX_TAXA)

    assert tree.get_leaf_node_count() == 6
    assert tree.get_node_count() == 11
    assert tree.get_internal_node_count() == 5
    assert sorted(tree.get_taxa()) == ["A", "B", "C", "D", "E", "F"]

    for leaf in range(6):
        assert tree.is_leaf(leaf)
        assert tree.get_height(leaf) == 0.0

    assert tree.get_height(tree.root) == pytest.approx(4.0)
    assert tree.get_height(mrca(tree, "A", "B")) == pytest.approx(1.0)
    assert tree.get_height(mrca(tree, "C", "D")) == pytest.approx(0.5)
    assert tree.get_height(mrca(tree, "A", "D")) == pytest.approx(2.0)
    assert tree.get_height(mrca(tree, "A", "E")) == pytest.approx(3.0)
    assert mrca(tree, "A", "F") == tree.root
    assert tree.is_valid()


def test_leaf_count_and_lookup():
    tree = Tree.from_newick(SIX_TAXA)

    assert tree.leaf_count(mrca(tree, "A", "D")) == 4
    assert tree.leaf_count(mrca(tree, "A", "C")) == 4
    assert tree.leaf_count(tree.root) == 6
    assert tree.leaf_count(tree.taxon_index("E")) == 1
    assert tree.taxon_index("Z") == -1


def test_common_ancestor_zero_length_branch():
    """
    {A, B} hangs from {A, B, C} on a zero-length branch, so the two nodes
    share a height. The MRCA of a node and its ancestor is the ancestor, in
    either argument order.
    """
    tree = Tree.from_newick("(((A:1,B:1):0,C:1):1,D:2);")
    ab = mrca(tree, "A", "B")
    abc = tree.get_parent(ab)

    assert tree.get_height(ab) == tree.get_height(abc)
    assert tree.common_ancestor(ab, abc) == abc
    assert tree.common_ancestor(abc, ab) == abc
    assert tree.common_ancestor(ab, tree.taxon_index("C")) == abc
    assert mrca(tree, "A", "B", "C") == abc
    assert tree.leaf_count(mrca(tree, "C", "B")) == 3
    assert mrca(tree, "A", "D") == tree.root


def test_bad_newick():
    with pytest.raises(TreeError):
        Tree.from_newick("((A:1,B:1,C:1):1,D:2);")
    with pytest.raises(TreeError):
        Tree.from_newick("((A:1,B:2):1,C:2);")


def test_copy_and_newick_round_trip():
    tree = Tree.from_newick(SIX_TAXA)
    again = Tree.from_newick(tree.to_newick())

    for a in ["A", "C", "E"]:
        for b in ["B", "D", "F"]:
            assert again.get_height(mrca(again, a, b)) == \
                pytest.approx(tree.get_height(mrca(tree, a, b)))

    clone = tree.copy()
    clone.set_height(clone.root, 10.0)
    assert tree.get_height(tree.root) == pytest.approx(4.0)

    tree.assign_from(clone)
    assert tree.get_height(tree.root) == pytest.approx(10.0)


def test_scale_and_replace_child():
    tree = Tree.from_newick("((A:1,B:1):1,C:2);")
    assert tree.scale(2.0) == 2
    assert tree.get_height(tree.root) == pytest.approx(4.0)
    assert tree.get_height(tree.taxon_index("A")) == 0.0

    ab = mrca(tree, "A", "B")
    c = tree.taxon_index("C")
    a = tree.taxon_index("A")
    with pytest.raises(TreeError):
        tree.replace_child(ab, c, a)

    tree.replace_child(ab, a, c)
    assert c in tree.get_children(ab)
    assert tree.get_parent(c) == ab


def test_tree_builder():
    builder = TreeBuilder(["A", "B", "C"])
    ab = builder.connect(builder.leaf(0), builder.leaf(1), 1.0)

    with pytest.raises(TreeError):
        builder.leaf(0)
    with pytest.raises(TreeError):
        builder.connect(ab, 2, 0.5)
    with pytest.raises(TreeError):
        builder.build()

    builder.connect(ab, builder.leaf(2), 2.0)
    tree = builder.build()
    assert tree.get_taxa() == ["A", "B", "C"]
    assert tree.get_height(tree.root) == 2.0
    assert tree.is_valid()
