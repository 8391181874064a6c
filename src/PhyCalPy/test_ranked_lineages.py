import numpy as np
import pytest
from PhyCalPy.RankedLineages import *


################
### HELPERS ####
################

def nested_five_taxa() -> RankedLineageIterator:
    """
    {A,B} inside {A,B,C,D}, with E outside both. Leaves are A=0 .. E=4.
    """
    return RankedLineageIterator([[0, 1], [0, 1, 2, 3]],
                                 [[], [0]],
                                 [False, True],
                                 5)

################
#### TESTS #####
################

def test_groups():
    lins = nested_five_taxa()
    assert lins.has_root_group
    assert lins.n_groups == 3
    assert lins.n_levels == 3
    assert [lins.n_start(g) for g in range(3)] == [2, 2, 1]

    assert lins.setup([0, 1]) == 3
    assert [lins.final_level(g) for g in range(3)] == [0, 1, 2]
    assert lins.is_root_group(2)
    assert not lins.is_root_group(1)

    expected = np.zeros((3, 3), dtype=np.int64)
    expected[0, 1] = 1
    expected[1, 2] = 1
    assert np.array_equal(lins.all_joiners(), expected)


def test_histories():
    """
    The outer clade either keeps both of its free lineages through the first
    level or merges them there. Everything else is forced.
    """
    lins = nested_five_taxa()
    lins.setup([0, 1])
    histories = list(lins)

    assert len(histories) == 2
    assert histories[0].tolist() == [[2, 2, 1], [0, 2, 1], [0, 0, 1]]
    assert histories[1].tolist() == [[2, 1, 1], [0, 2, 1], [0, 0, 1]]

    # restartable and deterministic
    again = list(lins)
    assert all(np.array_equal(a, b) for a, b in zip(histories, again))


def test_calibrated_root():
    lins = RankedLineageIterator([[0, 1], [0, 1, 2, 3]],
                                 [[], [0]],
                                 [False, True],
                                 4)
    assert not lins.has_root_group
    assert lins.n_groups == 2
    assert lins.n_levels == 2
    lins.setup([0, 1])
    assert len(list(lins)) == 2


def test_disjoint_clades():
    """
    Two cherries under a free root: only one history, with the root group
    picking up one lineage at each calibrated height.
    """
    lins = RankedLineageIterator([[0, 1], [2, 3]], [[], []], [True, True], 4)
    assert lins.n_start(2) == 0

    lins.setup([1, 0])
    histories = list(lins)
    assert len(histories) == 1
    assert histories[0].tolist() == [[2, 2, 0], [2, 0, 1], [0, 0, 1]]


def test_setup_required():
    lins = nested_five_taxa()
    with pytest.raises(RuntimeError):
        iter(lins)
    with pytest.raises(ValueError):
        lins.setup([0, 0])
