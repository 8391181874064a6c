import math
import pytest
from PhyCalPy.NumericTables import *


################
#### TESTS #####
################

def test_log_add():
    """
    log_add must agree with the direct computation where that is safe, treat
    -inf as the identity, and not overflow for huge or tiny operands.
    """
    assert log_add(math.log(2), math.log(3)) == pytest.approx(math.log(5))
    assert log_add(math.log(3), math.log(2)) == pytest.approx(math.log(5))

    assert log_add(-math.inf, 1.5) == 1.5
    assert log_add(1.5, -math.inf) == 1.5
    assert log_add(-math.inf, -math.inf) == -math.inf

    assert log_add(1000.0, 1000.0) == pytest.approx(1000.0 + math.log(2))
    assert log_add(0.0, -800.0) == pytest.approx(0.0)
    assert log_add(-800.0, -800.0) == pytest.approx(-800.0 + math.log(2))


def test_tables():
    tables = LogTables(8)

    assert tables.lints[0] == -math.inf
    assert tables.lints[5] == pytest.approx(math.log(5))

    assert tables.lc2[0] == -math.inf
    assert tables.lc2[1] == -math.inf
    assert tables.lc2[2] == pytest.approx(0.0)
    assert tables.lc2[4] == pytest.approx(math.log(6))

    assert tables.lfactorials[0] == 0.0
    assert tables.lfactorials[5] == pytest.approx(math.log(120))

    # 1, 1, 3, 18, 180 ordered merge sequences for 1..5 lineages
    assert tables.lnr[0] == -math.inf
    assert tables.lnr[1] == 0.0
    assert tables.lnr[2] == pytest.approx(0.0)
    assert tables.lnr[3] == pytest.approx(math.log(3))
    assert tables.lnr[4] == pytest.approx(math.log(18))
    assert tables.lnr[5] == pytest.approx(math.log(180))


def test_tables_too_small():
    with pytest.raises(ValueError):
        LogTables(1)
