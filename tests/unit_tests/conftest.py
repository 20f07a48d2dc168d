import os
import tempfile

import numpy as np
import pytest

from alphalipid.constants.keys import Section
from alphalipid.rules.catalog import RuleSet
from alphalipid.rules.models import FragmentRule, IntensityRule
from alphalipid.rules.parser import read_rules

SAMPLE_RULES = """\
# phosphatidylcholine, positive mode
[GENERAL]
AmountOfChains=2
AddChainPositions=0
BasePeakCutoff=1%

[HEAD]
!FRAGMENTS
Name=NL_PC\tFormula=$PRECURSOR-HG_PC\tCharge=1\tMSLevel=2\tmandatory=false
Name=HG_PC\tFormula=C5H15NO4P\tCharge=1\tMSLevel=2\tmandatory=true
!INTENSITIES
Equation=HG_PC>NL_PC\tmandatory=false

[CHAINS]
!FRAGMENTS
Name=FA\tFormula=$CHAIN-H\tCharge=1\tMSLevel=2\tmandatory=true
Name=NL_FA\tFormula=$PRECURSOR-$CHAIN\tCharge=1\tMSLevel=2\tmandatory=false
Name=NL_FA_H2O\tFormula=NL_FA-H2O\tCharge=1\tMSLevel=2\tmandatory=false
!INTENSITIES
Equation=FA>0.01*$BASEPEAK\tmandatory=false

[POSITION]
!INTENSITIES
Equation=NL_FA[2]>NL_FA[1]\tmandatory=false
"""


def random_tempfolder():
    """Create a randomly named temp folder in the system temp folder

    Returns
    -------
    path : str
        Path to the created temp folder

    """
    tempdir = tempfile.gettempdir()
    # 6 alphanumeric characters
    random_foldername = "alphalipid_" + "".join(
        np.random.choice(list("abcdefghijklmnopqrstuvwxyz0123456789"), 6)
    )
    path = os.path.join(tempdir, random_foldername)
    os.makedirs(path, exist_ok=True)
    return path


@pytest.fixture()
def sample_rule_set():
    return read_rules(SAMPLE_RULES, source="sample.rules")


@pytest.fixture()
def linear_rule_set():
    """Head fragments frag_a <- frag_b plus an independent frag_c, with one equation on frag_b and one on frag_c."""
    return RuleSet.build(
        head_rules=[
            FragmentRule("frag_a", "$PRECURSOR-H2O"),
            FragmentRule("frag_b", "frag_a-CO2"),
            FragmentRule("frag_c", "C3H9N"),
        ],
        equations=[
            IntensityRule("frag_b>frag_c", section=Section.HEAD),
            IntensityRule("frag_c>10", section=Section.HEAD),
        ],
    )
