import pytest

from alphalipid.constants.keys import Section
from alphalipid.exceptions import UnknownFragmentError
from alphalipid.rules.cascade import remove_fragment
from alphalipid.rules.catalog import RuleSet
from alphalipid.rules.models import FragmentRule, IntensityRule


def test_remove_fragment_cascades_to_dependents(linear_rule_set):
    """Test that removing frag_a also removes frag_b, which is built from it, and equations on frag_b."""
    # when
    rule_set, removed, dropped = remove_fragment(linear_rule_set, Section.HEAD, "frag_a")

    assert removed == {"frag_a", "frag_b"}
    assert set(rule_set.head) == {"frag_c"}
    assert rule_set.head.order_names == ("frag_c",)
    assert dropped == (IntensityRule("frag_b>frag_c"),)
    assert rule_set.equations.head == (IntensityRule("frag_c>10"),)


def test_remove_fragment_does_not_modify_input(linear_rule_set):
    # when
    remove_fragment(linear_rule_set, Section.HEAD, "frag_a")

    assert set(linear_rule_set.head) == {"frag_a", "frag_b", "frag_c"}
    assert len(linear_rule_set.equations) == 2


def test_remove_leaf_fragment(linear_rule_set):
    rule_set, removed, dropped = remove_fragment(linear_rule_set, Section.HEAD, "frag_b")

    assert removed == {"frag_b"}
    assert rule_set.head.order_names == ("frag_a", "frag_c")
    assert len(dropped) == 1


def test_remove_head_fragment_cascades_into_chain():
    """Test that chain fragments built from a removed head fragment are removed along with their equations."""
    rule_set = RuleSet.build(
        head_rules=[FragmentRule("HG_PC", "C5H15NO4P")],
        chain_rules=[
            FragmentRule("FA_HG", "HG_PC+$CHAIN"),
            FragmentRule("FA_HG_H2O", "FA_HG-H2O"),
            FragmentRule("FA", "$CHAIN-H"),
        ],
        equations=[
            IntensityRule("FA>HG_PC", section=Section.CHAIN),
            IntensityRule("FA_HG_H2O[1]>FA_HG_H2O[2]", section=Section.POSITION),
            IntensityRule("FA[1]>FA[2]", section=Section.POSITION),
        ],
    )

    # when
    new_rule_set, removed, dropped = remove_fragment(rule_set, Section.HEAD, "HG_PC")

    assert removed == {"HG_PC", "FA_HG", "FA_HG_H2O"}
    assert set(new_rule_set.chain) == {"FA"}
    assert new_rule_set.equations.chain == ()
    assert new_rule_set.equations.position == (
        IntensityRule("FA[1]>FA[2]", section=Section.POSITION),
    )
    assert len(dropped) == 2


def test_remove_fragment_keeps_previously_unresolved_rules():
    """Test that rules which were unresolved before the removal are not part of the cascade."""
    rule_set = RuleSet.build(
        head_rules=[
            FragmentRule("frag_a", "H2O"),
            FragmentRule("frag_b", "frag_a+H"),
            FragmentRule("frag_x", "frag_a+frag_missing"),
        ]
    )

    # when
    new_rule_set, removed, _ = remove_fragment(rule_set, Section.HEAD, "frag_a")

    assert removed == {"frag_a", "frag_b"}
    assert set(new_rule_set.head) == {"frag_x"}
    assert new_rule_set.head.unresolved == {"frag_x"}


def test_remove_unknown_fragment_raises(linear_rule_set):
    with pytest.raises(UnknownFragmentError):
        remove_fragment(linear_rule_set, Section.HEAD, "frag_unknown")


def test_remove_fragment_from_wrong_section_raises(sample_rule_set):
    with pytest.raises(UnknownFragmentError):
        remove_fragment(sample_rule_set, Section.CHAIN, "HG_PC")


def test_remove_fragment_named_like_a_formula_cascades():
    """Test that dependents of a fragment whose name also reads as elements, e.g. CO, are removed with it."""
    rule_set = RuleSet.build(
        head_rules=[
            FragmentRule("CO", "$PRECURSOR-H2O"),
            FragmentRule("frag_b", "$PRECURSOR-CO"),
            FragmentRule("frag_c", "$PRECURSOR-NH3"),
        ],
        chain_rules=[
            FragmentRule("FA_CO", "CO+$CHAIN"),
            FragmentRule("FA", "$CHAIN-H"),
        ],
        equations=[IntensityRule("frag_b>frag_c")],
    )

    # when
    new_rule_set, removed, dropped = remove_fragment(rule_set, Section.HEAD, "CO")

    assert removed == {"CO", "frag_b", "FA_CO"}
    assert set(new_rule_set.head) == {"frag_c"}
    assert set(new_rule_set.chain) == {"FA"}
    assert dropped == (IntensityRule("frag_b>frag_c"),)


def test_remove_chain_fragment_named_like_a_formula_cascades():
    rule_set = RuleSet.build(
        chain_rules=[
            FragmentRule("CO", "$CHAIN-H"),
            FragmentRule("FA_CO", "CO-H2O"),
            FragmentRule("FA_H2O", "$CHAIN-H2O"),
        ],
    )

    # when
    new_rule_set, removed, _ = remove_fragment(rule_set, Section.CHAIN, "CO")

    assert removed == {"CO", "FA_CO"}
    assert set(new_rule_set.chain) == {"FA_H2O"}
