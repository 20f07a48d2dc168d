from alphalipid.constants.keys import Section
from alphalipid.evaluation.positions import assign_positions
from alphalipid.rules.models import IntensityRule


def position_rule(text, mandatory=False):
    return IntensityRule(text, mandatory=mandatory, section=Section.POSITION)


CHAIN_FOUND = {
    "16:0": {"NL_FA": 100.0, "FA": 100.0},
    "18:1": {"NL_FA": 50.0, "FA": 50.0},
}


def test_single_rule_assigns_positions():
    """Test that the placement fulfilling the rule is used: the chain with the larger loss sits at position 2."""
    rule = position_rule("NL_FA[2]>NL_FA[1]")

    # when
    report = assign_positions([rule], ("16:0", "18:1"), CHAIN_FOUND, {})

    assert report.assignment == {2: "16:0", 1: "18:1"}
    assert report.proposals == ((rule, {2: "16:0", 1: "18:1"}),)
    assert report.contradictions == ()


def test_assignment_does_not_depend_on_combination_order():
    rule = position_rule("NL_FA[2]>NL_FA[1]")

    # when
    report = assign_positions([rule], ("18:1", "16:0"), CHAIN_FOUND, {})

    assert report.assignment == {2: "16:0", 1: "18:1"}


def test_contradicting_rules_leave_combination_unassigned():
    """Test that two rules proposing incompatible placements are reported as pair and no assignment is made."""
    first = position_rule("NL_FA[2]>NL_FA[1]")
    second = position_rule("FA[1]>FA[2]")

    # when
    report = assign_positions([first, second], ("16:0", "18:1"), CHAIN_FOUND, {})

    assert report.assignment is None
    assert report.contradictions == ((first, second),)


def test_agreeing_rules_are_merged():
    first = position_rule("NL_FA[2]>NL_FA[1]")
    second = position_rule("FA[2]>FA[1]")

    report = assign_positions([first, second], ("16:0", "18:1"), CHAIN_FOUND, {})

    assert report.assignment == {1: "18:1", 2: "16:0"}
    assert len(report.proposals) == 2


def test_unfulfilled_rule():
    rule = position_rule("NL_FA[2]>10*NL_FA[1]")

    # when
    report = assign_positions([rule], ("16:0", "18:1"), CHAIN_FOUND, {})

    assert report.unfulfilled == (rule,)
    assert report.assignment is None
    assert report.mandatory_unfulfilled == ()


def test_mandatory_unfulfilled_rule_prevents_assignment():
    decisive = position_rule("NL_FA[2]>NL_FA[1]")
    unfulfilled = position_rule("NL_FA[2]>10*NL_FA[1]", mandatory=True)

    # when
    report = assign_positions(
        [decisive, unfulfilled], ("16:0", "18:1"), CHAIN_FOUND, {}
    )

    assert report.assignment is None
    assert report.mandatory_unfulfilled == (unfulfilled,)


def test_optional_unfulfilled_rule_does_not_prevent_assignment():
    decisive = position_rule("NL_FA[2]>NL_FA[1]")
    unfulfilled = position_rule("NL_FA[2]>10*NL_FA[1]")

    report = assign_positions(
        [decisive, unfulfilled], ("16:0", "18:1"), CHAIN_FOUND, {}
    )

    assert report.assignment == {2: "16:0", 1: "18:1"}


def test_rule_fulfilled_by_every_placement_is_ambiguous():
    rule = position_rule("NL_FA[2]>0.1*FA[1]")

    # when
    report = assign_positions([rule], ("16:0", "18:1"), CHAIN_FOUND, {})

    assert report.ambiguous == (rule,)
    assert report.proposals == ()
    assert report.assignment is None


def test_missing_fragment_makes_rule_unfulfilled():
    rule = position_rule("NL_FA[2]>NL_FA[1]")
    chain_found = {"16:0": {"NL_FA": 100.0}, "18:1": {}}

    report = assign_positions([rule], ("16:0", "18:1"), chain_found, {})

    assert report.unfulfilled == (rule,)


def test_head_fragment_in_position_rule():
    rule = position_rule("NL_FA[2]>NL_FA[1]+HG_PC")

    # when
    report = assign_positions(
        [rule], ("16:0", "18:1"), CHAIN_FOUND, {"HG_PC": 30.0}
    )

    assert report.assignment == {2: "16:0", 1: "18:1"}


def test_identical_chains_are_trivially_assigned():
    report = assign_positions(
        [position_rule("NL_FA[2]>NL_FA[1]")], ("16:0", "16:0"), CHAIN_FOUND, {}
    )

    assert report.assignment == {1: "16:0", 2: "16:0"}
    assert report.unfulfilled == ()


def test_three_chains():
    chain_found = CHAIN_FOUND | {"20:4": {"NL_FA": 10.0, "FA": 10.0}}
    rule = position_rule("NL_FA[3]>2*NL_FA[1]")

    # when
    report = assign_positions([rule], ("16:0", "18:1", "20:4"), chain_found, {})

    # 16:0 and 18:1 both exceed twice the loss of 20:4
    assert report.ambiguous == (rule,)


def test_report_to_dict():
    rule = position_rule("NL_FA[2]>NL_FA[1]")

    report = assign_positions([rule], ("16:0", "18:1"), CHAIN_FOUND, {})

    assert report.to_dict() == {
        "assignment": {"1": "18:1", "2": "16:0"},
        "proposals": [
            {"equation": "NL_FA[2]>NL_FA[1]", "placement": {"2": "16:0", "1": "18:1"}}
        ],
        "unfulfilled": [],
        "contradictions": [],
        "ambiguous": [],
    }
