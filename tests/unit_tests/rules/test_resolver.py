import pytest

from alphalipid.constants.keys import UnresolvedReason
from alphalipid.rules.models import FragmentRule
from alphalipid.rules.resolver import dependents, resolve


def rules_from(*pairs):
    return {name: FragmentRule(name, formula) for name, formula in pairs}


MIXED_CANDIDATES = rules_from(
    ("frag_e", "frag_d-H2O"),
    ("frag_d", "frag_a+frag_c"),
    ("frag_c", "$CHAIN-H"),
    ("frag_a", "$PRECURSOR-CO2"),
    ("frag_x", "frag_y+H"),
    ("frag_y", "frag_x-H"),
    ("frag_z", "frag_missing+H"),
    ("frag_w", "frag_z+H"),
)


def test_linear_chain_resolves_in_dependency_order():
    """Test that a chain of references given in reverse order is fully resolved."""
    candidates = rules_from(
        ("frag_c", "frag_b+H2O"),
        ("frag_b", "frag_a+H2O"),
        ("frag_a", "$PRECURSOR-C3H9N"),
    )

    # when
    resolution = resolve(candidates)

    assert resolution.names == ("frag_a", "frag_b", "frag_c")
    assert resolution.unresolved == frozenset()


def test_rules_of_one_pass_keep_candidate_order():
    candidates = rules_from(
        ("frag_c", "frag_a+H"),
        ("frag_b", "CO2"),
        ("frag_a", "H2O"),
    )

    # when
    resolution = resolve(candidates)

    assert resolution.names == ("frag_b", "frag_a", "frag_c")


def test_cycle_is_unresolved():
    """Test that two rules referencing each other both stay unresolved."""
    candidates = rules_from(("frag_a", "frag_b+H2O"), ("frag_b", "frag_a-H2O"))

    # when
    resolution = resolve(candidates)

    assert resolution.order == ()
    assert resolution.unresolved == {"frag_a", "frag_b"}
    assert resolution.outcomes["frag_a"].reason == UnresolvedReason.UNKNOWN_REFERENCE
    assert resolution.outcomes["frag_a"].missing == ("frag_b",)


def test_self_reference_is_unresolved():
    resolution = resolve(rules_from(("frag_a", "frag_a+H")))

    assert resolution.outcomes["frag_a"].reason == UnresolvedReason.SELF_REFERENCE


def test_dependents_of_unresolved_rule_are_unresolved():
    candidates = rules_from(("frag_a", "frag_missing+H"), ("frag_b", "frag_a+H"))

    resolution = resolve(candidates)

    assert resolution.unresolved == {"frag_a", "frag_b"}


def test_resolution_partitions_candidates():
    # when
    resolution = resolve(MIXED_CANDIDATES)

    resolved_names = set(resolution.names)
    assert len(resolved_names) == len(resolution.names)
    assert resolved_names.isdisjoint(resolution.unresolved)
    assert resolved_names | resolution.unresolved == set(MIXED_CANDIDATES)
    assert set(resolution.outcomes) == resolution.unresolved


def test_resolution_order_is_topological():
    """Test that every resolved rule only references rules resolved before it."""
    # when
    resolution = resolve(MIXED_CANDIDATES)

    seen = set()
    for fragment in resolution.order:
        assert fragment.rule.references(frozenset(MIXED_CANDIDATES)) <= seen
        seen.add(fragment.name)
    assert resolution.unresolved == {"frag_x", "frag_y", "frag_z", "frag_w"}


def test_resolution_is_idempotent():
    assert resolve(MIXED_CANDIDATES) == resolve(MIXED_CANDIDATES)


def test_resolution_does_not_depend_on_order_of_independent_rules():
    reversed_candidates = dict(reversed(list(MIXED_CANDIDATES.items())))

    assert set(resolve(reversed_candidates).names) == set(
        resolve(MIXED_CANDIDATES).names
    )


def test_resolve_against_base():
    """Test that a chain rule may reference a resolved head fragment without it being part of the result."""
    head = resolve(rules_from(("HG_PC", "C5H15NO4P")))
    base = {f.name: f for f in head.order}

    # when
    resolution = resolve(rules_from(("FA_HG", "HG_PC+$CHAIN")), base)

    assert resolution.names == ("FA_HG",)
    assert resolution.order[0].elements == {"C": 5, "H": 15, "N": 1, "O": 4, "P": 1}


def test_resolve_empty():
    resolution = resolve({})

    assert resolution.order == ()
    assert resolution.unresolved == frozenset()


@pytest.mark.parametrize(
    "name,expected",
    [
        ("frag_a", {"frag_d", "frag_e"}),
        ("frag_c", {"frag_d", "frag_e"}),
        ("frag_e", set()),
        ("frag_x", {"frag_y"}),
        ("frag_z", {"frag_w"}),
    ],
)
def test_dependents(name, expected):
    assert dependents(MIXED_CANDIDATES, name) == expected
