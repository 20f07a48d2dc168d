"""Assignment of chains to positions from position rules.

A position rule compares chain fragments at two positions, e.g. ``sn1_loss[1] > sn1_loss[2]``. For a chain
combination every ordered pair of two different chains is placed at the rule's two positions. A rule that is
fulfilled by exactly one placement proposes that placement; a rule fulfilled by none is unfulfilled; a rule
fulfilled by several placements carries no information. Proposals that disagree are reported as contradicting
pairs and leave the combination without assignment, there is no tie-break.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from itertools import combinations as pairs
from itertools import permutations

from alphalipid.rules.models import IntensityRule


@dataclass(frozen=True)
class PositionReport:
    """Positions of one chain combination.

    Attributes
    ----------
    assignment : dict or None
        Position to chain id, None if no consistent assignment was found.

    proposals : tuple
        (rule, placement) for every rule that proposed a placement.

    unfulfilled : tuple of IntensityRule
        Rules that no placement fulfills.

    contradictions : tuple of (IntensityRule, IntensityRule)
        Pairs of rules proposing incompatible placements.
    """

    assignment: Mapping[int, str] | None = None
    proposals: tuple[tuple[IntensityRule, Mapping[int, str]], ...] = ()
    unfulfilled: tuple[IntensityRule, ...] = ()
    contradictions: tuple[tuple[IntensityRule, IntensityRule], ...] = ()
    ambiguous: tuple[IntensityRule, ...] = ()

    @property
    def mandatory_unfulfilled(self) -> tuple[IntensityRule, ...]:
        return tuple(rule for rule in self.unfulfilled if rule.mandatory)

    def to_dict(self) -> dict:
        return {
            "assignment": None
            if self.assignment is None
            else {str(k): v for k, v in sorted(self.assignment.items())},
            "proposals": [
                {"equation": rule.text, "placement": {str(k): v for k, v in p.items()}}
                for rule, p in self.proposals
            ],
            "unfulfilled": [rule.text for rule in self.unfulfilled],
            "contradictions": [[a.text, b.text] for a, b in self.contradictions],
            "ambiguous": [rule.text for rule in self.ambiguous],
        }


def _contradict(first: Mapping[int, str], second: Mapping[int, str]) -> bool:
    for position, chain in first.items():
        if position in second and second[position] != chain:
            return True
    first_positions = {chain: position for position, chain in first.items()}
    for position, chain in second.items():
        if chain in first_positions and first_positions[chain] != position:
            return True
    return False


def assign_positions(
    rules: Sequence[IntensityRule],
    combination: Sequence[str],
    chain_found: Mapping[str, Mapping[str, float]],
    head_found: Mapping[str, float],
    base_peak: float | None = None,
) -> PositionReport:
    """Evaluate the position rules for one chain combination.

    Parameters
    ----------
    rules : sequence of IntensityRule
        The position rules of the rule set.

    combination : sequence of str
        Chain ids of the combination.

    chain_found : Mapping[str, Mapping[str, float]]
        Found chain fragment intensities per chain id.

    head_found : Mapping[str, float]
        Found head fragment intensities.

    base_peak : float, optional
        Base peak intensity for ``$BASEPEAK``.

    Returns
    -------
    PositionReport
    """
    if len(set(combination)) < 2:
        # all positions hold the same chain
        return PositionReport(
            assignment={i + 1: chain for i, chain in enumerate(combination)} or None
        )

    proposals = []
    unfulfilled = []
    ambiguous = []
    for rule in rules:
        bigger, smaller = rule.positions
        placements = set()
        for i, j in permutations(range(len(combination)), 2):
            first, second = combination[i], combination[j]
            if first == second:
                continue

            def lookup(name, position, first=first, second=second):
                if position == bigger:
                    return chain_found.get(first, {}).get(name)
                if position == smaller:
                    return chain_found.get(second, {}).get(name)
                return head_found.get(name)

            if rule.is_fulfilled(lookup, base_peak):
                placements.add(((bigger, first), (smaller, second)))

        if not placements:
            unfulfilled.append(rule)
        elif len(placements) == 1:
            proposals.append((rule, dict(next(iter(placements)))))
        else:
            ambiguous.append(rule)

    contradictions = tuple(
        (first_rule, second_rule)
        for (first_rule, first), (second_rule, second) in pairs(proposals, 2)
        if _contradict(first, second)
    )

    assignment = None
    if proposals and not contradictions and not any(r.mandatory for r in unfulfilled):
        assignment = {}
        for _, placement in proposals:
            assignment.update(placement)

    return PositionReport(
        assignment=assignment,
        proposals=tuple(proposals),
        unfulfilled=tuple(unfulfilled),
        contradictions=contradictions,
        ambiguous=tuple(ambiguous),
    )
