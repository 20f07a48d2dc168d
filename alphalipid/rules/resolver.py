import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from alphalipid.rules.models import FragmentRule, Resolved, ResolvedFragment, Unresolved

logger = logging.getLogger()


@dataclass(frozen=True)
class Resolution:
    """Result of resolving a catalog of fragment rules.

    Attributes
    ----------
    order : tuple of ResolvedFragment
        Rules that could be built, every rule after all rules it references.

    unresolved : frozenset of str
        Names of the rules that cannot be built.

    outcomes : dict
        The `Unresolved` outcome of the last attempt for every unresolved name.
    """

    order: tuple[ResolvedFragment, ...] = ()
    unresolved: frozenset[str] = frozenset()
    outcomes: Mapping[str, Unresolved] = field(default_factory=dict)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(fragment.name for fragment in self.order)


def resolve(
    candidates: Mapping[str, FragmentRule],
    base: Mapping[str, ResolvedFragment] | None = None,
    chain_allowed: bool = True,
) -> Resolution:
    """Order the candidate rules so that every rule follows the rules it references.

    Each pass tries every remaining rule against the names accepted in previous passes; all rules that can be
    built are accepted together at the end of the pass. Passes are repeated until one accepts nothing.
    Rules accepted in an earlier pass precede rules of a later pass, within a pass the iteration order of
    `candidates` is kept. Cycles and references to names that do not exist end up in `unresolved`.

    Parameters
    ----------
    candidates : Mapping[str, FragmentRule]
        The rules to resolve, by name.

    base : Mapping[str, ResolvedFragment], optional
        Fragments of a sibling catalog that may be referenced but are not part of the result,
        i.e. the resolved head fragments when resolving the chain catalog.

    chain_allowed : bool, default True
        Whether resolved fragments may contain a chain. Rules that would are left unresolved otherwise.

    Returns
    -------
    Resolution
    """
    accepted = dict(base) if base is not None else {}
    known_names = frozenset(candidates) | frozenset(accepted)

    remaining = dict(candidates)
    order = []
    outcomes = {}

    while remaining:
        accepted_in_pass = []
        for rule in remaining.values():
            outcome = rule.try_resolve_against(accepted, known_names, chain_allowed)
            if isinstance(outcome, Resolved):
                accepted_in_pass.append(outcome.fragment)
            else:
                outcomes[rule.name] = outcome

        if not accepted_in_pass:
            break

        for fragment in accepted_in_pass:
            accepted[fragment.name] = fragment
            order.append(fragment)
            del remaining[fragment.name]
            outcomes.pop(fragment.name, None)

    if remaining:
        logger.debug(
            f"Resolved {len(order)} of {len(candidates)} fragment rules, unresolved: {sorted(remaining)}"
        )

    return Resolution(
        order=tuple(order),
        unresolved=frozenset(remaining),
        outcomes={name: outcomes[name] for name in remaining},
    )


def dependents(
    candidates: Mapping[str, FragmentRule],
    name: str,
    known_names: frozenset[str] | None = None,
) -> frozenset[str]:
    """Names of all rules that reference `name` directly or transitively."""
    if known_names is None:
        known_names = frozenset(candidates)
    known_names = known_names | {name}

    references = {
        rule_name: rule.references(known_names)
        for rule_name, rule in candidates.items()
    }

    found = set()
    frontier = {name}
    while frontier:
        frontier = {
            rule_name
            for rule_name, refs in references.items()
            if rule_name not in found and refs & frontier
        }
        found |= frontier
    found.discard(name)
    return frozenset(found)
