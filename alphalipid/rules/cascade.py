import logging

from alphalipid.constants.keys import Section
from alphalipid.exceptions import UnknownFragmentError
from alphalipid.rules.catalog import Catalog, RuleSet
from alphalipid.rules.models import IntensityRule
from alphalipid.rules.resolver import dependents

logger = logging.getLogger()


def _resolved_dependents(catalog: Catalog, names: set[str]) -> set[str]:
    """Resolved rules of `catalog` that reference any of `names`, directly or transitively."""
    resolved_rules = {n: catalog.rules[n] for n in catalog.order_names}
    found = set()
    for name in names:
        found |= dependents(resolved_rules, name, catalog.known_names)
    return found


def _drop_invalidated(old: Catalog, new: Catalog, removed: set[str]) -> Catalog:
    """Remove rules from `new` that were resolved in `old` but are not anymore, until nothing changes."""
    previously_resolved = set(old.order_names)
    while True:
        invalidated = (previously_resolved & new.unresolved) - removed
        if not invalidated:
            return new
        removed |= invalidated
        new = new.without(invalidated)


def remove_fragment(
    rule_set: RuleSet, section: str, name: str
) -> tuple[RuleSet, frozenset[str], tuple[IntensityRule, ...]]:
    """Remove a fragment rule and everything that can no longer be built without it.

    Every resolved rule that references a removed name, directly or through other rules, is removed as well.
    This holds also where the removed name would read as an elemental formula once it is gone, e.g. "CO".
    Rules that were resolved before but cannot be resolved after the removal are removed until nothing changes. Removing a head fragment also re-resolves the chain catalog, since chain fragments
    may reference head fragments. Finally all equations of the head, chain and position sections that reference
    a removed name are dropped.

    The input rule set is not modified; the cascade is applied to a new snapshot as a whole.

    Parameters
    ----------
    rule_set : RuleSet
        The current rule set.

    section : str
        `Section.HEAD` or `Section.CHAIN`.

    name : str
        Name of the fragment rule to remove.

    Returns
    -------
    tuple of RuleSet, frozenset of str, tuple of IntensityRule
        The new rule set, the names of all removed fragment rules and the removed equations.

    Raises
    ------
    UnknownFragmentError
        There is no fragment `name` in `section`.
    """
    catalog = rule_set.catalog(section)
    if name not in catalog:
        raise UnknownFragmentError(name, section)

    removed = {name}
    if section == Section.HEAD:
        removed |= _resolved_dependents(rule_set.head, removed)
        head = _drop_invalidated(rule_set.head, rule_set.head.without(removed), removed)
        removed |= _resolved_dependents(rule_set.chain, removed)
        chain = _drop_invalidated(
            rule_set.chain, rule_set.chain.rebased(head).without(removed), removed
        )
    else:
        head = rule_set.head
        removed |= _resolved_dependents(rule_set.chain, removed)
        chain = _drop_invalidated(
            rule_set.chain, rule_set.chain.without(removed), removed
        )

    equations, dropped = rule_set.equations.strip(removed)

    if len(removed) > 1 or dropped:
        logger.info(
            f"Removing '{name}' also removed fragments {sorted(removed - {name})} and {len(dropped)} equation(s)"
        )

    return (
        rule_set.replace(head=head, chain=chain, equations=equations),
        frozenset(removed),
        dropped,
    )
