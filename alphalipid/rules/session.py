"""Editing of rule sets.

`try_validate` answers whether a single edited fragment rule would be resolvable, without changing anything.
All changes go through `EditCommand` objects applied by a `RuleSetEditor`, which serializes edits and publishes
a new immutable `RuleSet` after every accepted edit.
"""

import logging
import threading
from dataclasses import dataclass, field, replace

from alphalipid.exceptions import (
    MalformedInputError,
    UnknownFragmentError,
    UnknownReferenceError,
)
from alphalipid.rules.cascade import remove_fragment
from alphalipid.rules.catalog import Catalog, RuleSet
from alphalipid.rules.models import FragmentRule, IntensityRule, Resolved
from alphalipid.rules.resolver import dependents, resolve

logger = logging.getLogger()


def try_validate(catalog: Catalog, candidate: FragmentRule) -> bool:
    """Whether `candidate` would be resolved if it was added to `catalog` or replaced the rule of the same name.

    The catalog is not modified. If all references of the candidate are already resolved and do not depend on
    the rule it replaces, the answer is found without resolving the catalog again.
    """
    base = catalog.base.resolved if catalog.base is not None else {}
    known_names = catalog.known_names | {candidate.name}

    blocked = {candidate.name}
    if candidate.name in catalog:
        blocked |= dependents(catalog.rules, candidate.name, known_names)

    accepted = {
        name: fragment
        for name, fragment in catalog.resolved.items()
        if name not in blocked
    }
    outcome = candidate.try_resolve_against(
        accepted, known_names, catalog.chain_allowed
    )
    if isinstance(outcome, Resolved):
        return True

    rules = dict(catalog.rules)
    rules[candidate.name] = candidate
    return (
        candidate.name
        not in resolve(rules, base, catalog.chain_allowed).unresolved
    )


@dataclass(frozen=True)
class ValidationFeedback:
    valid: bool
    message: str = ""


class RuleEditingSession:
    """Validates user input against a rule set while the user types; never modifies the rule set."""

    def __init__(self, rule_set: RuleSet):
        self.rule_set = rule_set

    def try_validate(self, section: str, candidate: FragmentRule) -> bool:
        return try_validate(self.rule_set.catalog(section), candidate)

    def check(
        self,
        section: str,
        name: str,
        formula: str,
        charge="1",
        ms_level="2",
        mandatory="false",
        editing: str | None = None,
    ) -> ValidationFeedback:
        """Check raw user input for a fragment rule.

        Parameters
        ----------
        section : str
            Section the rule is entered in.

        name, formula, charge, ms_level, mandatory
            The values as entered by the user.

        editing : str, optional
            Name of the rule that is being edited. The name may not change while editing.

        Returns
        -------
        ValidationFeedback
            Whether the rule can be added and, if not, why.
        """
        try:
            candidate = FragmentRule(name, formula, charge, ms_level, mandatory)
        except MalformedInputError as e:
            return ValidationFeedback(False, e.detail_msg)

        if editing is not None and editing != candidate.name:
            return ValidationFeedback(
                False, "Renaming is not possible, delete the rule and create a new one."
            )
        if editing is None and self.rule_set.section_of(candidate.name) is not None:
            return ValidationFeedback(
                False, f"The name '{candidate.name}' is already in use."
            )

        if self.try_validate(section, candidate):
            return ValidationFeedback(True)

        catalog = self.rule_set.catalog(section)
        outcome = candidate.try_resolve_against(
            catalog.resolved,
            catalog.known_names | {candidate.name},
            catalog.chain_allowed,
        )
        if isinstance(outcome, Resolved):
            return ValidationFeedback(
                False, f"'{candidate.name}' would create a cyclic dependency."
            )
        return ValidationFeedback(False, outcome.message)


@dataclass(frozen=True)
class EditResult:
    """Outcome of applying an edit command.

    If the edit was not accepted, `rule_set` is the unchanged rule set and `message` explains why.
    """

    rule_set: RuleSet
    accepted: bool
    removed: frozenset[str] = frozenset()
    removed_equations: tuple[IntensityRule, ...] = ()
    message: str = ""


class EditCommand:
    """Base class of all edits of a rule set."""

    def apply(self, rule_set: RuleSet) -> EditResult:
        raise NotImplementedError("Subclasses must implement this method")


@dataclass(frozen=True)
class AddFragment(EditCommand):
    section: str
    rule: FragmentRule

    def apply(self, rule_set: RuleSet) -> EditResult:
        if rule_set.section_of(self.rule.name) is not None:
            raise MalformedInputError(self.rule.name, "The name is already in use.")

        catalog = rule_set.catalog(self.section)
        if not try_validate(catalog, self.rule):
            return EditResult(
                rule_set,
                False,
                message=f"'{self.rule.name}' cannot be resolved in section {self.section}.",
            )
        return EditResult(rule_set.with_catalog(catalog.with_rule(self.rule)), True)


@dataclass(frozen=True)
class UpdateFragment(EditCommand):
    """Replace the formula, charge, MS level or mandatory flag of an existing rule."""

    section: str
    rule: FragmentRule

    def apply(self, rule_set: RuleSet) -> EditResult:
        catalog = rule_set.catalog(self.section)
        if self.rule.name not in catalog:
            raise UnknownFragmentError(self.rule.name, self.section)

        if not try_validate(catalog, self.rule):
            return EditResult(
                rule_set,
                False,
                message=f"'{self.rule.name}' cannot be resolved in section {self.section}.",
            )

        updated = rule_set.with_catalog(catalog.with_rule(self.rule))
        lost = (
            set(rule_set.head.order_names) - set(updated.head.order_names)
        ) | (set(rule_set.chain.order_names) - set(updated.chain.order_names))
        if lost:
            return EditResult(
                rule_set,
                False,
                message=f"The change would invalidate {sorted(lost)}.",
            )
        return EditResult(updated, True)


@dataclass(frozen=True)
class DeleteFragment(EditCommand):
    section: str
    name: str

    def apply(self, rule_set: RuleSet) -> EditResult:
        new_rule_set, removed, dropped = remove_fragment(
            rule_set, self.section, self.name
        )
        return EditResult(new_rule_set, True, removed, dropped)


@dataclass(frozen=True)
class AddEquation(EditCommand):
    rule: IntensityRule

    def apply(self, rule_set: RuleSet) -> EditResult:
        try:
            equations = rule_set.equations.insert(
                rule_set.head, rule_set.chain, self.rule, rule_set.settings
            )
        except UnknownReferenceError as e:
            return EditResult(rule_set, False, message=e.detail_msg)
        return EditResult(rule_set.replace(equations=equations), True)


@dataclass(frozen=True)
class DeleteEquation(EditCommand):
    section: str
    index: int

    def apply(self, rule_set: RuleSet) -> EditResult:
        removed = rule_set.equations.section(self.section)[self.index]
        equations = rule_set.equations.delete(self.section, self.index)
        return EditResult(
            rule_set.replace(equations=equations), True, removed_equations=(removed,)
        )


@dataclass(frozen=True)
class SetMandatory(EditCommand):
    """Set the mandatory flag of a fragment rule."""

    section: str
    name: str
    mandatory: bool

    def apply(self, rule_set: RuleSet) -> EditResult:
        catalog = rule_set.catalog(self.section)
        if self.name not in catalog:
            raise UnknownFragmentError(self.name, self.section)
        rule = replace(catalog[self.name], mandatory=self.mandatory)
        return EditResult(rule_set.with_catalog(catalog.with_rule(rule)), True)


@dataclass(frozen=True)
class SetEquationMandatory(EditCommand):
    section: str
    index: int
    mandatory: bool

    def apply(self, rule_set: RuleSet) -> EditResult:
        equations = rule_set.equations.set_mandatory(
            self.section, self.index, self.mandatory
        )
        return EditResult(rule_set.replace(equations=equations), True)


@dataclass
class RuleSetEditor:
    """Single writer for a rule set.

    Edits are applied one at a time; every accepted edit publishes a new snapshot in `rule_set`.
    Readers take the current snapshot and never need the lock.
    """

    rule_set: RuleSet = field(default_factory=RuleSet)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def apply(self, command: EditCommand) -> EditResult:
        with self._lock:
            result = command.apply(self.rule_set)
            if result.accepted:
                self.rule_set = result.rule_set
                logger.debug(f"Applied {command}")
            else:
                logger.info(f"Rejected {type(command).__name__}: {result.message}")
            return result

    def session(self) -> RuleEditingSession:
        return RuleEditingSession(self.rule_set)
