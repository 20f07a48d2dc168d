"""Value types of a rule set: fragment rules, intensity rules and the outcome of resolving a fragment rule."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from alphalipid.constants.keys import (
    CHAIN_PLACEHOLDER_TYPES,
    Section,
    UnresolvedReason,
)
from alphalipid.exceptions import MalformedInputError
from alphalipid.rules.equation import AnyOf, Equation, parse_equation, side_positions
from alphalipid.rules.formula import (
    TermKind,
    format_elements,
    tokenize_formula,
    validate_name,
)

logger = logging.getLogger()

TRUE_VALUES = ("true", "yes")
FALSE_VALUES = ("false", "no")


def parse_int(value, field_name: str, rule_name: str) -> int:
    """Convert user input to int, raising `MalformedInputError` for anything that is not an integer."""
    if isinstance(value, bool):
        raise MalformedInputError(rule_name, f"{field_name} must be an integer.")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise MalformedInputError(
        rule_name, f"{field_name} must be an integer, got '{value}'."
    )


def parse_bool(value, field_name: str, rule_name: str) -> bool:
    """Convert user input to bool, accepting true/false and yes/no in any case."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.strip().lower() in TRUE_VALUES:
            return True
        if value.strip().lower() in FALSE_VALUES:
            return False
    raise MalformedInputError(
        rule_name, f"{field_name} must be one of true/false/yes/no, got '{value}'."
    )


@dataclass(frozen=True)
class ResolvedFragment:
    """A fragment rule with its formula composed from all referenced fragments.

    Attributes
    ----------
    rule : FragmentRule
        The rule this fragment was built from.

    precursor : int
        1 if the fragment contains the precursor, 0 otherwise.

    chain_action : int
        +1 if a chain is added, -1 if it is lost, 0 if the fragment is independent of the chain.

    chain_type : str or None
        Type of the chain placeholder the fragment is built from.

    elements : dict
        Net element counts that are added to (or removed from) precursor and chain.
    """

    rule: "FragmentRule"
    precursor: int = 0
    chain_action: int = 0
    chain_type: str | None = None
    elements: Mapping[str, int] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.rule.name

    @property
    def composition(self) -> str:
        """Human readable composition, e.g. ``$PRECURSOR-C5H14NO4P``."""
        parts = []
        if self.precursor:
            parts.append("$PRECURSOR")
        if self.chain_action:
            sign = "+" if self.chain_action > 0 else "-"
            placeholder = next(
                p for p, t in CHAIN_PLACEHOLDER_TYPES.items() if t == self.chain_type
            )
            parts.append(f"{sign}{placeholder}")
        added = {e: n for e, n in self.elements.items() if n > 0}
        removed = {e: -n for e, n in self.elements.items() if n < 0}
        if added:
            parts.append(f"+{format_elements(added)}")
        if removed:
            parts.append(f"-{format_elements(removed)}")
        return "".join(parts).lstrip("+")


@dataclass(frozen=True)
class Resolved:
    fragment: ResolvedFragment

    resolved = True

    @property
    def name(self) -> str:
        return self.fragment.name


@dataclass(frozen=True)
class Unresolved:
    """A fragment rule that cannot be built from the names accepted so far."""

    name: str
    reason: str
    missing: tuple[str, ...] = ()

    resolved = False

    @property
    def message(self) -> str:
        if self.reason == UnresolvedReason.SELF_REFERENCE:
            return f"'{self.name}' references itself."
        if self.reason == UnresolvedReason.UNKNOWN_REFERENCE:
            return f"'{self.name}' references fragments that have not been defined before: {', '.join(self.missing)}."
        return f"'{self.name}' cannot be composed: {', '.join(self.missing)}."


ResolutionOutcome = Resolved | Unresolved


@dataclass(frozen=True)
class FragmentRule:
    """A named, formula-defined expected fragment ion.

    Invalid input is rejected on construction with `MalformedInputError`: an empty or illegal name,
    a charge below 1, an MS level below 2, values that are not integers, or a formula that cannot be tokenized.
    Whitespace is removed from the formula.
    """

    name: str
    formula: str
    charge: int = 1
    ms_level: int = 2
    mandatory: bool = False

    def __post_init__(self):
        name = validate_name(self.name)
        object.__setattr__(self, "name", name)

        charge = parse_int(self.charge, "Charge", name)
        if charge < 1:
            raise MalformedInputError(name, "The charge must be at least 1.")
        object.__setattr__(self, "charge", charge)

        ms_level = parse_int(self.ms_level, "MS level", name)
        if ms_level < 2:
            raise MalformedInputError(name, "The MS level must be at least 2.")
        object.__setattr__(self, "ms_level", ms_level)

        object.__setattr__(
            self, "mandatory", parse_bool(self.mandatory, "mandatory", name)
        )

        if not isinstance(self.formula, str):
            raise MalformedInputError(name, "The formula must be a string.")
        object.__setattr__(self, "formula", "".join(self.formula.split()))
        tokenize_formula(self.formula, name)

    def references(self, known_names: frozenset[str] = frozenset()) -> frozenset[str]:
        """Names of the fragment rules this rule's formula references."""
        return frozenset(
            term.text
            for term in tokenize_formula(self.formula, self.name, known_names)
            if term.kind == TermKind.NAME
        )

    def try_resolve_against(
        self,
        accepted: Mapping[str, ResolvedFragment],
        known_names: frozenset[str] | None = None,
        chain_allowed: bool = True,
    ) -> ResolutionOutcome:
        """Try to build this rule from fragments that have already been accepted.

        Parameters
        ----------
        accepted : Mapping[str, ResolvedFragment]
            Fragments accepted so far, by name.

        known_names : frozenset of str, optional
            All names that may be referenced, accepted or not. A formula term equal to one of these names is
            treated as reference even if it also reads as elemental formula. Defaults to the accepted names.

        chain_allowed : bool, default True
            Whether the composed fragment may contain a chain. Head fragments must not.

        Returns
        -------
        ResolutionOutcome
            `Resolved` with the composed fragment, or `Unresolved` with the reason.
        """
        if known_names is None:
            known_names = frozenset(accepted)
        terms = tokenize_formula(self.formula, self.name, known_names | {self.name})

        references = [t.text for t in terms if t.kind == TermKind.NAME]
        if self.name in references:
            return Unresolved(self.name, UnresolvedReason.SELF_REFERENCE, (self.name,))

        missing = tuple(sorted({r for r in references if r not in accepted}))
        if missing:
            return Unresolved(self.name, UnresolvedReason.UNKNOWN_REFERENCE, missing)

        precursor = 0
        chain_action = 0
        chain_types = set()
        elements = {}
        for term in terms:
            if term.kind == TermKind.PRECURSOR:
                precursor += term.sign
            elif term.kind == TermKind.CHAIN:
                chain_action += term.sign
                chain_types.add(CHAIN_PLACEHOLDER_TYPES[term.text])
            elif term.kind == TermKind.ELEMENTS:
                for element, count in term.elements:
                    elements[element] = elements.get(element, 0) + term.sign * count
            else:
                reference = accepted[term.text]
                precursor += term.sign * reference.precursor
                chain_action += term.sign * reference.chain_action
                if reference.chain_type is not None:
                    chain_types.add(reference.chain_type)
                for element, count in reference.elements.items():
                    elements[element] = elements.get(element, 0) + term.sign * count

        problems = []
        if precursor not in (0, 1):
            problems.append("the precursor is added or removed more than once")
        if chain_action not in (-1, 0, 1):
            problems.append("the chain is added or removed more than once")
        if len(chain_types) > 1:
            problems.append(f"mixed chain types {sorted(chain_types)}")
        if chain_action and not chain_allowed:
            problems.append("a head fragment must not contain a chain")
        if problems:
            return Unresolved(
                self.name, UnresolvedReason.INVALID_COMPOSITION, tuple(problems)
            )

        return Resolved(
            ResolvedFragment(
                rule=self,
                precursor=precursor,
                chain_action=chain_action,
                chain_type=next(iter(chain_types)) if chain_action else None,
                elements={e: n for e, n in elements.items() if n != 0},
            )
        )


@dataclass(frozen=True)
class IntensityRule:
    """An equation over fragment intensities, belonging to the head, chain or position section.

    Syntax errors, OR rules in the position section, and position indices outside the position section are
    rejected on construction with `MalformedInputError`. Whether the referenced fragments exist is checked when
    the rule is inserted into an `EquationCatalog`.
    The text is stored without whitespace, so writing and reading a rule set gives the same rules.
    """

    text: str
    mandatory: bool = False
    section: str = Section.HEAD
    equation: Equation = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.section not in Section.get_values():
            raise MalformedInputError(
                str(self.text), f"Unknown section '{self.section}'."
            )
        text = str(self.text).strip()
        object.__setattr__(
            self, "mandatory", parse_bool(self.mandatory, "mandatory", text)
        )

        # whitespace is dropped after parsing, a valid equation never needs it
        equation = parse_equation(text)
        object.__setattr__(self, "text", "".join(text.split()))
        object.__setattr__(self, "equation", equation)

        positions = {pos for _, pos in equation.references() if pos is not None}
        if self.section != Section.POSITION:
            if positions:
                raise MalformedInputError(
                    self.text,
                    "Position indices are only allowed in the position section.",
                )
            return

        if isinstance(equation, AnyOf):
            raise MalformedInputError(
                self.text, "OR rules are not allowed in the position section."
            )
        bigger, smaller = side_positions(equation.bigger), side_positions(
            equation.smaller
        )
        if len(bigger) != 1 or len(smaller) != 1:
            raise MalformedInputError(
                self.text,
                "Each side of a position rule must reference exactly one position.",
            )
        if bigger == smaller:
            raise MalformedInputError(
                self.text, "The two sides of a position rule must differ in position."
            )

    @property
    def references(self) -> frozenset[str]:
        """Fragment names referenced by the equation."""
        return frozenset(name for name, _ in self.equation.references())

    @property
    def positions(self) -> tuple[int, int] | None:
        """(position of the bigger side, position of the smaller side) for position rules."""
        if self.section != Section.POSITION:
            return None
        return (
            next(iter(side_positions(self.equation.bigger))),
            next(iter(side_positions(self.equation.smaller))),
        )

    def is_fulfilled(self, lookup, base_peak: float | None = None) -> bool:
        return self.equation.is_fulfilled(lookup, base_peak)
