"""Immutable snapshots of a rule set.

Every edit creates new objects, so a published `RuleSet` can be shared read-only between threads.
"""

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from alphalipid.constants.keys import GeneralSettingsKeys, Section
from alphalipid.exceptions import MalformedInputError, UnknownReferenceError
from alphalipid.rules.models import FragmentRule, IntensityRule, ResolvedFragment, Unresolved
from alphalipid.rules.resolver import resolve

logger = logging.getLogger()

CUTOFF_PATTERN = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(%|‰)?\s*$")


class Catalog:
    """The fragment rules of one section together with their resolution.

    `order` and `unresolved` are derived on construction and partition the names of the catalog.
    The chain catalog is resolved against the resolved fragments of the head catalog (`base`).
    """

    def __init__(
        self,
        section: str,
        rules: Iterable[FragmentRule] | Mapping[str, FragmentRule] = (),
        base: "Catalog | None" = None,
    ):
        if isinstance(rules, Mapping):
            rules = rules.values()

        self._section = section
        self._rules = {}
        for rule in rules:
            if rule.name in self._rules:
                raise MalformedInputError(
                    rule.name, f"The name is defined twice in section {section}."
                )
            self._rules[rule.name] = rule
        self._base = base

        self._resolution = resolve(
            self._rules,
            base.resolved if base is not None else None,
            chain_allowed=self.chain_allowed,
        )
        self._resolved = {f.name: f for f in self._resolution.order}

    @property
    def section(self) -> str:
        return self._section

    @property
    def chain_allowed(self) -> bool:
        return self._section != Section.HEAD

    @property
    def base(self) -> "Catalog | None":
        return self._base

    @property
    def rules(self) -> Mapping[str, FragmentRule]:
        return MappingProxyType(self._rules)

    @property
    def order(self) -> tuple[ResolvedFragment, ...]:
        return self._resolution.order

    @property
    def order_names(self) -> tuple[str, ...]:
        return self._resolution.names

    @property
    def unresolved(self) -> frozenset[str]:
        return self._resolution.unresolved

    @property
    def outcomes(self) -> Mapping[str, Unresolved]:
        """Why each unresolved rule could not be built."""
        return MappingProxyType(dict(self._resolution.outcomes))

    @property
    def resolved(self) -> Mapping[str, ResolvedFragment]:
        """Resolved fragments of this catalog and its base, by name."""
        resolved = dict(self._base.resolved) if self._base is not None else {}
        resolved.update(self._resolved)
        return MappingProxyType(resolved)

    @property
    def known_names(self) -> frozenset[str]:
        """Names of this catalog and its base, resolved or not."""
        names = frozenset(self._rules)
        if self._base is not None:
            names |= self._base.known_names
        return names

    def __contains__(self, name) -> bool:
        return name in self._rules

    def __getitem__(self, name: str) -> FragmentRule:
        return self._rules[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"Catalog({self._section}, order={list(self.order_names)}, unresolved={sorted(self.unresolved)})"

    def with_rule(self, rule: FragmentRule) -> "Catalog":
        """A new catalog with `rule` added, or replacing the rule of the same name."""
        rules = dict(self._rules)
        rules[rule.name] = rule
        return Catalog(self._section, rules, self._base)

    def without(self, names: Iterable[str]) -> "Catalog":
        names = set(names)
        return Catalog(
            self._section,
            [rule for name, rule in self._rules.items() if name not in names],
            self._base,
        )

    def rebased(self, base: "Catalog | None") -> "Catalog":
        """The same rules resolved against another base catalog."""
        return Catalog(self._section, self._rules, base)


class EquationCatalog:
    """The intensity rules of the head, chain and position sections."""

    def __init__(
        self,
        head: Iterable[IntensityRule] = (),
        chain: Iterable[IntensityRule] = (),
        position: Iterable[IntensityRule] = (),
    ):
        self._equations = {
            Section.HEAD: tuple(head),
            Section.CHAIN: tuple(chain),
            Section.POSITION: tuple(position),
        }
        for section, rules in self._equations.items():
            for rule in rules:
                if rule.section != section:
                    raise ValueError(
                        f"Equation '{rule.text}' belongs to {rule.section}, not {section}."
                    )

    @property
    def head(self) -> tuple[IntensityRule, ...]:
        return self._equations[Section.HEAD]

    @property
    def chain(self) -> tuple[IntensityRule, ...]:
        return self._equations[Section.CHAIN]

    @property
    def position(self) -> tuple[IntensityRule, ...]:
        return self._equations[Section.POSITION]

    def section(self, section: str) -> tuple[IntensityRule, ...]:
        return self._equations[section]

    def __iter__(self) -> Iterator[IntensityRule]:
        for rules in self._equations.values():
            yield from rules

    def __len__(self) -> int:
        return sum(len(rules) for rules in self._equations.values())

    def __eq__(self, other) -> bool:
        return (
            isinstance(other, EquationCatalog) and self._equations == other._equations
        )

    def _replace(self, section: str, rules: Iterable[IntensityRule]) -> "EquationCatalog":
        equations = dict(self._equations)
        equations[section] = tuple(rules)
        return EquationCatalog(
            equations[Section.HEAD],
            equations[Section.CHAIN],
            equations[Section.POSITION],
        )

    def insert(
        self,
        head: Catalog,
        chain: Catalog,
        rule: IntensityRule,
        settings: "GeneralSettings | None" = None,
    ) -> "EquationCatalog":
        """A new catalog with `rule` appended to its section.

        Head equations may reference resolved head fragments, chain and position equations resolved head and
        chain fragments.

        Raises
        ------
        UnknownReferenceError
            The equation references fragments that are not resolved.
        MalformedInputError
            The equation is already defined in its section, or a position index is missing, not allowed,
            or larger than the number of chain positions.
        """
        if rule.section == Section.HEAD:
            available = dict(head.resolved)
        else:
            available = dict(head.resolved) | dict(chain.resolved)

        missing = sorted(rule.references - set(available))
        if missing:
            raise UnknownReferenceError(rule.text, missing)

        normalized = "".join(rule.text.split())
        if any(
            "".join(existing.text.split()) == normalized
            for existing in self._equations[rule.section]
        ):
            raise MalformedInputError(
                rule.text, f"The equation is already defined in section {rule.section}."
            )

        if rule.section == Section.POSITION:
            _check_positions(rule, set(chain.order_names), settings)

        return self._replace(rule.section, self._equations[rule.section] + (rule,))

    def delete(self, section: str, index: int) -> "EquationCatalog":
        rules = list(self._equations[section])
        del rules[index]
        return self._replace(section, rules)

    def set_mandatory(self, section: str, index: int, mandatory: bool) -> "EquationCatalog":
        rules = list(self._equations[section])
        old = rules[index]
        rules[index] = IntensityRule(old.text, mandatory, old.section)
        return self._replace(section, rules)

    def strip(
        self, names: Iterable[str]
    ) -> tuple["EquationCatalog", tuple[IntensityRule, ...]]:
        """Drop every equation that references one of `names`; returns the new catalog and the dropped equations."""
        names = frozenset(names)
        kept = {}
        dropped = []
        for section, rules in self._equations.items():
            kept[section] = [r for r in rules if not r.references & names]
            dropped.extend(r for r in rules if r.references & names)
        return (
            EquationCatalog(
                kept[Section.HEAD], kept[Section.CHAIN], kept[Section.POSITION]
            ),
            tuple(dropped),
        )


def _check_positions(
    rule: IntensityRule, chain_names: set[str], settings: "GeneralSettings | None"
) -> None:
    max_position = settings.max_position if settings is not None else None
    for name, position in rule.equation.references():
        if name in chain_names and position is None:
            raise MalformedInputError(
                rule.text, f"The chain fragment '{name}' needs a position index."
            )
        if name not in chain_names and position is not None:
            raise MalformedInputError(
                rule.text, f"The head fragment '{name}' must not have a position index."
            )
        if position is not None and max_position is not None and position > max_position:
            raise MalformedInputError(
                rule.text,
                f"Position {position} of '{name}' exceeds the {max_position} available chain positions.",
            )


def parse_cutoff(key: str, value: str) -> float:
    """Parse a cutoff given in percent (``1%``), permille (``5‰``) or as fraction (``0.01``).

    Raises
    ------
    MalformedInputError
        The value is not a number or not in [0, 1).
    """
    match = CUTOFF_PATTERN.match(str(value))
    if match is None:
        raise MalformedInputError(
            key, f"'{value}' is not a valid cutoff, use e.g. '1%', '5‰' or '0.01'."
        )
    number = float(match.group(1))
    if match.group(2) == "%":
        number /= 100
    elif match.group(2) == "‰":
        number /= 1000
    if not 0 <= number < 1:
        raise MalformedInputError(key, f"The cutoff {value} must be in [0, 1).")
    return number


class GeneralSettings(Mapping):
    """The ordered key/value pairs of the [GENERAL] section.

    Values are kept as written so that a rule set can be written back unchanged; the settings that the engine
    uses are validated on construction and exposed as typed properties.
    """

    def __init__(self, values: Mapping[str, str] | Iterable[tuple[str, str]] = ()):
        items = values.items() if isinstance(values, Mapping) else values
        self._values = {str(k): str(v) for k, v in items}

        self._amount_of_chains = self._get_int(GeneralSettingsKeys.AMOUNT_OF_CHAINS)
        self._add_chain_positions = (
            self._get_int(GeneralSettingsKeys.ADD_CHAIN_POSITIONS) or 0
        )
        self._base_peak_cutoff = self._get_cutoff(GeneralSettingsKeys.BASE_PEAK_CUTOFF)
        self._chain_cutoff = self._get_cutoff(GeneralSettingsKeys.CHAIN_CUTOFF)

    def _get_int(self, key: str) -> int | None:
        if key not in self._values:
            return None
        try:
            value = int(self._values[key])
        except ValueError:
            raise MalformedInputError(
                key, f"'{self._values[key]}' is not an integer."
            ) from None
        if value < 0:
            raise MalformedInputError(key, "The value must not be negative.")
        return value

    def _get_cutoff(self, key: str) -> float | None:
        if key not in self._values:
            return None
        return parse_cutoff(key, self._values[key])

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"GeneralSettings({self._values})"

    @property
    def amount_of_chains(self) -> int | None:
        return self._amount_of_chains

    @property
    def add_chain_positions(self) -> int:
        return self._add_chain_positions

    @property
    def max_position(self) -> int | None:
        """Highest position index a position rule may use."""
        if self._amount_of_chains is None:
            return None
        return self._amount_of_chains + self._add_chain_positions

    @property
    def base_peak_cutoff(self) -> float | None:
        return self._base_peak_cutoff

    @property
    def chain_cutoff(self) -> float | None:
        return self._chain_cutoff


class RuleSet:
    """Head and chain fragment catalogs, the equations of all sections and the general settings."""

    def __init__(
        self,
        head: Catalog | None = None,
        chain: Catalog | None = None,
        equations: EquationCatalog | None = None,
        settings: GeneralSettings | None = None,
    ):
        self._head = head if head is not None else Catalog(Section.HEAD)
        chain = chain if chain is not None else Catalog(Section.CHAIN)
        if chain.base is not self._head:
            chain = chain.rebased(self._head)
        self._chain = chain
        self._equations = equations if equations is not None else EquationCatalog()
        self._settings = settings if settings is not None else GeneralSettings()

        duplicates = set(self._head) & set(self._chain)
        if duplicates:
            name = sorted(duplicates)[0]
            raise MalformedInputError(
                name, "The name is used in the head and in the chain section."
            )

    @classmethod
    def build(
        cls,
        head_rules: Iterable[FragmentRule] = (),
        chain_rules: Iterable[FragmentRule] = (),
        equations: Iterable[IntensityRule] = (),
        settings: Mapping[str, str] | GeneralSettings | None = None,
    ) -> "RuleSet":
        """Build a rule set from plain rules; equations are validated in the given order.

        Raises
        ------
        MalformedInputError
            Duplicate names or invalid settings.
        UnknownReferenceError
            An equation references a fragment that is not resolved.
        """
        if not isinstance(settings, GeneralSettings):
            settings = GeneralSettings(settings or {})
        head = Catalog(Section.HEAD, head_rules)
        chain = Catalog(Section.CHAIN, chain_rules, head)

        catalog = EquationCatalog()
        for rule in equations:
            catalog = catalog.insert(head, chain, rule, settings)

        return cls(head, chain, catalog, settings)

    @property
    def head(self) -> Catalog:
        return self._head

    @property
    def chain(self) -> Catalog:
        return self._chain

    @property
    def equations(self) -> EquationCatalog:
        return self._equations

    @property
    def settings(self) -> GeneralSettings:
        return self._settings

    def catalog(self, section: str) -> Catalog:
        if section == Section.HEAD:
            return self._head
        if section == Section.CHAIN:
            return self._chain
        raise ValueError(f"Section {section} has no fragment catalog.")

    def section_of(self, name: str) -> str | None:
        """Section of the fragment called `name`, None if there is none."""
        if name in self._head:
            return Section.HEAD
        if name in self._chain:
            return Section.CHAIN
        return None

    def replace(
        self,
        head: Catalog | None = None,
        chain: Catalog | None = None,
        equations: EquationCatalog | None = None,
        settings: GeneralSettings | None = None,
    ) -> "RuleSet":
        """A new rule set with the given parts replaced; the chain catalog follows a replaced head catalog."""
        head = head if head is not None else self._head
        chain = chain if chain is not None else self._chain
        return RuleSet(
            head,
            chain.rebased(head) if chain.base is not head else chain,
            equations if equations is not None else self._equations,
            settings if settings is not None else self._settings,
        )

    def with_catalog(self, catalog: Catalog) -> "RuleSet":
        if catalog.section == Section.HEAD:
            return self.replace(head=catalog)
        return self.replace(chain=catalog)

    def __repr__(self) -> str:
        return f"RuleSet(head={self._head!r}, chain={self._chain!r}, equations={len(self._equations)})"
