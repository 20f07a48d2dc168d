"""Reading and writing of rules files.

A rules file consists of the sections ``[GENERAL]``, ``[HEAD]``, ``[CHAINS]`` and ``[POSITION]``.
The general section holds ``key=value`` lines. The head and chain sections have a ``!FRAGMENTS`` and an
``!INTENSITIES`` subsection, the position section only ``!INTENSITIES``::

    [GENERAL]
    AmountOfChains=2
    BasePeakCutoff=0.1%

    [HEAD]
    !FRAGMENTS
    Name=NL_PC	Formula=$PRECURSOR-C5H15NO4P	Charge=1	MSLevel=2	mandatory=false
    !INTENSITIES
    Equation=NL_PC>0.1*$BASEPEAK	mandatory=false

Fragment rules may be listed in any order. Rules that cannot be resolved are kept and reported as unresolved.
Lines starting with ``#`` are ignored.
"""

import logging
import os

from alphalipid.constants.keys import RulesFileKeys, Section
from alphalipid.exceptions import (
    MalformedInputError,
    RulesFileError,
    UnknownReferenceError,
)
from alphalipid.rules.catalog import (
    Catalog,
    EquationCatalog,
    GeneralSettings,
    RuleSet,
)
from alphalipid.rules.models import FragmentRule, IntensityRule

logger = logging.getLogger()

SECTION_HEADERS = {
    RulesFileKeys.GENERAL: None,
    RulesFileKeys.HEAD: Section.HEAD,
    RulesFileKeys.CHAINS: Section.CHAIN,
    RulesFileKeys.POSITION: Section.POSITION,
}

FRAGMENT_KEYS = (
    RulesFileKeys.NAME,
    RulesFileKeys.FORMULA,
    RulesFileKeys.CHARGE,
    RulesFileKeys.MS_LEVEL,
    RulesFileKeys.MANDATORY,
)
EQUATION_KEYS = (RulesFileKeys.EQUATION, RulesFileKeys.MANDATORY)


def _split_key_values(line: str) -> dict[str, str]:
    """Split a rule line into lower case keys and values.

    Tokens are separated by whitespace; a token without '=' continues the value of the previous key, so that
    equations may contain blanks.
    """
    values = {}
    key = None
    for token in line.split():
        if "=" in token:
            key, value = token.split("=", 1)
            key = key.strip().lower()
            if key in values:
                raise ValueError(f"Key '{key}' is given twice.")
            values[key] = value
        elif key is None:
            raise ValueError(f"Expected 'key=value', got '{token}'.")
        else:
            values[key] += f" {token}"
    return values


def _parse_fragment_line(line: str) -> FragmentRule:
    values = _split_key_values(line)
    unknown = set(values) - set(FRAGMENT_KEYS)
    if unknown:
        raise ValueError(f"Unsupported key(s) {sorted(unknown)} for fragments.")
    if RulesFileKeys.NAME not in values or RulesFileKeys.FORMULA not in values:
        raise ValueError("A fragment needs a Name and a Formula.")
    return FragmentRule(
        name=values[RulesFileKeys.NAME],
        formula=values[RulesFileKeys.FORMULA],
        charge=values.get(RulesFileKeys.CHARGE, 1),
        ms_level=values.get(RulesFileKeys.MS_LEVEL, 2),
        mandatory=values.get(RulesFileKeys.MANDATORY, False),
    )


def _parse_equation_line(line: str, section: str) -> IntensityRule:
    values = _split_key_values(line)
    unknown = set(values) - set(EQUATION_KEYS)
    if unknown:
        raise ValueError(f"Unsupported key(s) {sorted(unknown)} for equations.")
    if RulesFileKeys.EQUATION not in values:
        raise ValueError("An intensity rule needs an Equation.")
    return IntensityRule(
        values[RulesFileKeys.EQUATION],
        mandatory=values.get(RulesFileKeys.MANDATORY, False),
        section=section,
    )


def read_rules(text: str, source: str = "<string>") -> RuleSet:
    """Parse the content of a rules file into a rule set.

    Parameters
    ----------
    text : str
        Content of the rules file.

    source : str
        Name of the file, used in error messages.

    Returns
    -------
    RuleSet

    Raises
    ------
    RulesFileError
        A line cannot be parsed, a rule is malformed or an equation references an unknown fragment.
    """
    settings = []
    fragments = {Section.HEAD: [], Section.CHAIN: []}
    equations = []

    section = None
    in_general = False
    subsection = None

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        try:
            if line.startswith("["):
                header = line.upper()
                if header not in SECTION_HEADERS:
                    raise ValueError(f"Unknown section '{line}'.")
                section = SECTION_HEADERS[header]
                in_general = header == RulesFileKeys.GENERAL
                subsection = None

            elif line.startswith("!"):
                header = line.upper()
                if section is None:
                    raise ValueError(f"'{line}' outside of a rule section.")
                if header == RulesFileKeys.FRAGMENTS and section == Section.POSITION:
                    raise ValueError("The position section has no fragments.")
                if header not in (RulesFileKeys.FRAGMENTS, RulesFileKeys.INTENSITIES):
                    raise ValueError(f"Unknown subsection '{line}'.")
                subsection = header

            elif in_general:
                if "=" not in line:
                    raise ValueError(f"Expected 'key=value', got '{line}'.")
                key, value = line.split("=", 1)
                settings.append((line_number, key.strip(), value.strip()))

            elif subsection == RulesFileKeys.FRAGMENTS:
                fragments[section].append((line_number, _parse_fragment_line(line)))

            elif subsection == RulesFileKeys.INTENSITIES:
                equations.append((line_number, _parse_equation_line(line, section)))

            else:
                raise ValueError(f"'{line}' is not inside a section.")

        except (ValueError, MalformedInputError) as e:
            detail = e.detail_msg if isinstance(e, MalformedInputError) else str(e)
            raise RulesFileError(source, line_number, detail) from e

    try:
        general = GeneralSettings([(key, value) for _, key, value in settings])
    except MalformedInputError as e:
        line_number = next(n for n, key, _ in settings if key == e.rule_name)
        raise RulesFileError(source, line_number, e.detail_msg) from e

    names = {}
    for section_name, rules in fragments.items():
        for line_number, rule in rules:
            if rule.name in names:
                raise RulesFileError(
                    source,
                    line_number,
                    f"The name '{rule.name}' is already defined in line {names[rule.name]}.",
                )
            names[rule.name] = line_number

    head = Catalog(Section.HEAD, [rule for _, rule in fragments[Section.HEAD]])
    chain = Catalog(Section.CHAIN, [rule for _, rule in fragments[Section.CHAIN]], head)
    for catalog in (head, chain):
        for name, outcome in catalog.outcomes.items():
            logger.warning(f"{source}:{names[name]}: {outcome.message}")

    equation_catalog = EquationCatalog()
    for line_number, rule in equations:
        try:
            equation_catalog = equation_catalog.insert(head, chain, rule, general)
        except (UnknownReferenceError, MalformedInputError) as e:
            raise RulesFileError(source, line_number, e.detail_msg) from e

    logger.info(
        f"Read {len(head) + len(chain)} fragment rules and {len(equation_catalog)} intensity rules from {source}"
    )
    return RuleSet(head, chain, equation_catalog, general)


def load_rules(path: str) -> RuleSet:
    """Read a rules file from disk."""
    with open(path, encoding="utf-8") as f:
        return read_rules(f.read(), source=os.path.basename(path))


def _format_fragment(rule: FragmentRule) -> str:
    return "\t".join(
        [
            f"Name={rule.name}",
            f"Formula={rule.formula}",
            f"Charge={rule.charge}",
            f"MSLevel={rule.ms_level}",
            f"mandatory={str(rule.mandatory).lower()}",
        ]
    )


def _format_equation(rule: IntensityRule) -> str:
    return f"Equation={rule.text}\tmandatory={str(rule.mandatory).lower()}"


def format_rules(rule_set: RuleSet) -> str:
    """Render a rule set in the rules file format.

    Fragments are written in resolution order followed by the unresolved ones, so that the file can also be read
    by tools that require definitions before use.
    """
    lines = [RulesFileKeys.GENERAL]
    lines += [f"{key}={value}" for key, value in rule_set.settings.items()]

    for header, section in (
        (RulesFileKeys.HEAD, Section.HEAD),
        (RulesFileKeys.CHAINS, Section.CHAIN),
    ):
        catalog = rule_set.catalog(section)
        lines += ["", header, RulesFileKeys.FRAGMENTS]
        names = list(catalog.order_names) + [
            name for name in catalog if name in catalog.unresolved
        ]
        lines += [_format_fragment(catalog[name]) for name in names]
        lines.append(RulesFileKeys.INTENSITIES)
        lines += [_format_equation(rule) for rule in rule_set.equations.section(section)]

    lines += ["", RulesFileKeys.POSITION, RulesFileKeys.INTENSITIES]
    lines += [_format_equation(rule) for rule in rule_set.equations.position]

    return "\n".join(lines) + "\n"


def write_rules(rule_set: RuleSet, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(format_rules(rule_set))
