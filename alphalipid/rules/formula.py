"""Tokenization of fragment formulas.

A formula is a sequence of signed terms, e.g. ``$PRECURSOR-C5H14NO4P`` or ``NL_PC+H2O``.
Each term is one of

- ``$PRECURSOR``, which may only be added,
- a chain placeholder (``$CHAIN``, ``$ALKYLCHAIN``, ``$ALKENYLCHAIN``, ``$LCB``), at most one per formula,
- the name of another fragment rule,
- an elemental formula such as ``C5H14NO4P``.

Whether a term names a fragment or an elemental formula depends on the names that are known: a term equal to a
known fragment name is a reference, a term that is a valid elemental formula is an elemental formula, anything else
is a reference to a fragment that does not exist (yet).
"""

import re
from dataclasses import dataclass

from alphabase.constants.atom import CHEM_MONO_MASS

from alphalipid.constants.keys import (
    CHAIN_PLACEHOLDER_TYPES,
    ConstantsClass,
    Placeholder,
)
from alphalipid.exceptions import MalformedInputError

ELEMENT_PATTERN = re.compile(r"([A-Z][a-z]?)(\d*)")
ELEMENTAL_FORMULA_PATTERN = re.compile(r"(?:[A-Z][a-z]?\d*)+")

# characters that separate or qualify names in formulas and equations
RESERVED_NAME_CHARACTERS = set("$+-*/<>|=()[]")


class TermKind(metaclass=ConstantsClass):
    PRECURSOR = "precursor"
    CHAIN = "chain"
    NAME = "name"
    ELEMENTS = "elements"


@dataclass(frozen=True)
class FormulaTerm:
    """A single signed term of a fragment formula.

    `sign` is +1 or -1, `text` is the term as written.
    For elemental terms `elements` holds the parsed element counts.
    """

    sign: int
    kind: str
    text: str
    elements: tuple[tuple[str, int], ...] = ()


def validate_name(name: str) -> str:
    """Check that `name` can be used as fragment name and return it stripped.

    Raises
    ------
    MalformedInputError
        The name is empty, starts with a digit or a decimal number like ``.5``, or contains whitespace or
        reserved characters.
    """
    if not isinstance(name, str) or not name.strip():
        raise MalformedInputError(str(name), "The name must not be empty.")

    name = name.strip()
    if name[0].isdigit():
        raise MalformedInputError(name, "The name must not start with a digit.")
    # equations read these as numbers
    if re.match(r"\.\d", name):
        raise MalformedInputError(
            name, "The name must not start with a decimal point followed by a digit."
        )

    illegal = sorted(
        {c for c in name if c in RESERVED_NAME_CHARACTERS or c.isspace()}
    )
    if illegal:
        raise MalformedInputError(
            name,
            f"The name must not contain whitespace or any of '{''.join(sorted(RESERVED_NAME_CHARACTERS))}', found {illegal}.",
        )
    return name


def parse_elements(text: str) -> dict[str, int] | None:
    """Parse an elemental formula like ``C5H14NO4P`` into element counts.

    Returns None if `text` is not a valid elemental formula or contains an element that is not in the alphabase
    element table. Repeated elements are summed, an element without count counts once.
    """
    if not ELEMENTAL_FORMULA_PATTERN.fullmatch(text):
        return None

    counts = {}
    for element, amount in ELEMENT_PATTERN.findall(text):
        if element not in CHEM_MONO_MASS:
            return None
        counts[element] = counts.get(element, 0) + (int(amount) if amount else 1)
    return counts


def split_terms(formula: str, rule_name: str) -> list[tuple[int, str]]:
    """Split a formula into (sign, text) pairs at '+' and '-'; whitespace is ignored."""
    compact = "".join(formula.split())
    if not compact:
        raise MalformedInputError(rule_name, "The formula must not be empty.")

    terms = []
    sign = 1
    current = ""
    for i, char in enumerate(compact):
        if char in "+-":
            if current:
                terms.append((sign, current))
            elif i > 0:
                raise MalformedInputError(
                    rule_name, f"Two signs in a row in formula '{formula}'."
                )
            sign = 1 if char == "+" else -1
            current = ""
        else:
            current += char

    if not current:
        raise MalformedInputError(
            rule_name, f"The formula '{formula}' must not end with a sign."
        )
    terms.append((sign, current))
    return terms


def tokenize_formula(
    formula: str, rule_name: str, known_names: frozenset[str] = frozenset()
) -> tuple[FormulaTerm, ...]:
    """Tokenize a fragment formula into typed terms.

    Parameters
    ----------
    formula : str
        The formula as written by the user.

    rule_name : str
        Name of the rule the formula belongs to, used in error messages.

    known_names : frozenset of str
        Fragment names that take precedence over elemental formulas.

    Returns
    -------
    tuple of FormulaTerm

    Raises
    ------
    MalformedInputError
        The formula is syntactically invalid: empty terms, a subtracted precursor, an unknown placeholder,
        more than one precursor or chain placeholder, or a term that can be neither a name nor an elemental formula.
    """
    terms = []
    for sign, text in split_terms(formula, rule_name):
        if text.startswith("$"):
            if text == Placeholder.PRECURSOR:
                if sign < 0:
                    raise MalformedInputError(
                        rule_name, f"{Placeholder.PRECURSOR} may only be added."
                    )
                terms.append(FormulaTerm(sign, TermKind.PRECURSOR, text))
            elif text in CHAIN_PLACEHOLDER_TYPES:
                terms.append(FormulaTerm(sign, TermKind.CHAIN, text))
            else:
                raise MalformedInputError(
                    rule_name, f"Unknown placeholder '{text}' in formula."
                )
        elif text in known_names:
            terms.append(FormulaTerm(sign, TermKind.NAME, text))
        elif (elements := parse_elements(text)) is not None:
            terms.append(
                FormulaTerm(sign, TermKind.ELEMENTS, text, tuple(elements.items()))
            )
        else:
            try:
                validate_name(text)
            except MalformedInputError:
                raise MalformedInputError(
                    rule_name,
                    f"'{text}' is neither an elemental formula nor a fragment name.",
                ) from None
            terms.append(FormulaTerm(sign, TermKind.NAME, text))

    if sum(t.kind == TermKind.PRECURSOR for t in terms) > 1:
        raise MalformedInputError(
            rule_name, f"{Placeholder.PRECURSOR} may only be used once."
        )
    if sum(t.kind == TermKind.CHAIN for t in terms) > 1:
        raise MalformedInputError(
            rule_name, "Only one chain placeholder is allowed per formula."
        )

    return tuple(terms)


def format_elements(elements: dict[str, int]) -> str:
    """Format element counts as a formula string, carbon and hydrogen first.

    Negative counts are kept, e.g. ``{"H": -2, "O": -1}`` becomes ``H-2O-1``.
    """
    order = sorted(
        (e for e, n in elements.items() if n != 0),
        key=lambda e: (e != "C", e != "H", e),
    )
    return "".join(
        f"{e}{elements[e]}" if elements[e] != 1 else e for e in order
    )


def monoisotopic_mass(elements: dict[str, int]) -> float:
    """Sum the alphabase monoisotopic masses of the given element counts."""
    return float(sum(CHEM_MONO_MASS[e] * n for e, n in elements.items()))
