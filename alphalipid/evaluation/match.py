"""Matched fragment intensities of one spectrum and a reference peak list matcher.

The evaluator only needs a `MatchResult`. It can be built from a centroided peak list with
`build_match_result` or be provided directly, e.g. read from a yaml file with `MatchResult.from_dict`.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import numpy as np
from alphabase.constants.atom import CHEM_MONO_MASS, MASS_PROTON

from alphalipid.constants.keys import ChainType, DiscardReason
from alphalipid.exceptions import MalformedInputError
from alphalipid.rules.catalog import RuleSet
from alphalipid.rules.formula import monoisotopic_mass, parse_elements
from alphalipid.rules.models import ResolvedFragment

logger = logging.getLogger()

MASS_ELECTRON = CHEM_MONO_MASS["H"] - MASS_PROTON


@dataclass(frozen=True)
class MatchResult:
    """Intensities of the fragments of a rule set found in one spectrum.

    Attributes
    ----------
    head : dict
        Head fragment name to intensity, None if the fragment was searched but not found.

    chains : dict
        Chain id to a dict of chain fragment name to intensity.

    base_peak : float
        Intensity of the most intense peak of the spectrum.

    head_reasons : dict
        Head fragment name to the reason why it was not found, as reported by the matcher.

    chain_reasons : dict
        Chain id to a dict of chain fragment name to the reason why it was not found.

    combinations : tuple of tuple of str
        Candidate chain combinations, each a tuple of chain ids.
    """

    head: Mapping[str, float | None] = field(default_factory=dict)
    chains: Mapping[str, Mapping[str, float | None]] = field(default_factory=dict)
    base_peak: float = 0.0
    head_reasons: Mapping[str, str] = field(default_factory=dict)
    chain_reasons: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    combinations: tuple[tuple[str, ...], ...] = ()

    def __post_init__(self):
        object.__setattr__(
            self, "combinations", tuple(tuple(c) for c in self.combinations)
        )
        reasons = list(self.head_reasons.values()) + [
            r for chain in self.chain_reasons.values() for r in chain.values()
        ]
        unknown = set(reasons) - set(DiscardReason.get_values())
        if unknown:
            raise ValueError(f"Unknown discard reason(s) {sorted(unknown)}")

    @classmethod
    def from_dict(cls, data: dict) -> "MatchResult":
        return cls(
            head=dict(data.get("head") or {}),
            chains={str(k): dict(v or {}) for k, v in (data.get("chains") or {}).items()},
            base_peak=float(data.get("base_peak") or 0.0),
            head_reasons=dict(data.get("head_reasons") or {}),
            chain_reasons={
                str(k): dict(v or {})
                for k, v in (data.get("chain_reasons") or {}).items()
            },
            combinations=tuple(
                tuple(str(c) for c in combination)
                for combination in (data.get("combinations") or ())
            ),
        )

    def to_dict(self) -> dict:
        return {
            "head": dict(self.head),
            "chains": {k: dict(v) for k, v in self.chains.items()},
            "base_peak": self.base_peak,
            "head_reasons": dict(self.head_reasons),
            "chain_reasons": {k: dict(v) for k, v in self.chain_reasons.items()},
            "combinations": [list(c) for c in self.combinations],
        }


@dataclass(frozen=True)
class Spectrum:
    """A centroided peak list, sorted by m/z on construction."""

    mz: np.ndarray
    intensity: np.ndarray
    ms_level: int = 2

    def __post_init__(self):
        mz = np.asarray(self.mz, dtype=np.float64)
        intensity = np.asarray(self.intensity, dtype=np.float64)
        if mz.shape != intensity.shape or mz.ndim != 1:
            raise ValueError("mz and intensity must be one dimensional and of equal length.")
        order = np.argsort(mz, kind="stable")
        object.__setattr__(self, "mz", mz[order])
        object.__setattr__(self, "intensity", intensity[order])

    @property
    def base_peak(self) -> float:
        return float(self.intensity.max()) if len(self.intensity) else 0.0


@dataclass(frozen=True)
class Peak:
    mz: float
    intensity: float


@dataclass(frozen=True)
class Chain:
    """A fatty acyl, alkyl, alkenyl or long chain base with its elemental formula, e.g. ``16:0`` and ``C16H30O``."""

    chain_id: str
    formula: str
    chain_type: str = ChainType.ACYL

    def __post_init__(self):
        if self.chain_type not in ChainType.get_values():
            raise MalformedInputError(self.chain_id, f"Unknown chain type '{self.chain_type}'.")
        if parse_elements(self.formula) is None:
            raise MalformedInputError(
                self.chain_id, f"'{self.formula}' is not a valid elemental formula."
            )

    @property
    def elements(self) -> dict[str, int]:
        return parse_elements(self.formula)


class SpectrumMatcher:
    """Finds the peak of a spectrum that matches an expected m/z."""

    def match(self, mz: float, spectrum: Spectrum) -> Peak | None:
        raise NotImplementedError("Subclasses must implement this method")


class PeakListMatcher(SpectrumMatcher):
    def __init__(self, tolerance_ppm: float = 10.0):
        """Match the most intense peak within a ppm window around the expected m/z.

        Parameters
        ----------
        tolerance_ppm : float, default 10.0
            Half width of the matching window in ppm of the expected m/z.
        """
        if tolerance_ppm <= 0:
            raise ValueError("tolerance_ppm must be positive")
        self.tolerance_ppm = tolerance_ppm

    def match(self, mz: float, spectrum: Spectrum) -> Peak | None:
        window = mz * self.tolerance_ppm * 1e-6
        lower = np.searchsorted(spectrum.mz, mz - window, side="left")
        upper = np.searchsorted(spectrum.mz, mz + window, side="right")
        if lower == upper:
            return None
        idx = lower + int(np.argmax(spectrum.intensity[lower:upper]))
        return Peak(float(spectrum.mz[idx]), float(spectrum.intensity[idx]))


class FragmentCalculator:
    def __init__(self, precursor_formula: str | None = None):
        """Compute the expected m/z of resolved fragments.

        The composition of a fragment is the precursor ion formula (if the fragment contains the precursor),
        plus or minus the chain formula, plus the fragment's own elements. The m/z is the monoisotopic mass of
        this composition minus one electron per charge, divided by the charge.

        Parameters
        ----------
        precursor_formula : str, optional
            Elemental formula of the precursor ion, required for fragments that contain the precursor.
        """
        self.precursor_elements = None
        if precursor_formula is not None:
            self.precursor_elements = parse_elements(precursor_formula)
            if self.precursor_elements is None:
                raise MalformedInputError(
                    precursor_formula, "The precursor formula is not a valid elemental formula."
                )

    def composition(
        self, fragment: ResolvedFragment, chain: Chain | None = None
    ) -> dict[str, int]:
        elements = dict(fragment.elements)

        if fragment.precursor:
            if self.precursor_elements is None:
                raise ValueError(
                    f"'{fragment.name}' contains the precursor, but no precursor formula was given."
                )
            for element, count in self.precursor_elements.items():
                elements[element] = elements.get(element, 0) + count

        if fragment.chain_action:
            if chain is None:
                raise ValueError(f"'{fragment.name}' needs a chain.")
            for element, count in chain.elements.items():
                elements[element] = (
                    elements.get(element, 0) + fragment.chain_action * count
                )

        return elements

    def mz(self, fragment: ResolvedFragment, chain: Chain | None = None) -> float:
        charge = fragment.rule.charge
        mass = monoisotopic_mass(self.composition(fragment, chain))
        return (mass - charge * MASS_ELECTRON) / charge


def build_match_result(
    rule_set: RuleSet,
    spectrum: Spectrum,
    precursor_formula: str | None = None,
    chains: Iterable[Chain] = (),
    combinations: Iterable[Iterable[str]] = (),
    matcher: SpectrumMatcher | None = None,
) -> MatchResult:
    """Search all resolved fragments of a rule set in a spectrum.

    Only fragments with the MS level of the spectrum are searched. Chain fragments are searched once per chain
    of a matching chain type; fragments independent of the chain are searched once per chain as well.

    Parameters
    ----------
    rule_set : RuleSet
        Rule set to take the resolved head and chain fragments from.

    spectrum : Spectrum
        The centroided spectrum.

    precursor_formula : str, optional
        Elemental formula of the precursor ion.

    chains : iterable of Chain
        Candidate chains of the precursor.

    combinations : iterable of iterable of str
        Candidate chain combinations as tuples of chain ids.

    matcher : SpectrumMatcher, optional
        Defaults to a `PeakListMatcher` with 10 ppm tolerance.

    Returns
    -------
    MatchResult
    """
    if matcher is None:
        matcher = PeakListMatcher()
    calculator = FragmentCalculator(precursor_formula)

    def search(fragment, chain=None):
        peak = matcher.match(calculator.mz(fragment, chain), spectrum)
        return None if peak is None else peak.intensity

    head = {}
    head_reasons = {}
    for fragment in rule_set.head.order:
        if fragment.rule.ms_level != spectrum.ms_level:
            continue
        head[fragment.name] = search(fragment)
        if head[fragment.name] is None:
            head_reasons[fragment.name] = DiscardReason.NO_PEAK

    chain_intensities = {}
    chain_reasons = {}
    for chain in chains:
        found = {}
        reasons = {}
        for fragment in rule_set.chain.order:
            if fragment.rule.ms_level != spectrum.ms_level:
                continue
            if fragment.chain_action and fragment.chain_type != chain.chain_type:
                continue
            found[fragment.name] = search(fragment, chain)
            if found[fragment.name] is None:
                reasons[fragment.name] = DiscardReason.NO_PEAK
        chain_intensities[chain.chain_id] = found
        chain_reasons[chain.chain_id] = reasons

    logger.debug(
        f"Matched {sum(v is not None for v in head.values())} of {len(head)} head fragments in {len(chain_intensities)} chains"
    )

    return MatchResult(
        head=head,
        chains=chain_intensities,
        base_peak=spectrum.base_peak,
        head_reasons=head_reasons,
        chain_reasons=chain_reasons,
        combinations=tuple(tuple(c) for c in combinations),
    )


def read_match_input(
    data: dict, rule_set: RuleSet, tolerance_ppm: float = 10.0
) -> MatchResult:
    """Matched intensities from the content of a match yaml file.

    The file either holds the intensities directly, see `MatchResult.from_dict`, or a centroided ``spectrum``
    with ``mz``, ``intensity`` and an optional ``ms_level``. The fragments of `rule_set` are then searched in the
    spectrum with a `PeakListMatcher`; ``precursor_formula``, ``chains`` (chain id to ``formula`` and optional
    ``chain_type``) and ``combinations`` are read from the file as well.

    Parameters
    ----------
    data : dict
        Content of the match file.

    rule_set : RuleSet
        Rule set whose fragments are searched if the file contains a spectrum.

    tolerance_ppm : float, default 10.0
        Matching tolerance of the peak list matcher.

    Returns
    -------
    MatchResult
    """
    if "spectrum" not in data:
        return MatchResult.from_dict(data)

    peaks = data["spectrum"] or {}
    spectrum = Spectrum(
        mz=peaks.get("mz") or [],
        intensity=peaks.get("intensity") or [],
        ms_level=int(peaks.get("ms_level", 2)),
    )

    chains = []
    for chain_id, chain in (data.get("chains") or {}).items():
        chain = chain or {}
        if "formula" not in chain:
            raise MalformedInputError(str(chain_id), "The chain needs a formula.")
        chains.append(
            Chain(str(chain_id), chain["formula"], chain.get("chain_type", ChainType.ACYL))
        )

    logger.info(
        f"Matching {len(spectrum.mz)} peaks against {len(chains)} chains with {tolerance_ppm} ppm tolerance"
    )
    return build_match_result(
        rule_set,
        spectrum,
        precursor_formula=data.get("precursor_formula"),
        chains=chains,
        combinations=[
            [str(c) for c in combination]
            for combination in (data.get("combinations") or ())
        ],
        matcher=PeakListMatcher(tolerance_ppm=tolerance_ppm),
    )
