import numpy as np
import pytest

from alphalipid.constants.keys import ChainType, DiscardReason
from alphalipid.exceptions import MalformedInputError
from alphalipid.evaluation.match import (
    MASS_ELECTRON,
    Chain,
    FragmentCalculator,
    MatchResult,
    PeakListMatcher,
    Spectrum,
    build_match_result,
    read_match_input,
)
from alphalipid.rules.catalog import RuleSet
from alphalipid.rules.formula import monoisotopic_mass, parse_elements
from alphalipid.rules.models import FragmentRule

PRECURSOR_FORMULA = "C42H83NO8P"


def resolve_single(name, formula, **kwargs):
    return FragmentRule(name, formula, **kwargs).try_resolve_against({}).fragment


def expected_mz(formula, charge=1):
    return (monoisotopic_mass(parse_elements(formula)) - charge * MASS_ELECTRON) / charge


def test_electron_mass():
    assert MASS_ELECTRON == pytest.approx(0.00054858, abs=1e-7)


def test_spectrum_is_sorted():
    spectrum = Spectrum(mz=[300.0, 100.0, 200.0], intensity=[3.0, 1.0, 2.0])

    assert spectrum.mz.tolist() == [100.0, 200.0, 300.0]
    assert spectrum.intensity.tolist() == [1.0, 2.0, 3.0]
    assert spectrum.base_peak == 3.0


def test_spectrum_rejects_shape_mismatch():
    with pytest.raises(ValueError):
        Spectrum(mz=[100.0, 200.0], intensity=[1.0])


def test_empty_spectrum_base_peak():
    assert Spectrum(mz=np.array([]), intensity=np.array([])).base_peak == 0.0


def test_peak_list_matcher_picks_most_intense_peak_in_window():
    """Test that the most intense of several peaks within the tolerance is matched."""
    spectrum = Spectrum(
        mz=[499.9990, 500.0, 500.0015, 500.1],
        intensity=[10.0, 5.0, 20.0, 100.0],
    )
    matcher = PeakListMatcher(tolerance_ppm=5.0)

    # when
    peak = matcher.match(500.0, spectrum)

    assert peak.mz == pytest.approx(500.0015)
    assert peak.intensity == 20.0


def test_peak_list_matcher_no_peak_in_window():
    spectrum = Spectrum(mz=[499.0, 501.0], intensity=[10.0, 10.0])

    assert PeakListMatcher(tolerance_ppm=10.0).match(500.0, spectrum) is None


@pytest.mark.parametrize("tolerance", [0.0, -1.0])
def test_peak_list_matcher_rejects_invalid_tolerance(tolerance):
    with pytest.raises(ValueError):
        PeakListMatcher(tolerance_ppm=tolerance)


@pytest.mark.parametrize("charge", [1, 2])
def test_fragment_calculator_elemental_fragment(charge):
    fragment = resolve_single("HG_PC", "C5H15NO4P", charge=charge)

    # when
    mz = FragmentCalculator().mz(fragment)

    assert mz == pytest.approx(expected_mz("C5H15NO4P", charge))


def test_fragment_calculator_precursor_loss():
    """Test that a precursor loss is computed from the precursor formula minus the lost elements."""
    fragment = resolve_single("NL_H2O", "$PRECURSOR-H2O")

    # when
    composition = FragmentCalculator(PRECURSOR_FORMULA).composition(fragment)

    assert composition == {"C": 42, "H": 81, "N": 1, "O": 7, "P": 1}


def test_fragment_calculator_chain_loss():
    fragment = resolve_single("NL_FA", "$PRECURSOR-$CHAIN")
    chain = Chain("16:0", "C16H30O")

    # when
    mz = FragmentCalculator(PRECURSOR_FORMULA).mz(fragment, chain)

    assert mz == pytest.approx(expected_mz("C26H53NO7P"))


def test_fragment_calculator_requires_precursor_formula():
    fragment = resolve_single("NL_H2O", "$PRECURSOR-H2O")

    with pytest.raises(ValueError):
        FragmentCalculator().mz(fragment)


def test_fragment_calculator_requires_chain():
    fragment = resolve_single("FA", "$CHAIN-H")

    with pytest.raises(ValueError):
        FragmentCalculator().mz(fragment)


def test_fragment_calculator_rejects_invalid_precursor_formula():
    with pytest.raises(MalformedInputError):
        FragmentCalculator("not a formula")


@pytest.mark.parametrize(
    "formula,chain_type",
    [("C16H30O", "acyl chain"), ("16:0", ChainType.ACYL)],
)
def test_chain_rejects_invalid_input(formula, chain_type):
    with pytest.raises(MalformedInputError):
        Chain("16:0", formula, chain_type)


def test_build_match_result():
    """Test that head and chain fragments are searched and missing fragments are marked."""
    rule_set = RuleSet.build(
        head_rules=[
            FragmentRule("HG_PC", "C5H15NO4P"),
            FragmentRule("NL_H2O", "$PRECURSOR-H2O"),
            FragmentRule("MS3_frag", "C3H9N", ms_level=3),
        ],
        chain_rules=[
            FragmentRule("FA", "$CHAIN-H"),
            FragmentRule("O_FA", "$ALKYLCHAIN"),
        ],
    )
    chains = [Chain("16:0", "C16H30O"), Chain("18:1", "C18H32O")]
    spectrum = Spectrum(
        mz=[expected_mz("C5H15NO4P"), expected_mz("C16H29O"), 1000.0],
        intensity=[1000.0, 200.0, 5.0],
    )

    # when
    match = build_match_result(
        rule_set,
        spectrum,
        precursor_formula=PRECURSOR_FORMULA,
        chains=chains,
        combinations=[["16:0", "18:1"]],
    )

    assert match.head == {"HG_PC": 1000.0, "NL_H2O": None}
    assert match.head_reasons == {"NL_H2O": DiscardReason.NO_PEAK}
    assert match.chains == {"16:0": {"FA": 200.0}, "18:1": {"FA": None}}
    assert match.chain_reasons["18:1"] == {"FA": DiscardReason.NO_PEAK}
    assert match.base_peak == 1000.0
    assert match.combinations == (("16:0", "18:1"),)


def test_build_match_result_skips_unresolved_head_fragments():
    """Test that a head fragment with a chain placeholder is not searched, since it cannot be resolved."""
    rule_set = RuleSet.build(
        head_rules=[
            FragmentRule("HG_PC", "C5H15NO4P"),
            FragmentRule("frag_h", "$PRECURSOR-$CHAIN"),
        ],
    )
    spectrum = Spectrum(mz=[expected_mz("C5H15NO4P")], intensity=[1000.0])

    # when
    match = build_match_result(
        rule_set,
        spectrum,
        precursor_formula=PRECURSOR_FORMULA,
        chains=[Chain("16:0", "C16H30O")],
    )

    assert match.head == {"HG_PC": 1000.0}


def test_match_result_from_dict():
    data = {
        "head": {"HG_PC": 100.0, "NL_PC": None},
        "chains": {"16:0": {"FA": 50.0}},
        "base_peak": 100,
        "head_reasons": {"NL_PC": "BELOW_INTENSITY_CUTOFF"},
        "combinations": [["16:0", "16:0"]],
    }

    # when
    match = MatchResult.from_dict(data)

    assert match.base_peak == 100.0
    assert match.combinations == (("16:0", "16:0"),)
    assert match.chain_reasons == {}
    assert MatchResult.from_dict(match.to_dict()) == match


def test_match_result_rejects_unknown_reason():
    with pytest.raises(ValueError):
        MatchResult(head={"HG_PC": None}, head_reasons={"HG_PC": "BAD_LUCK"})


def spectrum_input(shift_ppm=0.0):
    hg_pc = expected_mz("C5H15NO4P")
    return {
        "spectrum": {
            "mz": [hg_pc * (1 + shift_ppm * 1e-6), expected_mz("C16H31O2")],
            "intensity": [1000.0, 300.0],
        },
        "precursor_formula": PRECURSOR_FORMULA,
        "chains": {
            "16:0": {"formula": "C16H32O2"},
            "18:1": {"formula": "C18H34O2", "chain_type": ChainType.ACYL},
        },
        "combinations": [["16:0", "18:1"]],
    }


@pytest.mark.parametrize("tolerance_ppm,found", [(10.0, False), (50.0, True)])
def test_read_match_input_searches_spectrum_with_tolerance(
    sample_rule_set, tolerance_ppm, found
):
    """Test that a spectrum in the match input is searched with the given tolerance."""
    # when
    match = read_match_input(
        spectrum_input(shift_ppm=20.0), sample_rule_set, tolerance_ppm=tolerance_ppm
    )

    assert (match.head["HG_PC"] == 1000.0) == found
    assert match.chains["16:0"]["FA"] == 300.0
    assert match.chains["18:1"]["FA"] is None
    assert match.base_peak == 1000.0
    assert match.combinations == (("16:0", "18:1"),)


def test_read_match_input_with_intensities(sample_rule_set):
    data = {"head": {"HG_PC": 100.0}, "base_peak": 100.0}

    # when
    match = read_match_input(data, sample_rule_set)

    assert match == MatchResult.from_dict(data)


def test_read_match_input_chain_without_formula_raises(sample_rule_set):
    data = spectrum_input()
    data["chains"] = {"16:0": {"chain_type": ChainType.ACYL}}

    with pytest.raises(MalformedInputError):
        read_match_input(data, sample_rule_set)
