class ConstantsClass(type):
    """A metaclass for classes that should only contain string constants."""

    def __setattr__(self, name, value):
        raise TypeError("Constants class cannot be modified")

    def get_values(cls):
        """Get all user-defined string values of the class."""
        return [
            value
            for key, value in cls.__dict__.items()
            if not key.startswith("__") and isinstance(value, str)
        ]


class ConfigKeys(metaclass=ConstantsClass):
    """String constants for accessing the config."""

    VERSION = "version"
    OUTPUT_DIRECTORY = "output_directory"
    RULES_PATH = "rules_path"
    MATCH_PATH = "match_path"

    GENERAL = "general"
    LOG_LEVEL = "log_level"

    MATCHING = "matching"
    TOLERANCE_PPM = "tolerance_ppm"

    EVALUATION = "evaluation"
    BASE_PEAK_CUTOFF = "base_peak_cutoff"
    CHAIN_CUTOFF = "chain_cutoff"


class Section(metaclass=ConstantsClass):
    """String constants for the sections of a rule set."""

    HEAD = "HEAD"
    CHAIN = "CHAINS"
    POSITION = "POSITION"


class DiscardReason(metaclass=ConstantsClass):
    """String constants for the reasons a fragment or chain combination was discarded."""

    NO_PEAK = "NO_PEAK"
    BELOW_INTENSITY_CUTOFF = "BELOW_INTENSITY_CUTOFF"
    NO_MATCHING_PARTNER_CHAIN = "NO_MATCHING_PARTNER_CHAIN"
    BELOW_COMBINATION_THRESHOLD = "BELOW_COMBINATION_THRESHOLD"
    UNKNOWN = "UNKNOWN"


DISCARD_REASON_DESCRIPTIONS = {
    DiscardReason.NO_PEAK: "no peak found at the expected m/z",
    DiscardReason.BELOW_INTENSITY_CUTOFF: "peak intensity below the base peak cutoff",
    DiscardReason.NO_MATCHING_PARTNER_CHAIN: "no chain combination possible with this chain",
    DiscardReason.BELOW_COMBINATION_THRESHOLD: "combination intensity below the chain cutoff",
    DiscardReason.UNKNOWN: "unknown reason",
}


class UnresolvedReason(metaclass=ConstantsClass):
    """String constants for the reasons a fragment rule could not be resolved."""

    UNKNOWN_REFERENCE = "UNKNOWN_REFERENCE"
    SELF_REFERENCE = "SELF_REFERENCE"
    INVALID_COMPOSITION = "INVALID_COMPOSITION"


class Placeholder(metaclass=ConstantsClass):
    """String constants for the placeholders allowed in formulas and equations."""

    PRECURSOR = "$PRECURSOR"
    CHAIN = "$CHAIN"
    ALKYL_CHAIN = "$ALKYLCHAIN"
    ALKENYL_CHAIN = "$ALKENYLCHAIN"
    LCB = "$LCB"
    BASE_PEAK = "$BASEPEAK"


class ChainType(metaclass=ConstantsClass):
    """String constants for the chain types a chain fragment can be built from."""

    ACYL = "acyl"
    ALKYL = "alkyl"
    ALKENYL = "alkenyl"
    LCB = "lcb"


CHAIN_PLACEHOLDER_TYPES = {
    Placeholder.CHAIN: ChainType.ACYL,
    Placeholder.ALKYL_CHAIN: ChainType.ALKYL,
    Placeholder.ALKENYL_CHAIN: ChainType.ALKENYL,
    Placeholder.LCB: ChainType.LCB,
}


class GeneralSettingsKeys(metaclass=ConstantsClass):
    """String constants for the keys of the [GENERAL] section of a rules file."""

    AMOUNT_OF_CHAINS = "AmountOfChains"
    ADD_CHAIN_POSITIONS = "AddChainPositions"
    CHAIN_LIBRARY = "ChainLibrary"
    CARBON_ATOMS_FROM_NAME = "CAtomsFromName"
    DOUBLE_BONDS_FROM_NAME = "DoubleBondsFromName"
    BASE_PEAK_CUTOFF = "BasePeakCutoff"
    CHAIN_CUTOFF = "ChainCutoff"
    SPECTRUM_COVERAGE = "SpectrumCoverage"
    ALKYL_CHAINS = "AlkylChains"
    ALKENYL_CHAINS = "AlkenylChains"
    AMOUNT_OF_LCBS = "AmountOfLCBs"
    FA_HYDROXYLATION_RANGE = "FaHydroxylationRange"
    LCB_HYDROXYLATION_RANGE = "LcbHydroxylationRange"


class RulesFileKeys(metaclass=ConstantsClass):
    """String constants for the section headers and rule keys of a rules file."""

    GENERAL = "[GENERAL]"
    HEAD = "[HEAD]"
    CHAINS = "[CHAINS]"
    POSITION = "[POSITION]"
    FRAGMENTS = "!FRAGMENTS"
    INTENSITIES = "!INTENSITIES"

    NAME = "name"
    FORMULA = "formula"
    CHARGE = "charge"
    MS_LEVEL = "mslevel"
    MANDATORY = "mandatory"
    EQUATION = "equation"
