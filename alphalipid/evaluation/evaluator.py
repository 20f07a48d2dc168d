import logging
from collections.abc import Mapping, Sequence
from dataclasses import replace

from alphalipid.constants.keys import DiscardReason, Section
from alphalipid.evaluation.match import MatchResult
from alphalipid.evaluation.positions import assign_positions
from alphalipid.evaluation.report import (
    ChainReport,
    CombinationReport,
    EquationOutcome,
    EvaluationReport,
    HeadReport,
)
from alphalipid.rules.catalog import RuleSet
from alphalipid.rules.equation import interpret
from alphalipid.rules.models import IntensityRule, ResolvedFragment

logger = logging.getLogger()


def _filter_found(
    fragments: Sequence[ResolvedFragment],
    observed: Mapping[str, float | None],
    reasons: Mapping[str, str],
    threshold: float,
) -> tuple[dict[str, float], dict[str, str]]:
    """Split resolved fragments into found intensities and discarded fragments with their reason."""
    found = {}
    discarded = {}
    for fragment in fragments:
        name = fragment.name
        intensity = observed.get(name)
        if intensity is None:
            default = DiscardReason.NO_PEAK if name in observed else DiscardReason.UNKNOWN
            discarded[name] = reasons.get(name, default)
        elif intensity < threshold:
            discarded[name] = DiscardReason.BELOW_INTENSITY_CUTOFF
        else:
            found[name] = float(intensity)
    return found, discarded


def _evaluate_equations(
    rules: Sequence[IntensityRule],
    found: Mapping[str, float],
    base_peak: float,
    chain_id: str | None = None,
) -> tuple[EquationOutcome, ...]:
    def lookup(name, position):
        return found.get(name)

    return tuple(
        EquationOutcome(
            rule,
            rule.is_fulfilled(lookup, base_peak),
            interpret(rule.equation, lookup, base_peak),
            chain_id,
        )
        for rule in rules
    )


class RuleEvaluator:
    def __init__(self, base_peak_cutoff: float = 0.0, chain_cutoff: float = 0.0):
        """Evaluate a rule set against the matched fragment intensities of one spectrum.

        Parameters
        ----------
        base_peak_cutoff : float, default 0.0
            Fragments below this fraction of the base peak are discarded. Used if the rule set does not define
            `BasePeakCutoff`.

        chain_cutoff : float, default 0.0
            Chain combinations below this fraction of the strongest combination are discarded. Used if the rule
            set does not define `ChainCutoff`.
        """
        self.base_peak_cutoff = base_peak_cutoff
        self.chain_cutoff = chain_cutoff

    def evaluate(self, rule_set: RuleSet, match: MatchResult) -> EvaluationReport:
        """Evaluate all resolved fragments and all equations of `rule_set`.

        A referenced fragment without intensity makes an equation unfulfilled. Unresolved fragment rules are not
        evaluated but listed in the report.

        Parameters
        ----------
        rule_set : RuleSet
            The rule set to evaluate.

        match : MatchResult
            Matched intensities of one spectrum.

        Returns
        -------
        EvaluationReport
        """
        settings = rule_set.settings
        base_peak_cutoff = (
            settings.base_peak_cutoff
            if settings.base_peak_cutoff is not None
            else self.base_peak_cutoff
        )
        chain_cutoff = (
            settings.chain_cutoff
            if settings.chain_cutoff is not None
            else self.chain_cutoff
        )
        base_peak = float(match.base_peak)
        threshold = base_peak_cutoff * base_peak

        head = self._evaluate_head(rule_set, match, threshold, base_peak)

        chains = {
            chain_id: self._evaluate_chain(
                rule_set, chain_id, match, head.found, threshold, base_peak
            )
            for chain_id in match.chains
        }

        combinations = self._evaluate_combinations(
            rule_set, match, chains, head.found, chain_cutoff, base_peak
        )

        surviving = {
            c
            for combination in combinations
            if combination.accepted
            for c in combination.chains
        }
        thresholded = {
            c
            for combination in combinations
            if combination.reason == DiscardReason.BELOW_COMBINATION_THRESHOLD
            for c in combination.chains
        }
        for chain_id, chain in chains.items():
            if chain_id in surviving:
                continue
            if chain_id in thresholded:
                reason = DiscardReason.BELOW_COMBINATION_THRESHOLD
            elif chain.accepted:
                reason = DiscardReason.NO_MATCHING_PARTNER_CHAIN
            else:
                continue
            chains[chain_id] = replace(chain, reason=reason)

        chain_has_mandatory = any(
            f.rule.mandatory for f in rule_set.chain.order
        ) or any(r.mandatory for r in rule_set.equations.chain)
        chain_satisfied = bool(surviving) or not chain_has_mandatory

        verdict = head.satisfied and chain_satisfied
        logger.debug(
            f"Verdict {verdict}: head satisfied {head.satisfied}, chain satisfied {chain_satisfied}"
        )

        return EvaluationReport(
            verdict=verdict,
            head=head,
            chain_satisfied=chain_satisfied,
            chains=chains,
            combinations=combinations,
            unresolved={
                Section.HEAD: tuple(sorted(rule_set.head.unresolved)),
                Section.CHAIN: tuple(sorted(rule_set.chain.unresolved)),
            },
            base_peak=base_peak,
        )

    def _evaluate_head(
        self, rule_set: RuleSet, match: MatchResult, threshold: float, base_peak: float
    ) -> HeadReport:
        found, discarded = _filter_found(
            rule_set.head.order, match.head, match.head_reasons, threshold
        )
        equations = _evaluate_equations(rule_set.equations.head, found, base_peak)

        missing = tuple(
            f.name for f in rule_set.head.order if f.rule.mandatory and f.name not in found
        )
        violated = tuple(
            e.rule for e in equations if e.rule.mandatory and not e.fulfilled
        )
        return HeadReport(
            satisfied=not missing and not violated,
            found=found,
            discarded=discarded,
            equations=equations,
            missing_mandatory=missing,
            violated_mandatory=violated,
        )

    def _evaluate_chain(
        self,
        rule_set: RuleSet,
        chain_id: str,
        match: MatchResult,
        head_found: Mapping[str, float],
        threshold: float,
        base_peak: float,
    ) -> ChainReport:
        found, discarded = _filter_found(
            rule_set.chain.order,
            match.chains[chain_id],
            match.chain_reasons.get(chain_id, {}),
            threshold,
        )
        equations = _evaluate_equations(
            rule_set.equations.chain, {**head_found, **found}, base_peak, chain_id
        )

        missing = tuple(
            f.name for f in rule_set.chain.order if f.rule.mandatory and f.name not in found
        )
        violated = tuple(
            e.rule for e in equations if e.rule.mandatory and not e.fulfilled
        )
        return ChainReport(
            chain_id=chain_id,
            accepted=not missing and not violated,
            found=found,
            discarded=discarded,
            equations=equations,
            missing_mandatory=missing,
            violated_mandatory=violated,
            intensity=sum(found.values()),
        )

    def _evaluate_combinations(
        self,
        rule_set: RuleSet,
        match: MatchResult,
        chains: Mapping[str, ChainReport],
        head_found: Mapping[str, float],
        chain_cutoff: float,
        base_peak: float,
    ) -> tuple[CombinationReport, ...]:
        candidates = match.combinations
        if not candidates and chains:
            candidates = (tuple(chains),)

        evaluated = []
        for combination in candidates:
            rejected = tuple(
                c for c in combination if c not in chains or not chains[c].accepted
            )
            intensity = sum(chains[c].intensity for c in combination if c in chains)
            evaluated.append((combination, rejected, intensity))

        strongest = max(
            (intensity for _, rejected, intensity in evaluated if not rejected),
            default=0.0,
        )
        threshold = chain_cutoff * strongest

        chain_found = {chain_id: chain.found for chain_id, chain in chains.items()}
        reports = []
        for combination, rejected, intensity in evaluated:
            if rejected:
                reports.append(
                    CombinationReport(combination, False, intensity, rejected)
                )
            elif intensity < threshold:
                reports.append(
                    CombinationReport(
                        combination,
                        False,
                        intensity,
                        reason=DiscardReason.BELOW_COMBINATION_THRESHOLD,
                    )
                )
            else:
                positions = assign_positions(
                    rule_set.equations.position,
                    combination,
                    chain_found,
                    head_found,
                    base_peak,
                )
                reports.append(
                    CombinationReport(combination, True, intensity, positions=positions)
                )
        return tuple(reports)
