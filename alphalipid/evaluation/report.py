"""Result of evaluating a rule set against one spectrum."""

from collections.abc import Mapping
from dataclasses import dataclass, field

import pandas as pd

from alphalipid.constants.keys import DISCARD_REASON_DESCRIPTIONS, Section
from alphalipid.evaluation.positions import PositionReport
from alphalipid.rules.models import IntensityRule


@dataclass(frozen=True)
class EquationOutcome:
    rule: IntensityRule
    fulfilled: bool
    values: str = ""
    chain_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "section": self.rule.section,
            "chain": self.chain_id,
            "equation": self.rule.text,
            "mandatory": self.rule.mandatory,
            "fulfilled": self.fulfilled,
            "values": self.values,
        }


@dataclass(frozen=True)
class DiscardedFragment:
    name: str
    section: str
    reason: str
    chain_id: str | None = None

    @property
    def description(self) -> str:
        return DISCARD_REASON_DESCRIPTIONS[self.reason]

    def to_dict(self) -> dict:
        return {
            "section": self.section,
            "chain": self.chain_id,
            "fragment": self.name,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class HeadReport:
    """Outcome of the head section.

    `satisfied` is True iff every mandatory head fragment was found and every mandatory head equation is fulfilled.
    """

    satisfied: bool
    found: Mapping[str, float] = field(default_factory=dict)
    discarded: Mapping[str, str] = field(default_factory=dict)
    equations: tuple[EquationOutcome, ...] = ()
    missing_mandatory: tuple[str, ...] = ()
    violated_mandatory: tuple[IntensityRule, ...] = ()


@dataclass(frozen=True)
class ChainReport:
    """Outcome of one chain.

    `accepted` is True iff every mandatory chain fragment was found for this chain and every mandatory chain
    equation is fulfilled for it. `reason` is set if the chain is not part of any surviving combination.
    """

    chain_id: str
    accepted: bool
    found: Mapping[str, float] = field(default_factory=dict)
    discarded: Mapping[str, str] = field(default_factory=dict)
    equations: tuple[EquationOutcome, ...] = ()
    missing_mandatory: tuple[str, ...] = ()
    violated_mandatory: tuple[IntensityRule, ...] = ()
    intensity: float = 0.0
    reason: str | None = None


@dataclass(frozen=True)
class CombinationReport:
    chains: tuple[str, ...]
    accepted: bool
    intensity: float = 0.0
    rejected_chains: tuple[str, ...] = ()
    reason: str | None = None
    positions: PositionReport | None = None

    def to_dict(self) -> dict:
        return {
            "chains": list(self.chains),
            "accepted": self.accepted,
            "intensity": self.intensity,
            "rejected_chains": list(self.rejected_chains),
            "reason": self.reason,
            "positions": None if self.positions is None else self.positions.to_dict(),
        }


@dataclass(frozen=True)
class EvaluationReport:
    """Accept/reject verdict of a rule set for one spectrum together with the full diagnostic trace.

    Attributes
    ----------
    verdict : bool
        True iff the head and the chain section are satisfied. Position rules never affect the verdict.

    head : HeadReport
        Found and discarded head fragments and the outcome of all head equations.

    chain_satisfied : bool
        True iff a chain combination survived, or the chain section defines nothing mandatory.

    chains : dict
        Chain id to `ChainReport`.

    combinations : tuple of CombinationReport
        All evaluated chain combinations with their position assignments.

    unresolved : dict
        Section to the names of fragment rules that could not be resolved and were not evaluated.

    base_peak : float
        Base peak intensity the cutoffs were applied to.
    """

    verdict: bool
    head: HeadReport
    chain_satisfied: bool
    chains: Mapping[str, ChainReport] = field(default_factory=dict)
    combinations: tuple[CombinationReport, ...] = ()
    unresolved: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    base_peak: float = 0.0

    @property
    def head_satisfied(self) -> bool:
        return self.head.satisfied

    @property
    def equations(self) -> tuple[EquationOutcome, ...]:
        outcomes = list(self.head.equations)
        for chain in self.chains.values():
            outcomes += chain.equations
        return tuple(outcomes)

    @property
    def discarded(self) -> tuple[DiscardedFragment, ...]:
        """Every fragment that was not matched, or whose chain was dropped, with one reason each."""
        discarded = [
            DiscardedFragment(name, Section.HEAD, reason)
            for name, reason in self.head.discarded.items()
        ]
        for chain in self.chains.values():
            discarded += [
                DiscardedFragment(name, Section.CHAIN, reason, chain.chain_id)
                for name, reason in chain.discarded.items()
            ]
            if chain.reason is not None:
                discarded += [
                    DiscardedFragment(name, Section.CHAIN, chain.reason, chain.chain_id)
                    for name in chain.found
                ]
        return tuple(discarded)

    @property
    def contradictions(self) -> tuple[tuple[IntensityRule, IntensityRule], ...]:
        return tuple(
            pair
            for combination in self.combinations
            if combination.positions is not None
            for pair in combination.positions.contradictions
        )

    def to_dict(self) -> dict:
        """JSON-serializable representation of the report."""
        return {
            "verdict": self.verdict,
            "head_satisfied": self.head.satisfied,
            "chain_satisfied": self.chain_satisfied,
            "base_peak": self.base_peak,
            "head": {
                "found": dict(self.head.found),
                "missing_mandatory": list(self.head.missing_mandatory),
                "violated_mandatory": [r.text for r in self.head.violated_mandatory],
            },
            "chains": {
                chain_id: {
                    "accepted": chain.accepted,
                    "intensity": chain.intensity,
                    "found": dict(chain.found),
                    "missing_mandatory": list(chain.missing_mandatory),
                    "violated_mandatory": [r.text for r in chain.violated_mandatory],
                    "reason": chain.reason,
                }
                for chain_id, chain in self.chains.items()
            },
            "combinations": [c.to_dict() for c in self.combinations],
            "equations": [e.to_dict() for e in self.equations],
            "discarded": [d.to_dict() for d in self.discarded],
            "unresolved": {k: list(v) for k, v in self.unresolved.items()},
        }

    def to_frame(self) -> pd.DataFrame:
        """One row per evaluated equation."""
        return pd.DataFrame(
            [e.to_dict() for e in self.equations],
            columns=["section", "chain", "equation", "mandatory", "fulfilled", "values"],
        )

    def discarded_frame(self) -> pd.DataFrame:
        """One row per discarded fragment."""
        return pd.DataFrame(
            [d.to_dict() for d in self.discarded],
            columns=["section", "chain", "fragment", "reason"],
        )


def format_debug_report(report: EvaluationReport) -> str:
    """Human readable summary of why a rule set accepted or rejected a spectrum."""
    lines = [f"verdict: {'accepted' if report.verdict else 'rejected'}"]

    lines.append(f"head: {'satisfied' if report.head.satisfied else 'not satisfied'}")
    for name in report.head.missing_mandatory:
        lines.append(f"  missing mandatory fragment {name}")
    for rule in report.head.violated_mandatory:
        lines.append(f"  violated mandatory rule {rule.text}")

    lines.append(f"chains: {'satisfied' if report.chain_satisfied else 'not satisfied'}")
    for chain in report.chains.values():
        status = "accepted" if chain.accepted else "rejected"
        lines.append(f"  {chain.chain_id}: {status}")
        for name in chain.missing_mandatory:
            lines.append(f"    missing mandatory fragment {name}")
        for rule in chain.violated_mandatory:
            lines.append(f"    violated mandatory rule {rule.text}")
        if chain.reason is not None:
            lines.append(f"    {DISCARD_REASON_DESCRIPTIONS[chain.reason]}")

    for combination in report.combinations:
        label = "/".join(combination.chains)
        if not combination.accepted:
            reason = (
                DISCARD_REASON_DESCRIPTIONS[combination.reason]
                if combination.reason is not None
                else f"rejected chains {', '.join(combination.rejected_chains)}"
            )
            lines.append(f"combination {label}: discarded ({reason})")
            continue
        positions = combination.positions
        if positions is None or positions.assignment is None:
            lines.append(f"combination {label}: positions undetermined")
        else:
            assigned = "_".join(
                positions.assignment[p] for p in sorted(positions.assignment)
            )
            lines.append(f"combination {label}: {assigned}")
        if positions is not None:
            for rule in positions.unfulfilled:
                lines.append(f"  unfulfilled position rule {rule.text}")
            for first, second in positions.contradictions:
                lines.append(f"  contradicting position rules {first.text} and {second.text}")

    discarded = report.discarded
    if discarded:
        lines.append("discarded fragments:")
        for fragment in discarded:
            where = f" ({fragment.chain_id})" if fragment.chain_id is not None else ""
            lines.append(f"  {fragment.name}{where}: {fragment.description}")

    for section, names in report.unresolved.items():
        if names:
            lines.append(f"unresolved {section} fragments: {', '.join(names)}")

    return "\n".join(lines)
