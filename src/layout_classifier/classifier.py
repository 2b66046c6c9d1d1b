"""
Layout Classifier Module.

This module decides which document template a token sequence belongs to.

Scoring (per template):
    score = anchor_weight * anchor share + field_weight * required share

    - anchor share: matched anchor weight over total anchor weight; an
      anchor found outside its expected region counts half
    - required share: required fields whose rule finds at least one
      cheap match (label present, pattern hit, token in region)

The best template must reach ``min_score``. Ties are broken by more
required-field matches, then higher version, then template id.

Author: ML Engineering Team
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from config import get_config
from src.utils.logger import get_logger
from src.utils.exceptions import TemplateNotRecognizedError
from src.ocr_engine.ocr_result import TextRun, TextToken, build_lines
from .templates import (
    DocumentTemplate,
    ExtractionRule,
    RuleKind,
    TemplateRegistry,
    in_region,
)

# Initialize module logger
logger = get_logger(__name__)


@dataclass
class TemplateScore:
    """Score breakdown for one template."""
    template_id: str
    version: int
    score: float
    anchor_share: float
    required_matches: int
    required_total: int

    def sort_key(self) -> Tuple:
        return (-round(self.score, 6), -self.required_matches, -self.version, self.template_id)


@dataclass
class Classification:
    """
    Outcome of layout classification.

    Attributes:
        template: Selected template.
        score: Its score (0 for the fallback).
        scores: Breakdown for every candidate, best first.
        fallback: True when the generic template was used.
    """
    template: DocumentTemplate
    score: float
    scores: List[TemplateScore] = field(default_factory=list)
    fallback: bool = False


def _run_center(run: TextRun, start: int, end: int) -> Optional[Tuple[float, float]]:
    """Centre of the tokens covered by a match."""
    tokens = [span[0] for span in run.slice(start, end)]
    if not tokens:
        return None
    xs = [t.center[0] for t in tokens]
    ys = [t.center[1] for t in tokens]
    return (sum(xs) / len(xs), sum(ys) / len(ys))


def rule_has_match(rule: ExtractionRule, lines: List[TextRun], tokens: List[TextToken]) -> bool:
    """
    Cheap check that a rule could produce a value.

    Label rules only need the label; pattern rules need a hit anywhere
    (in their region, if any); positional rules need a token in their
    region. Derived rules are not checked here.
    """
    if rule.kind is RuleKind.LABEL:
        return any(p.search(line.text) for line in lines for p in rule.label_patterns)

    if rule.kind is RuleKind.PATTERN:
        for line in lines:
            for match in rule.pattern.finditer(line.text):
                center = _run_center(line, match.start(), match.end())
                if center is not None and in_region(center, rule.region):
                    return True
        return False

    if rule.kind is RuleKind.POSITIONAL:
        return any(in_region(t.center, rule.region) for t in tokens)

    return False


class LayoutClassifier:
    """
    Template classifier over recognized tokens.

    Attributes:
        registry: Shared read-only template registry.
        min_score: Score a template must reach to be selected.
        anchor_weight: Weight of the anchor share.
        field_weight: Weight of the required-field share.

    Example:
        >>> classifier = LayoutClassifier(registry)
        >>> classification = classifier.classify_or_fallback(tokens)
        >>> classification.template.template_id
        'us-driver-license-v1'
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        min_score: Optional[float] = None,
        anchor_weight: Optional[float] = None,
        field_weight: Optional[float] = None
    ) -> None:
        self.registry = registry
        self.min_score = min_score if min_score is not None else get_config("classifier.min_score", 0.5)
        self.anchor_weight = (
            anchor_weight if anchor_weight is not None
            else get_config("classifier.anchor_weight", 0.7)
        )
        self.field_weight = (
            field_weight if field_weight is not None
            else get_config("classifier.field_weight", 0.3)
        )
        self.line_tolerance = get_config("extraction.line_tolerance", 0.6)

        logger.debug(
            f"LayoutClassifier initialized ({len(registry.candidates)} candidates, "
            f"min_score={self.min_score})"
        )

    def score(self, template: DocumentTemplate, tokens: List[TextToken],
              lines: Optional[List[TextRun]] = None) -> TemplateScore:
        """
        Score one template against the tokens.

        Args:
            template: Template to score.
            tokens: Recognized tokens.
            lines: Pre-built text lines (built from tokens if omitted).

        Returns:
            TemplateScore breakdown.
        """
        if lines is None:
            lines = build_lines(tokens, self.line_tolerance)

        total_weight = sum(a.weight for a in template.anchors)
        matched_weight = 0.0
        for anchor in template.anchors:
            best = 0.0
            for line in lines:
                for match in anchor.pattern.finditer(line.text):
                    center = _run_center(line, match.start(), match.end())
                    if center is None:
                        continue
                    weight = anchor.weight if in_region(center, anchor.region) else anchor.weight / 2
                    best = max(best, weight)
            matched_weight += best

        anchor_share = matched_weight / total_weight if total_weight else 0.0

        required = template.required_fields
        required_matches = sum(
            1 for descriptor in required
            if rule_has_match(descriptor.rule, lines, tokens)
        )
        required_share = required_matches / len(required) if required else 0.0

        return TemplateScore(
            template_id=template.template_id,
            version=template.version,
            score=self.anchor_weight * anchor_share + self.field_weight * required_share,
            anchor_share=anchor_share,
            required_matches=required_matches,
            required_total=len(required)
        )

    def rank(self, tokens: List[TextToken]) -> List[TemplateScore]:
        """Score every candidate template, best first."""
        lines = build_lines(tokens, self.line_tolerance)
        scores = [self.score(t, tokens, lines) for t in self.registry.candidates]
        return sorted(scores, key=TemplateScore.sort_key)

    def classify(self, tokens: List[TextToken]) -> Classification:
        """
        Select the best matching template.

        Args:
            tokens: Recognized tokens.

        Returns:
            Classification of the winning template.

        Raises:
            TemplateNotRecognizedError: If no template reaches min_score.
        """
        scores = self.rank(tokens)

        for s in scores:
            logger.debug(
                f"Template {s.template_id} v{s.version}: score={s.score:.3f} "
                f"(anchors={s.anchor_share:.2f}, required={s.required_matches}/{s.required_total})"
            )

        if not scores or scores[0].score < self.min_score:
            best = scores[0] if scores else None
            raise TemplateNotRecognizedError(
                best_template=best.template_id if best else None,
                best_score=best.score if best else 0.0,
                threshold=self.min_score
            )

        winner = scores[0]
        logger.info(f"Classified layout as {winner.template_id} (score={winner.score:.3f})")
        return Classification(
            template=self.registry.get(winner.template_id),
            score=winner.score,
            scores=scores
        )

    def classify_or_fallback(self, tokens: List[TextToken]) -> Classification:
        """
        Classify, falling back to the generic template.

        Returns:
            Classification; ``fallback`` is True for the generic template.
        """
        try:
            return self.classify(tokens)
        except TemplateNotRecognizedError as e:
            logger.warning(f"{e}, using fallback template {self.registry.fallback_id}")
            return Classification(
                template=self.registry.fallback,
                score=0.0,
                scores=self.rank(tokens),
                fallback=True
            )
