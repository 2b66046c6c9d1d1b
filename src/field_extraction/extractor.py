"""
Field Extractor Module.

This module provides the FieldExtractor class that applies a template's
extraction rules to the recognized tokens.

Rule classes:
    - label:      value is the nearest token right of or below a printed
                  label, or the rest of the label's own token ("DOB:...")
    - pattern:    regex searched over every text line, independent of labels
    - positional: tokens whose centre lies in a fixed template region
    - derived:    built from other fields (joined, or one name part)

Every field gets a ranked list of candidates. Fields are resolved by
rule priority (label > pattern > positional), then declaration order;
a field whose best candidate overlaps characters already claimed falls
back to its next candidate, else it is NotFound. Printed labels are
claimed up front so they never become values.

Author: ML Engineering Team
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from config import get_config
from src.utils.logger import get_logger
from src.ocr_engine.ocr_result import Span, TextRun, TextToken, build_lines
from src.layout_classifier.templates import (
    DocumentTemplate,
    ExtractionRule,
    FieldDescriptor,
    RuleKind,
    in_region,
)
from .extraction_result import ExtractedField, FieldIssue, TokenRef

# Initialize module logger
logger = get_logger(__name__)

# Characters allowed between a label and its value
SEPARATORS = ' :#.-'


@dataclass
class Candidate:
    """One possible raw value for a field."""
    raw: str
    spans: List[Span]
    confidence: float
    rank: Tuple

    @property
    def refs(self) -> List[TokenRef]:
        return span_refs(self.spans)


@dataclass
class LabelHit:
    """A printed label found on a line."""
    line: int
    spans: List[Span]

    @property
    def box(self) -> Tuple[float, float, float, float]:
        boxes = [t.box for t, _, _ in self.spans]
        return (
            min(b[0] for b in boxes),
            min(b[1] for b in boxes),
            max(b[2] for b in boxes),
            max(b[3] for b in boxes),
        )


def span_refs(spans: List[Span]) -> List[TokenRef]:
    """Provenance references for token spans."""
    return [TokenRef(t.index, t.text[s:e], s, e) for t, s, e in spans]


def _overlaps(refs: List[TokenRef], claimed: List[TokenRef]) -> bool:
    return any(ref.overlaps(other) for ref in refs for other in claimed)


class FieldExtractor:
    """
    Rule-based extractor for identity document fields.

    Attributes:
        label_max_distance: Default largest label-to-value distance.
        value_gap: Largest horizontal gap when joining value tokens.
        line_tolerance: Vertical overlap needed to share a line.
        rule_confidence: Default confidence per rule kind.

    Example:
        >>> extractor = FieldExtractor()
        >>> fields = extractor.extract(tokens, template)
        >>> fields["dateOfBirth"].raw_value
        '03/15/1985'
    """

    def __init__(
        self,
        label_max_distance: Optional[float] = None,
        value_gap: Optional[float] = None,
        line_tolerance: Optional[float] = None
    ) -> None:
        self.label_max_distance = label_max_distance or get_config("extraction.label_max_distance", 250)
        self.value_gap = value_gap or get_config("extraction.value_gap", 60)
        self.line_tolerance = line_tolerance or get_config("extraction.line_tolerance", 0.6)
        self.rule_confidence = {
            RuleKind.LABEL: get_config("extraction.confidence.label", 0.95),
            RuleKind.PATTERN: get_config("extraction.confidence.pattern", 0.85),
            RuleKind.POSITIONAL: get_config("extraction.confidence.positional", 0.75),
            RuleKind.DERIVED: 1.0,
        }

        logger.debug(
            f"FieldExtractor initialized (max_distance={self.label_max_distance}, "
            f"value_gap={self.value_gap})"
        )

    def extract(self, tokens: List[TextToken], template: DocumentTemplate) -> Dict[str, ExtractedField]:
        """
        Extract every template field from the tokens.

        Args:
            tokens: Recognized tokens in reading order.
            template: Selected document template.

        Returns:
            One ExtractedField per template field, in template order.
        """
        lines = build_lines(tokens, self.line_tolerance)
        line_of = {t.index: i for i, line in enumerate(lines) for t in line.tokens}

        hits = {
            d.name: self._find_labels(d.rule, lines)
            for d in template.fields
            if d.rule.kind is RuleKind.LABEL
        }
        claimed = [ref for field_hits in hits.values() for hit in field_hits
                   for ref in span_refs(hit.spans)]
        label_tokens = {ref.token_index for ref in claimed}

        candidates: Dict[str, List[Candidate]] = {}
        for descriptor in template.fields:
            rule = descriptor.rule
            if rule.kind is RuleKind.LABEL:
                found = self._label_candidates(rule, hits[descriptor.name], lines, tokens, line_of, label_tokens)
            elif rule.kind is RuleKind.PATTERN:
                found = self._pattern_candidates(rule, lines)
            elif rule.kind is RuleKind.POSITIONAL:
                found = self._positional_candidates(rule, tokens, label_tokens)
            else:
                continue
            candidates[descriptor.name] = sorted(found, key=lambda c: c.rank)

        results: Dict[str, ExtractedField] = {}
        declared = {d.name: i for i, d in enumerate(template.fields)}
        ordered = sorted(
            (d for d in template.fields if d.rule.kind is not RuleKind.DERIVED),
            key=lambda d: (-d.rule.priority, declared[d.name])
        )

        for descriptor in ordered:
            chosen = None
            for rank, candidate in enumerate(candidates[descriptor.name]):
                refs = candidate.refs
                if _overlaps(refs, claimed):
                    logger.debug(f"{descriptor.name}: candidate {candidate.raw!r} overlaps a claimed token")
                    continue
                chosen = candidate
                claimed.extend(refs)
                if rank:
                    logger.debug(f"{descriptor.name}: using fallback candidate #{rank + 1}")
                break

            results[descriptor.name] = self._build_field(descriptor, chosen)

        for descriptor in template.fields:
            if descriptor.rule.kind is RuleKind.DERIVED:
                results[descriptor.name] = self._derive(descriptor, results)

        found = sum(1 for f in results.values() if f.present)
        logger.info(f"Extracted {found}/{len(template.fields)} fields with {template.template_id}")

        return {d.name: results[d.name] for d in template.fields}

    # -------------------------------------------------------------------------
    # Label rules
    # -------------------------------------------------------------------------

    def _find_labels(self, rule: ExtractionRule, lines: List[TextRun]) -> List[LabelHit]:
        hits = []
        for i, line in enumerate(lines):
            for pattern in rule.label_patterns:
                for match in pattern.finditer(line.text):
                    spans = line.slice(match.start(), match.end())
                    if spans:
                        hits.append(LabelHit(line=i, spans=spans))
        return hits

    def _label_candidates(
        self,
        rule: ExtractionRule,
        hits: List[LabelHit],
        lines: List[TextRun],
        tokens: List[TextToken],
        line_of: Dict[int, int],
        label_tokens: Set[int]
    ) -> List[Candidate]:
        max_distance = rule.max_distance or self.label_max_distance
        found = []

        for hit in hits:
            hit_tokens = {t.index for t, _, _ in hit.spans}

            # Value in the label's own token, e.g. "DOB:03/15/1985"
            last, _, end = hit.spans[-1]
            start = end
            while start < len(last.text) and last.text[start] in SEPARATORS:
                start += 1
            if start < len(last.text):
                run = [(last, start, len(last.text))] + self._following(lines[hit.line], last, label_tokens)
                found.extend(self._match_run(rule, run, (0.0, 0, last.index)))

            lx1, ly1, lx2, ly2 = hit.box
            for token in tokens:
                if token.index in hit_tokens or token.index in label_tokens:
                    continue
                tx1, ty1, tx2, ty2 = token.box
                line = line_of.get(token.index)

                if line == hit.line:
                    if token.center[0] <= lx2:
                        continue
                    distance, side = max(0.0, tx1 - lx2), 0
                elif line is not None and line > hit.line and token.center[1] > ly2:
                    dx = max(0.0, tx1 - lx2, lx1 - tx2)
                    dy = max(0.0, ty1 - ly2)
                    distance, side = math.hypot(dx, dy), 1
                else:
                    continue

                if distance > max_distance:
                    continue

                run = [(token, 0, len(token.text))] + self._following(lines[line], token, label_tokens)
                found.extend(self._match_run(rule, run, (distance, side, token.index)))

        return found

    def _following(self, line: TextRun, token: TextToken, label_tokens: Set[int]) -> List[Span]:
        """Same-line tokens after ``token`` that may join its value."""
        following = []
        tokens = line.tokens
        position = next(i for i, t in enumerate(tokens) if t.index == token.index)
        previous = token

        for nxt in tokens[position + 1:]:
            if nxt.index in label_tokens or nxt.box[0] - previous.box[2] > self.value_gap:
                break
            following.append((nxt, 0, len(nxt.text)))
            previous = nxt

        return following

    def _match_run(self, rule: ExtractionRule, run: List[Span], rank: Tuple) -> List[Candidate]:
        """
        Longest acceptable prefix of a value run, at most max_tokens long.

        With a value pattern, the prefix must match it and the ``value``
        group (or the whole match) becomes the raw value.
        """
        for count in range(min(rule.max_tokens, len(run)), 0, -1):
            text_run = TextRun(run[:count])
            if rule.pattern is None:
                raw = text_run.text.strip()
                if raw:
                    return [self._candidate(rule, raw, text_run.spans, rank)]
                continue

            match = rule.pattern.search(text_run.text)
            if match:
                group = 'value' if 'value' in rule.pattern.groupindex else 0
                start, end = match.span(group)
                spans = text_run.slice(start, end)
                if spans:
                    return [self._candidate(rule, match.group(group), spans, rank)]
        return []

    # -------------------------------------------------------------------------
    # Pattern and positional rules
    # -------------------------------------------------------------------------

    def _pattern_candidates(self, rule: ExtractionRule, lines: List[TextRun]) -> List[Candidate]:
        found = []
        group = 'value' if 'value' in rule.pattern.groupindex else 0
        sign = -1 if rule.prefer == 'last' else 1

        for i, line in enumerate(lines):
            for match in rule.pattern.finditer(line.text):
                start, end = match.span(group)
                spans = line.slice(start, end)
                if not spans:
                    continue
                xs = [t.center[0] for t, _, _ in spans]
                ys = [t.center[1] for t, _, _ in spans]
                center = (sum(xs) / len(xs), sum(ys) / len(ys))
                if not in_region(center, rule.region):
                    continue
                found.append(self._candidate(rule, match.group(group), spans, (sign * i, sign * start)))

        return found

    def _positional_candidates(
        self,
        rule: ExtractionRule,
        tokens: List[TextToken],
        label_tokens: Set[int]
    ) -> List[Candidate]:
        inside = [
            t for t in tokens
            if t.index not in label_tokens and in_region(t.center, rule.region)
        ]
        if not inside:
            return []

        lines = build_lines(inside, self.line_tolerance)
        run = TextRun([span for line in lines for span in line.spans])

        if rule.pattern is None:
            return [self._candidate(rule, run.text, run.spans, (0,))]

        found = []
        group = 'value' if 'value' in rule.pattern.groupindex else 0
        for match in rule.pattern.finditer(run.text):
            start, end = match.span(group)
            spans = run.slice(start, end)
            if spans:
                found.append(self._candidate(rule, match.group(group), spans, (start,)))
        return found

    # -------------------------------------------------------------------------
    # Field assembly
    # -------------------------------------------------------------------------

    def _candidate(self, rule: ExtractionRule, raw: str, spans: List[Span], rank: Tuple) -> Candidate:
        rule_confidence = rule.confidence if rule.confidence is not None else self.rule_confidence[rule.kind]
        token_confidence = min(t.confidence for t, _, _ in spans)
        return Candidate(
            raw=raw.strip(),
            spans=spans,
            confidence=min(rule_confidence, token_confidence),
            rank=rank
        )

    def _empty(self, descriptor: FieldDescriptor) -> ExtractedField:
        return ExtractedField.not_found(
            descriptor.name,
            group=descriptor.group,
            value_type=descriptor.value_type.value,
            required=descriptor.required
        )

    def _build_field(self, descriptor: FieldDescriptor, candidate: Optional[Candidate]) -> ExtractedField:
        if candidate is None or not candidate.raw:
            return self._empty(descriptor)

        extracted = ExtractedField(
            name=descriptor.name,
            raw_value=candidate.raw,
            confidence=candidate.confidence,
            provenance=candidate.refs,
            group=descriptor.group,
            value_type=descriptor.value_type.value,
            required=descriptor.required
        )

        low = [t.text for t, _, _ in candidate.spans if t.low_confidence]
        if low:
            extracted.flag(FieldIssue.LOW_CONFIDENCE, f"low-confidence tokens: {low}")

        return extracted

    def _derive(self, descriptor: FieldDescriptor, results: Dict[str, ExtractedField]) -> ExtractedField:
        """Build a derived field from already resolved fields."""
        rule = descriptor.rule
        sources = [results[name] for name in rule.sources if name in results]
        present = [s for s in sources if s.present]
        if not present or (rule.part and not sources[0].present):
            return self._empty(descriptor)

        if rule.part:
            present = present[:1]

        rule_confidence = rule.confidence if rule.confidence is not None else self.rule_confidence[RuleKind.DERIVED]
        extracted = ExtractedField(
            name=descriptor.name,
            raw_value=rule.joiner.join(s.raw_value for s in present),
            confidence=min([rule_confidence] + [s.confidence for s in present]),
            provenance=[ref for s in present for ref in s.provenance],
            group=descriptor.group,
            value_type=descriptor.value_type.value,
            required=descriptor.required
        )

        if any(s.has_issue(FieldIssue.LOW_CONFIDENCE) for s in present):
            extracted.flag(FieldIssue.LOW_CONFIDENCE)

        return extracted
