"""Quality scoring for QR configurations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from .models import (
    ComparisonRecommendation,
    ComparisonSummary,
    ContentMetrics,
    ContextMetrics,
    ErrorCorrectionLevel,
    GenerationMetrics,
    MethodCandidate,
    MethodEvaluation,
    QRComparisonResult,
    QRContext,
    QRHybridConfig,
    QRQualityMetrics,
    QRValidationResult,
)
from .qr_config import BASE_CAPACITY

DEEP_LINK_PROTOCOLS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^radixwallet://", re.IGNORECASE),
    re.compile(r"^https://wallet\.radixdlt\.com/", re.IGNORECASE),
    re.compile(r"^https://radixwallet\.com/", re.IGNORECASE),
)
DEEP_LINK_STRUCTURE = re.compile(r"^(radixwallet://|https://(wallet\.)?radix(wallet|dlt)\.com/).+", re.IGNORECASE)
SAFE_CHARACTERS = re.compile(r"^[a-zA-Z0-9:/.\-_?&=%+]+$")

EXCELLENT = 90
GOOD = 75
ACCEPTABLE = 60
POOR = 40

CONTENT_WEIGHT = 0.3
GENERATION_WEIGHT = 0.4
CONTEXT_WEIGHT = 0.3

ERROR_RECOVERY: dict[ErrorCorrectionLevel, float] = {
    ErrorCorrectionLevel.L: 7,
    ErrorCorrectionLevel.M: 15,
    ErrorCorrectionLevel.Q: 25,
    ErrorCorrectionLevel.H: 30,
}

_CONTEXT_DESCRIPTIONS = {
    QRContext.MOBILE_SCAN: "mobile scanning",
    QRContext.TERMINAL_RENDER: "terminal rendering",
    QRContext.WEB_EMBED: "web embedding",
    QRContext.HIGH_QUALITY: "high quality output",
    QRContext.DESKTOP_DISPLAY: "desktop display",
}


@dataclass(frozen=True, slots=True)
class QuickValidation:
    is_valid: bool
    basic_score: float
    issues: tuple[str, ...]


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def is_deep_link(payload: str) -> bool:
    return any(pattern.match(payload) for pattern in DEEP_LINK_PROTOCOLS)


class QRValidationEngine:
    """Scores a payload/configuration pair for expected scan reliability.

    The score blends content checks (30%), generation metrics (40%) and
    per-context compatibility (30%). A result is valid when it has no errors and
    scores at least 60.
    """

    def validate_qr(
        self, payload: str, config: QRHybridConfig, context: QRContext | None = None
    ) -> QRValidationResult:
        warnings: list[str] = []
        errors: list[str] = []
        recommendations: list[str] = []

        content = self._content_metrics(payload)
        if not content.is_wallet_deep_link:
            warnings.append("Payload does not look like a wallet deep link")
        if not content.protocol_supported:
            errors.append("Deep link protocol is not supported")

        generation = self._generation_metrics(payload, config)
        if generation.capacity_utilization > 95:
            errors.append("Deep link exceeds capacity of the QR code")
        elif generation.capacity_utilization > 85:
            warnings.append("High capacity utilization may hurt readability")
            recommendations.append("Use error correction level L for more capacity")

        context_metrics = self._context_metrics(payload, config, context)
        if context_metrics.mobile_compatibility < 70:
            warnings.append("Mobile compatibility is below optimal")
            recommendations.append("Shorten the deep link or render a larger image")

        metrics = QRQualityMetrics(content=content, generation=generation, context=context_metrics)
        score = self._overall_score(metrics)

        if score < GOOD:
            recommendations.extend(self._improvements(score, metrics))

        return QRValidationResult(
            is_valid=not errors and score >= ACCEPTABLE,
            score=score,
            warnings=tuple(warnings),
            errors=tuple(errors),
            recommendations=tuple(recommendations),
            metrics=metrics,
        )

    def compare_qr_methods(self, payload: str, candidates: Sequence[MethodCandidate]) -> QRComparisonResult:
        if not candidates:
            raise ValueError("At least one candidate method is required")

        evaluations = []
        for candidate in candidates:
            validation = self.validate_qr(payload, candidate.config, candidate.context)
            evaluations.append(
                MethodEvaluation(
                    name=candidate.name,
                    config=candidate.config,
                    validation=validation,
                    estimated_performance=self._estimated_performance(validation),
                )
            )

        best = evaluations[0]
        for evaluation in evaluations[1:]:
            if evaluation.validation.score > best.validation.score:
                best = evaluation

        alternatives = sorted(
            (
                item
                for item in evaluations
                if item is not best and item.validation.score >= ACCEPTABLE
            ),
            key=lambda item: item.validation.score,
            reverse=True,
        )[:3]

        scores = [item.validation.score for item in evaluations]
        return QRComparisonResult(
            methods=tuple(evaluations),
            recommendation=ComparisonRecommendation(
                best_method=best.name,
                reasoning=self._reasoning(best),
                alternatives=tuple(f"{item.name} ({item.validation.score:.1f} pts)" for item in alternatives),
            ),
            summary=ComparisonSummary(
                total_methods=len(evaluations),
                average_score=round(sum(scores) / len(scores)),
                best_score=max(scores),
                worst_score=min(scores),
            ),
        )

    def quick_validate(self, payload: str) -> QuickValidation:
        if not isinstance(payload, str) or not payload:
            return QuickValidation(is_valid=False, basic_score=0, issues=("Invalid deep link",))

        issues: list[str] = []
        score = 100
        if len(payload) > 2000:
            score -= 30
            issues.append("Deep link is very long")
        if not DEEP_LINK_STRUCTURE.match(payload):
            score -= 40
            issues.append("Not a valid wallet deep link")
        if " " in payload:
            score -= 10
            issues.append("Contains spaces")

        return QuickValidation(is_valid=score >= ACCEPTABLE and not issues, basic_score=max(0, score), issues=tuple(issues))

    # ------------------------------------------------------------------
    # Metrics

    @staticmethod
    def _content_metrics(payload: str) -> ContentMetrics:
        if not payload:
            return ContentMetrics(False, False, 0.0, 0.0)

        wallet_link = is_deep_link(payload)
        supported = DEEP_LINK_STRUCTURE.match(payload) is not None

        length = len(payload)
        length_score = 100.0
        if length > 1500:
            length_score = max(20, 100 - ((length - 1500) / 100) * 10)
        elif length > 800:
            length_score = max(60, 100 - ((length - 800) / 70) * 15)
        elif length < 50:
            length_score = max(30, length * 2)

        integrity = 100.0
        if not wallet_link:
            integrity -= 30
        if not supported:
            integrity -= 50
        if " " in payload:
            integrity -= 10
        if not SAFE_CHARACTERS.match(payload):
            integrity -= 20

        return ContentMetrics(
            is_wallet_deep_link=wallet_link,
            protocol_supported=supported,
            length_score=_clamp(length_score),
            content_integrity=_clamp(integrity),
        )

    @staticmethod
    def _generation_metrics(payload: str, config: QRHybridConfig) -> GenerationMetrics:
        length = len(payload)
        utilization = length / BASE_CAPACITY[config.error_correction] * 100

        scan = 95.0
        if utilization > 90:
            scan -= 20
        if utilization > 80:
            scan -= 10
        if config.margin < 2:
            scan -= 5
        if length > 1500:
            scan -= 15

        density = max(0.0, 100 - (utilization * 0.8 + length / 30))
        return GenerationMetrics(
            estimated_scan_success=_clamp(scan, 30),
            capacity_utilization=min(100.0, utilization),
            error_recovery=ERROR_RECOVERY[config.error_correction],
            density_score=_clamp(density),
        )

    @staticmethod
    def _context_metrics(payload: str, config: QRHybridConfig, context: QRContext | None) -> ContextMetrics:
        length = len(payload)
        target = context or config.context
        level = config.error_correction

        mobile = 90.0
        if length > 1200:
            mobile -= 20
        if level is ErrorCorrectionLevel.L and length > 800:
            mobile -= 10
        if config.margin < 3:
            mobile -= 5

        terminal = 85.0
        if length > 800:
            terminal -= 30
        if config.margin > 4:
            terminal -= 10
        if target is QRContext.TERMINAL_RENDER:
            terminal += 10

        web = 88.0
        if length > 1500:
            web -= 15
        if level is ErrorCorrectionLevel.H:
            web += 5

        printed = 92.0
        if level is ErrorCorrectionLevel.L:
            printed -= 15
        if config.margin < 4:
            printed -= 10
        if length > 1000:
            printed -= 20

        return ContextMetrics(
            mobile_compatibility=_clamp(mobile),
            terminal_compatibility=_clamp(terminal),
            web_compatibility=_clamp(web),
            print_compatibility=_clamp(printed),
        )

    @staticmethod
    def _overall_score(metrics: QRQualityMetrics) -> float:
        content, generation, context = metrics.content, metrics.generation, metrics.context

        content_score = (
            (30 if content.is_wallet_deep_link else 0)
            + (30 if content.protocol_supported else 0)
            + content.length_score * 0.2
            + content.content_integrity * 0.2
        )
        generation_score = (
            generation.estimated_scan_success * 0.4
            + (100 - generation.capacity_utilization) * 0.3
            + generation.density_score * 0.3
        )
        context_score = (
            context.mobile_compatibility * 0.4
            + context.terminal_compatibility * 0.2
            + context.web_compatibility * 0.2
            + context.print_compatibility * 0.2
        )

        return _clamp(
            content_score * CONTENT_WEIGHT + generation_score * GENERATION_WEIGHT + context_score * CONTEXT_WEIGHT
        )

    @staticmethod
    def _improvements(score: float, metrics: QRQualityMetrics) -> list[str]:
        items = []
        if score < POOR:
            items.append("Critical quality: shorten the deep link considerably")
        if metrics.content.length_score < 50:
            items.append("Very long deep link: use level L for maximum capacity")
        if metrics.generation.estimated_scan_success < 70:
            items.append("Low scan probability: render a larger image or use level H")
        if metrics.generation.capacity_utilization > 85:
            items.append("High capacity utilization: use level L or reduce the content")
        if metrics.context.mobile_compatibility < 60:
            items.append("Improve mobile scanning: shorten the link or raise error correction")
        if metrics.context.terminal_compatibility < 60:
            items.append("For terminals: use a compact rendering with a small margin")
        return items

    @staticmethod
    def _estimated_performance(validation: QRValidationResult) -> float:
        adjustment = (
            -15 * len(validation.errors) - 5 * len(validation.warnings) + 2 * len(validation.recommendations)
        )
        return _clamp(validation.score + adjustment)

    @staticmethod
    def _reasoning(best: MethodEvaluation) -> str:
        score = best.validation.score
        if score >= EXCELLENT:
            quality = "excellent"
        elif score >= GOOD:
            quality = "good"
        else:
            quality = "acceptable"
        config = best.config
        return (
            f"{best.name} scored highest ({score:.1f}) with {quality} quality. "
            f"It uses error correction {config.error_correction.value} with margin {config.margin}, "
            f"tuned for {_CONTEXT_DESCRIPTIONS.get(config.context, 'general use')}."
        )
