"""Adaptive selection of QR encoder parameters."""

from __future__ import annotations

import dataclasses
import math

from .models import (
    ErrorCorrectionLevel,
    FallbackStrategy,
    LengthCategory,
    LengthFit,
    QRContext,
    QRHybridConfig,
    QROptimizationResult,
)

L, M, Q, H = (
    ErrorCorrectionLevel.L,
    ErrorCorrectionLevel.M,
    ErrorCorrectionLevel.Q,
    ErrorCorrectionLevel.H,
)

# Byte-mode capacity of a version 40 symbol at each level.
BASE_CAPACITY: dict[ErrorCorrectionLevel, int] = {L: 2953, M: 2331, Q: 1663, H: 1273}

SIZE_MULTIPLIER: dict[ErrorCorrectionLevel, float] = {L: 1.0, M: 1.15, Q: 1.35, H: 1.55}

VERY_SHORT_MAX = 100
SHORT_MAX = 300
MEDIUM_MAX = 800
LONG_MAX = 1500
VERY_LONG_MIN = 2500

# Payloads below this length never get a fallback configuration.
TRIVIAL_LENGTH = 20

CAPACITY_CONFIG = QRHybridConfig(
    error_correction=L,
    margin=4,
    context=QRContext.MOBILE_SCAN,
    adaptive=True,
    fallback_strategy=FallbackStrategy.INCREASE_CAPACITY,
)
QUALITY_CONFIG = QRHybridConfig(
    error_correction=H,
    margin=6,
    context=QRContext.HIGH_QUALITY,
    adaptive=False,
    fallback_strategy=FallbackStrategy.MAINTAIN_QUALITY,
)
TERMINAL_CONFIG = QRHybridConfig(
    error_correction=M,
    margin=2,
    context=QRContext.TERMINAL_RENDER,
    adaptive=True,
    fallback_strategy=FallbackStrategy.REDUCE_SIZE,
)
BALANCED_CONFIG = QRHybridConfig(
    error_correction=Q,
    margin=4,
    context=QRContext.DESKTOP_DISPLAY,
    adaptive=True,
    fallback_strategy=FallbackStrategy.INCREASE_CAPACITY,
)

_CONFIG_BY_LEVEL = {L: CAPACITY_CONFIG, M: TERMINAL_CONFIG, Q: BALANCED_CONFIG, H: QUALITY_CONFIG}

_CATEGORY_NOTES = {
    LengthCategory.VERY_SHORT: "very short link: maximum scan reliability",
    LengthCategory.SHORT: "short link: balance between robustness and capacity",
    LengthCategory.MEDIUM: "medium link: tuned for reliable mobile scanning",
    LengthCategory.LONG: "long link: maximum capacity at some cost in robustness",
    LengthCategory.VERY_LONG: "very long link: extreme settings for maximum capacity",
}


def length_category(length: int) -> LengthCategory:
    if length <= VERY_SHORT_MAX:
        return LengthCategory.VERY_SHORT
    if length <= SHORT_MAX:
        return LengthCategory.SHORT
    if length <= MEDIUM_MAX:
        return LengthCategory.MEDIUM
    if length <= LONG_MAX:
        return LengthCategory.LONG
    return LengthCategory.VERY_LONG


def estimate_capacity(config: QRHybridConfig) -> int:
    """Approximate usable bytes, reduced by 2% for every margin module above one."""

    penalty = max(0.0, (config.margin - 1) * 0.02)
    return math.floor(BASE_CAPACITY[config.error_correction] * (1 - penalty))


def estimate_size(length: int, config: QRHybridConfig) -> int:
    """Approximate symbol width in modules, quiet zone included."""

    base = math.ceil(math.sqrt(length * 8.5))
    return math.ceil(base * SIZE_MULTIPLIER[config.error_correction]) + config.margin * 2


def validate_config_for_length(config: QRHybridConfig, length: int) -> LengthFit:
    capacity = estimate_capacity(config)
    utilization = length / capacity * 100
    if utilization > 90:
        recommendation = "Consider level L or shortening the deep link"
    elif utilization > 70:
        recommendation = "High utilization but within safe limits"
    else:
        recommendation = "Configuration fits this content comfortably"
    return LengthFit(is_valid=length <= capacity, estimated_fit=round(utilization), recommendation=recommendation)


class QRHybridConfigManager:
    """Chooses error-correction level and margin from payload length and viewing context."""

    def get_optimal_qr_config(
        self,
        payload: str,
        context: QRContext = QRContext.MOBILE_SCAN,
        preferred_level: ErrorCorrectionLevel | None = None,
    ) -> QROptimizationResult:
        length = len(payload)
        config = self._select_base_config(length, context, preferred_level)
        config = self._apply_length_optimizations(config, length, context)
        config = self._fit_capacity(config, length)

        return QROptimizationResult(
            config=config,
            expected_capacity=estimate_capacity(config),
            estimated_size=estimate_size(length, config),
            recommendation=self._recommendation(config, length, context),
            fallback_config=self._fallback_config(config, length),
        )

    estimate_capacity = staticmethod(estimate_capacity)
    estimate_size = staticmethod(estimate_size)
    validate_config_for_length = staticmethod(validate_config_for_length)
    length_category = staticmethod(length_category)

    # ------------------------------------------------------------------
    # Internal helpers

    @staticmethod
    def _select_base_config(
        length: int, context: QRContext, preferred_level: ErrorCorrectionLevel | None
    ) -> QRHybridConfig:
        if preferred_level is not None:
            return dataclasses.replace(_CONFIG_BY_LEVEL[preferred_level], context=context, adaptive=True)

        if context is QRContext.TERMINAL_RENDER:
            return TERMINAL_CONFIG
        if context is QRContext.HIGH_QUALITY and length <= SHORT_MAX:
            return QUALITY_CONFIG

        if length <= VERY_SHORT_MAX:
            return dataclasses.replace(QUALITY_CONFIG, context=context)
        if length <= SHORT_MAX:
            return dataclasses.replace(BALANCED_CONFIG, context=context)
        if length <= MEDIUM_MAX:
            return dataclasses.replace(BALANCED_CONFIG, context=context, error_correction=M)
        return dataclasses.replace(CAPACITY_CONFIG, context=context)

    @staticmethod
    def _apply_length_optimizations(config: QRHybridConfig, length: int, context: QRContext) -> QRHybridConfig:
        margin = config.margin
        level = config.error_correction

        if length > LONG_MAX:
            margin = max(1, margin - 2)
            level = L
            if length > VERY_LONG_MIN:
                margin = 1

        if context is QRContext.TERMINAL_RENDER:
            margin = max(1, min(2, margin))
        elif context is QRContext.WEB_EMBED:
            margin = max(2, margin)

        return dataclasses.replace(config, margin=margin, error_correction=level)

    @staticmethod
    def _fit_capacity(config: QRHybridConfig, length: int) -> QRHybridConfig:
        while estimate_capacity(config) <= length:
            lower = config.error_correction.lower()
            if lower is None:
                break
            config = dataclasses.replace(config, error_correction=lower)
        return config

    @staticmethod
    def _fallback_config(primary: QRHybridConfig, length: int) -> QRHybridConfig | None:
        lower = primary.error_correction.lower()
        if lower is None or length < TRIVIAL_LENGTH:
            return None
        return dataclasses.replace(
            primary,
            error_correction=lower,
            margin=max(1, primary.margin - 1),
            fallback_strategy=FallbackStrategy.INCREASE_CAPACITY,
        )

    @staticmethod
    def _recommendation(config: QRHybridConfig, length: int, context: QRContext) -> str:
        text = f"Level {config.error_correction.value} ({_CATEGORY_NOTES[length_category(length)]})"
        if context is QRContext.TERMINAL_RENDER:
            text += ". Tuned for terminal display."
        elif context is QRContext.HIGH_QUALITY:
            text += ". High quality settings for critical scans."
        return text
