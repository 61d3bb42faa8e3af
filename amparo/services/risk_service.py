"""
Risk classification for Amparo.

Every inbound message is screened before the assistant replies. The
classifier is layered so the cheap checks run first:

1. Emergency keywords (threats, self-harm, physical or sexual violence):
   classified as high risk immediately, without calling the model.
2. Medium-risk keywords (financial control, isolation, stalking, refusal to
   accept a breakup, verbal abuse): the model is asked for a structured
   assessment. If that call fails or its reply cannot be parsed, the result
   falls back to low risk; a classifier failure never blocks the reply.
3. No signal: low risk, no model call.

IMPORTANT: Keyword screening is the safety net. It must stay synchronous,
local and dependency-free so an emergency is flagged even when the model
provider is down.

Usage:
    classifier = RiskClassifier(completion_client)
    assessment = await classifier.detect_emergency("ele me ameaçou ontem", history)
    if assessment.is_emergency:
        ...
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from amparo.services.completion import ChatTurn, CompletionClient, ModelTier
from amparo.services.prompts import RISK_ANALYSIS_SYSTEM_PROMPT, build_risk_analysis_prompt

logger = logging.getLogger(__name__)


# =============================================================================
# Enums and Data Classes
# =============================================================================


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any) -> RiskLevel:
        """Map any model-supplied value onto a level; unknown values are LOW."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.LOW


@dataclass(frozen=True)
class EmergencyResource:
    name: str
    phone: str
    available_24_7: bool = True
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "phone": self.phone,
            "available24_7": self.available_24_7,
        }
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass
class RiskAssessment:
    """
    Outcome of screening one message.

    Attributes:
        risk_level: low | medium | high
        is_emergency: Whether the user needs emergency guidance now
        identified_patterns: Abuse pattern tags named by the model
        suggested_actions: Client-side action identifiers (e.g. "call-190")
        message: Alert text to show the user, if any
        resources: Emergency contacts to surface alongside the alert
    """

    risk_level: RiskLevel = RiskLevel.LOW
    is_emergency: bool = False
    identified_patterns: list[str] = field(default_factory=list)
    suggested_actions: list[str] = field(default_factory=list)
    message: str | None = None
    resources: list[EmergencyResource] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "riskLevel": self.risk_level.value,
            "isEmergency": self.is_emergency,
            "identifiedPatterns": list(self.identified_patterns),
            "suggestedActions": list(self.suggested_actions),
            "message": self.message,
            "resources": [resource.to_dict() for resource in self.resources],
        }


# =============================================================================
# Static resources
# =============================================================================

POLICE = EmergencyResource("Polícia Militar", "190", True, "Emergências policiais")
WOMEN_HOTLINE = EmergencyResource(
    "Central de Atendimento à Mulher",
    "180",
    True,
    "Atendimento especializado para mulheres em situação de violência",
)
CVV = EmergencyResource(
    "CVV - Centro de Valorização da Vida", "188", True, "Apoio emocional e prevenção ao suicídio"
)
HUMAN_RIGHTS = EmergencyResource(
    "Disque Direitos Humanos", "100", True, "Denúncias de violações de direitos humanos"
)
SAMU = EmergencyResource("SAMU", "192", True, "Atendimento médico de emergência")

NATIONAL_RESOURCES: tuple[EmergencyResource, ...] = (POLICE, WOMEN_HOTLINE, CVV, HUMAN_RIGHTS, SAMU)

IMMEDIATE_RISK_MESSAGE = "⚠️ ATENÇÃO: Identifiquei sinais de risco imediato. Sua segurança é prioridade."
ASSESSED_RISK_MESSAGE = "⚠️ ATENÇÃO: Identifiquei sinais de risco. Vamos conversar sobre sua segurança."


def get_emergency_resources() -> list[EmergencyResource]:
    """The full national emergency contact list."""
    return list(NATIONAL_RESOURCES)


# =============================================================================
# Classifier
# =============================================================================

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class RiskClassifier:
    """Layered keyword and model-assisted risk screening."""

    # Immediate danger: threats, self-harm, physical and sexual violence
    EMERGENCY_KEYWORDS: tuple[str, ...] = (
        "vai me matar",
        "me machucou",
        "estou com medo",
        "me bateu",
        "ameaçou",
        "violência",
        "não aguento mais",
        "quero morrer",
        "acabar com tudo",
        "me estuprou",
        "abusou sexualmente",
        "tem uma arma",
        "vai me machucar",
        "estou em perigo",
    )

    # Coercive control signals that warrant a closer look
    MEDIUM_RISK_KEYWORDS: tuple[str, ...] = (
        "controla meu dinheiro",
        "não me deixa sair",
        "xingou muito",
        "quebrou minhas coisas",
        "isolou de amigos",
        "stalking",
        "perseguição",
        "não aceita o término",
        "me ameaça",
    )

    def __init__(self, completion: CompletionClient, history_turns: int = 5) -> None:
        self._completion = completion
        self._history_turns = history_turns

    def has_emergency_signal(self, message: str) -> bool:
        text = message.lower()
        return any(keyword in text for keyword in self.EMERGENCY_KEYWORDS)

    def has_medium_signal(self, message: str) -> bool:
        text = message.lower()
        return any(keyword in text for keyword in self.MEDIUM_RISK_KEYWORDS)

    async def detect_emergency(
        self,
        message: str,
        recent_history: list[ChatTurn] | None = None,
    ) -> RiskAssessment:
        """
        Classify a message. Never raises for classifier-internal failures.

        Args:
            message: The user's message in plaintext.
            recent_history: Decrypted prior turns, oldest first.
        """
        if self.has_emergency_signal(message):
            logger.warning("emergency_signal_detected path=keyword")
            return RiskAssessment(
                risk_level=RiskLevel.HIGH,
                is_emergency=True,
                suggested_actions=["call-190", "safe-place", "emergency-contacts"],
                message=IMMEDIATE_RISK_MESSAGE,
                resources=[POLICE, WOMEN_HOTLINE, CVV],
            )

        if self.has_medium_signal(message):
            return await self._assess_with_model(message, recent_history or [])

        return RiskAssessment()

    async def _assess_with_model(self, message: str, history: list[ChatTurn]) -> RiskAssessment:
        recent = history[-self._history_turns:] if self._history_turns else []
        prompt = build_risk_analysis_prompt(message, recent)
        try:
            reply = await self._completion.complete(
                RISK_ANALYSIS_SYSTEM_PROMPT,
                [ChatTurn("user", prompt)],
                ModelTier.FAST,
            )
            analysis = parse_risk_analysis(reply)
        except Exception as e:  # Intentional catch-all: classifier must fail safe to low risk
            logger.warning("risk_analysis_failed", extra={"error": type(e).__name__})
            return RiskAssessment()

        level = RiskLevel.parse(analysis.get("riskLevel"))
        is_high = level == RiskLevel.HIGH
        logger.info("risk_analysis_completed level=%s", level.value)
        return RiskAssessment(
            risk_level=level,
            is_emergency=analysis.get("isEmergency") is True,
            identified_patterns=_string_list(analysis.get("patterns")),
            suggested_actions=_string_list(analysis.get("suggestedActions")),
            message=ASSESSED_RISK_MESSAGE if is_high else None,
            resources=[POLICE, WOMEN_HOTLINE] if is_high else [],
        )


def parse_risk_analysis(reply: str) -> dict[str, Any]:
    """
    Extract the JSON object from a model reply.

    Tolerates Markdown code fences and prose around the object.

    Raises:
        ValueError: If no JSON object can be decoded.
    """
    match = _JSON_OBJECT.search(reply)
    if match is None:
        raise ValueError("no JSON object in risk analysis reply")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("risk analysis reply is not an object")
    return data


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int)) and str(item).strip()]
