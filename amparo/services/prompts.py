"""
Prompt text for the assistant.

The wording here is product copy; the code only guarantees the order in
which the context sections are layered onto the base prompt:
base, active goals, identified patterns, risk guidance, last check-in.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from amparo.services.completion import ChatTurn
    from amparo.services.context_service import ConversationContext

BASE_SYSTEM_PROMPT = """Você é uma assistente acolhedora que apoia pessoas em relacionamentos tóxicos ou abusivos.

Seu papel:
1. Escutar com atenção e validar o que a pessoa sente
2. Orientar com passos práticos de segurança e bem-estar
3. Ajudar a reconhecer padrões abusivos (gaslighting, manipulação, controle, isolamento)
4. Construir metas pequenas e alcançáveis
5. Acompanhar o progresso sem julgamentos

Diretrizes:
- Nunca minimize a experiência relatada
- Segurança vem antes de qualquer outro assunto
- Não decida pela pessoa; fortaleça a autonomia dela
- Diante de risco iminente, indique recursos de emergência: 190 (Polícia Militar), 180 (Central de Atendimento à Mulher), 188 (CVV)
- Sugira apoio profissional quando fizer sentido (terapia, orientação jurídica)
- Reconheça pequenas conquistas

Tom: empático, direto quando necessário, linguagem simples e sem jargão.

Estrutura de resposta: acolhimento, leitura da situação quando couber, orientação prática, uma pergunta para continuar."""

RISK_ANALYSIS_SYSTEM_PROMPT = (
    "Você avalia mensagens de pessoas em relacionamentos possivelmente abusivos. "
    "Responda somente com JSON válido, sem texto adicional."
)

SUMMARY_SYSTEM_PROMPT = "Você resume conversas de apoio emocional com precisão e discrição."


def build_system_prompt(context: ConversationContext | None) -> str:
    """Layer the user's context onto the base prompt in a fixed order."""
    prompt = BASE_SYSTEM_PROMPT
    if context is None:
        return prompt

    if context.active_goals:
        lines = "".join(f"- {goal.title}: {goal.progress}% completo\n" for goal in context.active_goals)
        prompt += f"\n\n## Metas ativas\n{lines}\nConsidere essas metas na conversa e reconheça avanços."

    if context.identified_patterns:
        prompt += (
            "\n\n## Padrões já identificados\n"
            + ", ".join(context.identified_patterns)
            + "\n\nFique atenta a esses padrões em novos relatos."
        )

    if context.risk_level == "high":
        prompt += (
            "\n\n⚠️ ALERTA: pessoa avaliada em situação de ALTO RISCO.\n"
            "Priorize a segurança imediata. Pergunte:\n"
            "- Você está fisicamente segura agora?\n"
            "- Existe um lugar seguro para onde possa ir?\n"
            "- Há alguém de confiança que possa acionar?\n"
            "Indique recursos de emergência quando apropriado."
        )
    elif context.risk_level == "medium":
        prompt += (
            "\n\n⚠️ ATENÇÃO: situação de risco moderado.\n"
            "Observe sinais de escalada e reforce os recursos disponíveis."
        )

    if context.last_checkin is not None:
        checkin = context.last_checkin
        mood = f"{checkin.mood_score}/10" if checkin.mood_score is not None else "não informado"
        prompt += (
            "\n\n## Último check-in\n"
            f"Humor: {mood}\n"
            f"Data: {checkin.created_at.isoformat()}\n"
            "Pergunte como a pessoa tem se sentido desde então."
        )

    return prompt


def build_risk_analysis_prompt(message: str, history: list[ChatTurn]) -> str:
    recent = json.dumps([turn.to_dict() for turn in history], ensure_ascii=False)
    return f"""Analise a mensagem atual e o histórico recente e determine:
1. Nível de risco: low, medium ou high
2. Se é uma emergência que exige ação imediata
3. Padrões abusivos identificados
4. Ações sugeridas

Mensagem atual: {json.dumps(message, ensure_ascii=False)}

Histórico recente: {recent}

Retorne JSON no formato:
{{
  "riskLevel": "low|medium|high",
  "isEmergency": true,
  "patterns": ["padrao"],
  "suggestedActions": ["acao"],
  "reasoning": "explicação breve"
}}"""


def build_summary_prompt(turns: list[ChatTurn]) -> str:
    transcript = json.dumps([turn.to_dict() for turn in turns], ensure_ascii=False)
    return f"""Resuma as mensagens abaixo em 2 a 3 parágrafos, preservando:
- os principais temas
- padrões abusivos identificados
- avanços ou mudanças importantes
- o contexto emocional

Mensagens:
{transcript}

Responda apenas com o resumo, em português."""
