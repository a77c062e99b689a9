"""Request context inference.

Derives an immutable RequestContext from a CallerRequest and the optional
ConversationContext. Caller-supplied hints on the request win over
anything inferred from prompt text or history.
"""

from __future__ import annotations

import math
import re

from cascade.schemas.context import (
    CallerRequest,
    Complexity,
    ConversationContext,
    ConversationMessage,
    DomainContext,
    ProjectPreferences,
    QualityRequirement,
    RequestContext,
    TechnicalLevel,
    Urgency,
)
from cascade.schemas.provider import TaskType

# Keyword groups checked in order; the first group with a hit wins
_TASK_KEYWORDS: list[tuple[TaskType, tuple[str, ...]]] = [
    (TaskType.CODING, ("code", "function", "class", "algorithm", "debug", "programming")),
    (TaskType.CREATIVE, ("write", "story", "creative", "poem", "design", "brainstorm")),
    (TaskType.ANALYTICAL, ("analyze", "compare", "evaluate", "assess", "research", "study")),
    (TaskType.REASONING, ("solve", "problem", "logic", "reasoning", "deduce", "infer")),
    (TaskType.MULTIMODAL, ("image", "photo", "visual")),
]

_URGENT_KEYWORDS = ("urgent", "asap", "quickly", "immediate", "deadline")

_CRITICAL_INDUSTRIES = frozenset({"healthcare", "finance"})

# Tokens reserved for the response on top of the prompt estimate
_RESPONSE_BUFFER_TOKENS = 500

_CJK_RE = re.compile(r"[一-鿿]")
_LATIN_RE = re.compile(r"[a-zA-Z]")


def infer_task_type(prompt: str) -> TaskType:
    lowered = prompt.lower()
    for task_type, keywords in _TASK_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return task_type
    return TaskType.GENERAL


def infer_complexity(prompt: str, domain: DomainContext) -> Complexity:
    """Complexity from prompt length and the caller's technical level."""
    length = len(prompt)
    level = domain.technical_level
    if length < 100 and level == TechnicalLevel.BEGINNER:
        return Complexity.SIMPLE
    if length < 300 and level in (TechnicalLevel.BEGINNER, TechnicalLevel.INTERMEDIATE):
        return Complexity.MODERATE
    if length < 500 and level in (TechnicalLevel.INTERMEDIATE, TechnicalLevel.ADVANCED):
        return Complexity.COMPLEX
    return Complexity.EXPERT


def estimate_tokens(request: CallerRequest, history: list[ConversationMessage]) -> int:
    """Rough token estimate: 4 characters per token plus a response buffer.

    Only the last 10 history messages count toward the estimate.
    """
    prompt_tokens = math.ceil(len(request.prompt) / 4)
    context_tokens = math.ceil(len(request.context) / 4)
    history_tokens = sum(math.ceil(len(m.content) / 4) for m in history[-10:])
    return prompt_tokens + context_tokens + history_tokens + _RESPONSE_BUFFER_TOKENS


def infer_urgency(history: list[ConversationMessage]) -> Urgency:
    for message in history[-5:]:
        lowered = message.content.lower()
        if any(keyword in lowered for keyword in _URGENT_KEYWORDS):
            return Urgency.HIGH
    return Urgency.MEDIUM


def infer_quality_requirement(
    project: ProjectPreferences, domain: DomainContext,
) -> QualityRequirement:
    if domain.industry.lower() in _CRITICAL_INDUSTRIES:
        return QualityRequirement.PERFECT
    if "enterprise" in project.quality_standards:
        return QualityRequirement.EXCELLENT
    return QualityRequirement.GOOD


def detect_languages(prompt: str, fallback: list[str]) -> list[str]:
    """Languages detected from the prompt's script, else the caller's preference."""
    detected: list[str] = []
    if _CJK_RE.search(prompt):
        detected.append("chinese")
    if _LATIN_RE.search(prompt):
        detected.append("english")
    return detected or list(fallback)


def analyze_context(
    request: CallerRequest,
    conversation: ConversationContext | None = None,
) -> RequestContext:
    """Infer the selection criteria for one request.

    Args:
        request: The caller's request; its task_type, urgency and
            quality_requirement hints override inference.
        conversation: Optional history and preferences.

    Returns:
        A frozen RequestContext.
    """
    conversation = conversation or ConversationContext()
    history = conversation.history
    domain = conversation.domain

    expertise = [domain.primary_domain, *domain.sub_domains, *domain.required_expertise]

    return RequestContext(
        task_type=request.task_type or infer_task_type(request.prompt),
        complexity=infer_complexity(request.prompt, domain),
        expected_tokens=estimate_tokens(request, history),
        urgency=request.urgency or infer_urgency(history),
        quality_requirement=(
            request.quality_requirement
            or infer_quality_requirement(conversation.project_preferences, domain)
        ),
        budget_constraint=conversation.user_preferences.budget_constraint,
        primary_domain=domain.primary_domain,
        domain_expertise=[e for e in expertise if e],
        language_requirements=detect_languages(
            request.prompt, conversation.user_preferences.language_preference,
        ),
    )
