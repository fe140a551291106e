"""Deterministic routing of a user message to a target agent.

Each receiving agent is scored by a weighted sum of three components, each in
[0, 1]:

- lexical: overlap between message tokens and the agent's id, name,
  description, skills and tags, plus an explicit-mention bonus and a small
  priority boost
- role: organizational fit. Multi-step asks favor managers; narrowly scoped
  asks favor individual contributors that matched lexically
- default bonus: the default (or previously active) agent, to reduce churn

The sum is divided by the total weight, so scores and confidence stay in
[0, 1]. Ties go to the lexicographically smaller agent id. Below
``min_score`` the default agent is chosen with ``reason = "fallback"``.
"""

import re

from goatherd.config import AppConfig
from goatherd.domain import (
    DEFAULT_AGENT_ID,
    AgentDescriptor,
    AgentRoster,
    normalize_agent_id,
)
from goatherd.orchestrator.types import RoutingCandidate, RoutingDecision
from goatherd.telemetry import ROUTING_DECISION, ROUTING_FALLBACK, get_logger

log = get_logger(__name__)

FALLBACK_REASON = "fallback"
MAX_MATCHED_TERMS = 8

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

# Intent keywords suggesting a multi-step or coordination ask
_MULTI_STEP_TERMS = frozenset(
    {
        "coordinate",
        "orchestrate",
        "plan",
        "roadmap",
        "strategy",
        "project",
        "team",
        "delegate",
        "organize",
        "multiple",
        "several",
        "steps",
        "then",
        "end-to-end",
        "workflow",
        "launch",
    }
)


def _stem(token: str) -> str:
    if len(token) > 4 and token.endswith("ing"):
        return token[:-3]
    if len(token) > 3 and token.endswith("es") and token[-3] in "sxz":
        return token[:-2]
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def tokenize(value: str) -> list[str]:
    """Lowercase, split on non-alphanumerics, drop 1-char tokens, light stemming."""
    return [_stem(token) for token in _TOKEN_SPLIT.split(value.lower()) if len(token) >= 2]


def _includes_exact_word(haystack: str, needle: str) -> bool:
    needle = needle.strip()
    if not needle:
        return False
    return re.search(rf"\b{re.escape(needle)}\b", haystack, re.IGNORECASE) is not None


def is_multi_step_request(message: str) -> bool:
    lowered = message.lower()
    if " and then " in lowered or "step by step" in lowered:
        return True
    raw_tokens = set(_TOKEN_SPLIT.split(lowered))
    return bool(raw_tokens & _MULTI_STEP_TERMS)


def rewrite_message_for_delegation(message: str, agent_name: str, reason: str) -> str:
    """Annotate a message with routing context; the original text is kept verbatim."""
    return "\n\n".join(
        [
            f"Original user request:\n{message}",
            f"Delegation target: {agent_name}",
            f"Delegation reason: {reason}",
            "Please execute the task and return a concise, user-ready response.",
        ]
    )


class RoutingService:
    """Pick a target agent for a message.

    Args:
        min_score: Normalized score a candidate needs to be routed to.
        lexical_weight: Weight of lexical overlap.
        role_weight: Weight of organizational fit.
        default_bonus: Bonus for the default or previously active agent.
    """

    def __init__(
        self,
        min_score: float = 0.2,
        lexical_weight: float = 0.6,
        role_weight: float = 0.3,
        default_bonus: float = 0.1,
    ) -> None:
        self.min_score = min(1.0, max(0.0, min_score))
        self.lexical_weight = max(0.0, lexical_weight)
        self.role_weight = max(0.0, role_weight)
        self.default_bonus = max(0.0, default_bonus)

    @classmethod
    def from_settings(cls, settings: AppConfig) -> "RoutingService":
        return cls(
            min_score=settings.routing_min_score,
            lexical_weight=settings.routing_lexical_weight,
            role_weight=settings.routing_role_weight,
            default_bonus=settings.routing_default_bonus,
        )

    @property
    def _total_weight(self) -> float:
        return self.lexical_weight + self.role_weight + self.default_bonus

    def route(
        self,
        message: str,
        roster: AgentRoster,
        default_agent_id: str = DEFAULT_AGENT_ID,
        entry_agent_id: str | None = None,
        previous_agent_id: str | None = None,
    ) -> RoutingDecision:
        """Score receiving agents and choose a target. Never raises.

        Args:
            message: User message.
            roster: Agents available for this call.
            default_agent_id: Agent used for fallback.
            entry_agent_id: Requested entry agent; unknown ids resolve to the
                default agent (or the first roster agent).
            previous_agent_id: Agent active on the previous turn, if any.

        Returns:
            RoutingDecision with confidence in [0, 1].
        """
        default_id = normalize_agent_id(default_agent_id) or DEFAULT_AGENT_ID
        entry_id = roster.resolve_entry_agent_id(entry_agent_id, default_id)
        text = message.strip()

        if not text:
            return RoutingDecision(
                entry_agent_id=entry_id,
                target_agent_id=entry_id,
                confidence=1.0,
                reason="Empty message; keeping current agent.",
                rewritten_message=message,
            )

        entry = roster.get(entry_id)
        if entry is not None and not entry.is_manager:
            return RoutingDecision(
                entry_agent_id=entry_id,
                target_agent_id=entry_id,
                confidence=1.0,
                reason="Direct invocation of a non-manager agent.",
                rewritten_message=message,
            )

        favored = {default_id}
        if previous_agent_id:
            favored.add(normalize_agent_id(previous_agent_id))

        multi_step = is_multi_step_request(text)
        candidates = [
            self._score_candidate(text, agent, multi_step, agent.agent_id in favored)
            for agent in roster
            if agent.can_receive
        ]
        candidates.sort(key=lambda c: (-c.score, c.agent_id))

        top = candidates[0] if candidates else None
        if top is None or top.score < self.min_score:
            fallback_id = default_id if default_id in roster else entry_id
            log.info(
                ROUTING_FALLBACK,
                entry_agent_id=entry_id,
                target_agent_id=fallback_id,
                top_score=top.score if top else None,
                min_score=self.min_score,
            )
            return RoutingDecision(
                entry_agent_id=entry_id,
                target_agent_id=fallback_id,
                confidence=self.min_score,
                reason=FALLBACK_REASON,
                rewritten_message=message,
                candidates=candidates,
            )

        reason = f"Matched {len(top.matched_terms)} relevant term(s) for {top.agent_name}."
        if top.agent_id == entry_id:
            rewritten = message
        else:
            rewritten = rewrite_message_for_delegation(text, top.agent_name, reason)

        decision = RoutingDecision(
            entry_agent_id=entry_id,
            target_agent_id=top.agent_id,
            confidence=round(min(1.0, max(0.0, top.score)), 2),
            reason=reason,
            rewritten_message=rewritten,
            candidates=candidates,
        )
        log.info(
            ROUTING_DECISION,
            entry_agent_id=entry_id,
            target_agent_id=decision.target_agent_id,
            confidence=decision.confidence,
            candidates_count=len(candidates),
            multi_step=multi_step,
        )
        return decision

    def _score_candidate(
        self,
        message: str,
        agent: AgentDescriptor,
        multi_step: bool,
        favored: bool,
    ) -> RoutingCandidate:
        message_tokens = tokenize(message)
        metadata_tokens = set(
            tokenize(
                " ".join(
                    [
                        agent.agent_id,
                        agent.name,
                        agent.description,
                        *agent.skills,
                        *agent.tags,
                    ]
                )
            )
        )

        matched_terms: list[str] = []
        for token in message_tokens:
            if token in metadata_tokens and token not in matched_terms:
                matched_terms.append(token)
        explicit_mention = _includes_exact_word(message, agent.agent_id) or _includes_exact_word(
            message, agent.name
        )

        relevance = len(matched_terms) * 2 + (4 if explicit_mention else 0)
        priority_boost = min(3.0, agent.priority / 50) if relevance > 0 else 0.0
        lexical = min(1.0, (relevance + priority_boost) / max(4, len(message_tokens) + 1))

        if multi_step:
            role_fit = 1.0 if agent.is_manager else 0.0
        else:
            role_fit = 1.0 if relevance > 0 and not agent.is_manager else 0.0

        raw = (
            self.lexical_weight * lexical
            + self.role_weight * role_fit
            + (self.default_bonus if favored else 0.0)
        )
        score = raw / self._total_weight if self._total_weight > 0 else 0.0

        parts = [f"{len(matched_terms)} matched metadata term(s)"]
        if explicit_mention:
            parts.insert(0, "explicit mention")
        if role_fit:
            parts.append("manager fit" if agent.is_manager else "specialist fit")
        if favored:
            parts.append("default bonus")

        return RoutingCandidate(
            agent_id=agent.agent_id,
            agent_name=agent.name,
            score=round(score, 4),
            reason="; ".join(parts) + ".",
            matched_terms=matched_terms[:MAX_MATCHED_TERMS],
        )
