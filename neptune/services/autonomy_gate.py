import logging
import math
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from neptune.database.base_database import BaseConversationStore
from neptune.models.tools import AutonomyDecision, PolicyVerdict

logger = logging.getLogger(__name__)


class PolicyService(ABC):
    """Source of per-tool confidence for a given actor"""

    @abstractmethod
    async def assess(self, tool_name: str, tenant_id: str, actor_id: str) -> PolicyVerdict:
        pass


LOW, MEDIUM, HIGH = "low", "medium", "high"

# tool name -> (risk level, default confidence 0-100)
TOOL_RISK_LEVELS: Dict[str, Tuple[str, int]] = {
    # Low risk: auto-execute immediately
    "analyze_company_website": (LOW, 85),
    "search_web": (LOW, 85),
    "create_task": (LOW, 80),
    "prioritize_tasks": (LOW, 75),
    "batch_similar_tasks": (LOW, 70),
    "organize_documents": (LOW, 70),
    "auto_categorize_expenses": (LOW, 75),
    "flag_anomalies": (LOW, 70),
    "project_cash_flow": (LOW, 70),
    "get_pipeline_summary": (LOW, 90),
    "get_campaign_stats": (LOW, 90),
    # Medium risk: ask first, learn over time
    "create_lead": (MEDIUM, 0),
    "update_lead_stage": (MEDIUM, 0),
    "create_contact": (MEDIUM, 0),
    "create_campaign": (MEDIUM, 0),
    "schedule_meeting": (MEDIUM, 0),
    "draft_proposal": (MEDIUM, 0),
    "auto_qualify_lead": (MEDIUM, 0),
    "create_follow_up_sequence": (MEDIUM, 0),
    "optimize_campaign": (MEDIUM, 0),
    "segment_audience": (MEDIUM, 0),
    "schedule_social_posts": (MEDIUM, 0),
    "book_meeting_rooms": (MEDIUM, 0),
    # High risk: always confirm
    "send_email": (HIGH, 0),
    "schedule_demo": (HIGH, 0),
    "send_payment_reminders": (HIGH, 0),
    "send_invoice_reminder": (HIGH, 0),
}


class RiskProfilePolicyService(PolicyService):
    """Risk-tiered policy backed by learned per-actor preferences.

    Low-risk tools run with their default confidence, high-risk tools always
    ask, and medium-risk tools run only once the learning service has enabled
    auto-execution with enough confidence. Unknown tools always ask.
    """

    def __init__(
        self,
        store: Optional[BaseConversationStore] = None,
        min_confidence: float = 0.8,
        risk_levels: Optional[Dict[str, Tuple[str, int]]] = None,
    ):
        self.store = store
        self.min_confidence = min_confidence
        self.risk_levels = risk_levels if risk_levels is not None else TOOL_RISK_LEVELS

    async def assess(self, tool_name: str, tenant_id: str, actor_id: str) -> PolicyVerdict:
        risk = self.risk_levels.get(tool_name)
        if risk is None:
            return PolicyVerdict(auto_execute=False, confidence=0.0, reason="Unknown tool - requires confirmation")

        level, default_confidence = risk
        if level == LOW:
            return PolicyVerdict(
                auto_execute=True,
                confidence=default_confidence / 100,
                reason="Low-risk action - safe to auto-execute",
            )
        if level == HIGH:
            return PolicyVerdict(auto_execute=False, confidence=0.0, reason="High-risk action - requires confirmation")

        preference = await self.store.get_autonomy_preference(tenant_id, actor_id, tool_name) if self.store else None
        if not preference:
            return PolicyVerdict(
                auto_execute=False, confidence=0.0, reason="No learning history - asking for confirmation"
            )

        score = preference.get("confidence_score", 0)
        confidence = score / 100
        if preference.get("auto_execute_enabled") and confidence >= self.min_confidence:
            return PolicyVerdict(
                auto_execute=True,
                confidence=confidence,
                reason=f"Learned preference: {preference.get('approval_count', 0)} approvals, {score}% confidence",
            )
        return PolicyVerdict(
            auto_execute=False,
            confidence=confidence,
            reason=f"Confidence {score}% - asking for confirmation",
        )


class AutonomyGate:
    """Decides whether a requested tool call may run without asking the user.

    Decisions are computed fresh on every call. Any policy failure fails
    closed: the call is held for confirmation.
    """

    def __init__(self, policy: PolicyService):
        self.policy = policy

    async def evaluate(self, tool_name: str, tenant_id: str, actor_id: str) -> AutonomyDecision:
        try:
            verdict = await self.policy.assess(tool_name, tenant_id, actor_id)
        except Exception as e:
            logger.warning(f"Autonomy policy failed for {tool_name}, requiring confirmation: {e}")
            return AutonomyDecision(
                tool_name=tool_name,
                auto_execute=False,
                confidence=0.0,
                reason="Autonomy policy unavailable - requires confirmation",
            )

        if not math.isfinite(verdict.confidence):
            return AutonomyDecision(
                tool_name=tool_name,
                auto_execute=False,
                confidence=0.0,
                reason="Invalid confidence from autonomy policy - requires confirmation",
            )

        confidence = min(max(verdict.confidence, 0.0), 1.0)
        return AutonomyDecision(
            tool_name=tool_name,
            auto_execute=verdict.auto_execute,
            confidence=confidence,
            reason=verdict.reason,
        )
