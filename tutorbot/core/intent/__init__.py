"""Intent analysis pipeline for tutorbot.

Turns a chat message into a structured course-management command.

The pipeline has four layers:
1. Pure-time guard - rejects "下午3點" without a pending conversation
2. Keyword rules (~1ms) - deterministic classification from intent_rules.yaml
3. Entity extraction - student separation, regex catalog, optional LLM pass
4. LLM and local fallbacks - for messages the rules are not confident about

Example usage:
    ```python
    from tutorbot.core.intent import AnalysisMethod, DecisionOrchestrator, Intent

    orchestrator = DecisionOrchestrator()

    result = await orchestrator.analyze("明天下午3點數學課", "u1")
    assert result.intent == Intent.RECORD_COURSE
    assert result.entities.course_name == "數學課"

    # Corrections reuse the previous turn
    result = await orchestrator.analyze("不對，是4點", "u1")
    assert result.intent == Intent.MODIFY_COURSE
    ```
"""

from .context import (
    ContextBackend,
    ConversationContextStore,
    InMemoryContextBackend,
    PendingContext,
)
from .entities import (
    Entities,
    EntityExtractor,
    ExtractionCandidate,
    StudentSeparation,
    reconcile_candidates,
)
from .fallback import (
    DetailedFallbackAnalyzer,
    FallbackAnalysis,
)
from .guard import (
    AmbiguityGuard,
    GuardResult,
)
from .orchestrator import (
    AnalysisResult,
    DecisionOrchestrator,
    InvalidInputError,
    create_orchestrator,
)
from .rules import (
    Rule,
    RuleBasedIntentClassifier,
    RuleLoadError,
)
from .taxonomy import (
    TRUST_RULES_THRESHOLD,
    AnalysisMethod,
    Intent,
    IntentMatch,
)

__all__ = [
    # Orchestration
    "DecisionOrchestrator",
    "AnalysisResult",
    "InvalidInputError",
    "create_orchestrator",
    # Classification
    "RuleBasedIntentClassifier",
    "Rule",
    "RuleLoadError",
    "AmbiguityGuard",
    "GuardResult",
    "DetailedFallbackAnalyzer",
    "FallbackAnalysis",
    # Taxonomy
    "Intent",
    "IntentMatch",
    "AnalysisMethod",
    "TRUST_RULES_THRESHOLD",
    # Entity extraction
    "EntityExtractor",
    "Entities",
    "ExtractionCandidate",
    "StudentSeparation",
    "reconcile_candidates",
    # Conversation context
    "ConversationContextStore",
    "ContextBackend",
    "InMemoryContextBackend",
    "PendingContext",
]
