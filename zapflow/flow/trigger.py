"""
Trigger Matcher - picks the flow that starts a conversation for a contact with no session
"""
import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Any, Dict, List, Iterable

from ..models.flow import Flow, NodeType, TriggerType

logger = logging.getLogger(__name__)

TEXT_TRIGGER_TYPES = frozenset({
    TriggerType.KEYWORD.value,
    TriggerType.EXACT_MATCH.value,
    TriggerType.PATTERN.value,
})


@dataclass
class TriggerSpec:
    """Normalized trigger rule of one flow"""
    trigger_type: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    pattern: Optional[str] = None
    exact_match: bool = False

    @property
    def is_textual(self) -> bool:
        return self.trigger_type in TEXT_TRIGGER_TYPES


def _split_keywords(*sources: Any) -> List[str]:
    """Keywords come as a list or as one comma-separated string"""
    keywords: List[str] = []
    for source in sources:
        if not source:
            continue
        items = source if isinstance(source, (list, tuple)) else str(source).split(",")
        keywords.extend(str(item).strip() for item in items if str(item).strip())
    return keywords


def trigger_spec_for(flow: Flow) -> TriggerSpec:
    """
    Read the trigger rule from the flow record, falling back to the
    trigger node data when the record carries none.
    """
    config: Dict[str, Any] = dict(flow.trigger_config or {})
    trigger_type = flow.trigger_type

    if not trigger_type or not config:
        trigger_node = next(
            (node for node in flow.elements.nodes if node.type == NodeType.TRIGGER.value),
            None
        )
        if trigger_node is not None:
            node_data = trigger_node.data.model_dump(exclude_none=True)
            trigger_type = trigger_type or node_data.get("trigger_type")
            for key, value in node_data.items():
                config.setdefault(key, value)

    return TriggerSpec(
        trigger_type=(trigger_type or "").strip().lower() or None,
        keywords=_split_keywords(config.get("keywords"), config.get("keyword")),
        pattern=config.get("pattern"),
        exact_match=bool(config.get("exact_match") or config.get("exactMatch")),
    )


def matches_trigger(spec: TriggerSpec, text: str) -> bool:
    """Check one trigger rule against inbound text (case-insensitive)"""
    if not spec.is_textual or not text:
        return False

    normalized = text.strip().lower()

    if spec.trigger_type == TriggerType.PATTERN.value:
        if not spec.pattern:
            return False
        try:
            return re.search(spec.pattern, text, re.IGNORECASE) is not None
        except re.error as e:
            logger.warning(f"Invalid trigger pattern '{spec.pattern}': {e}")
            return False

    exact = spec.exact_match or spec.trigger_type == TriggerType.EXACT_MATCH.value
    for keyword in spec.keywords:
        candidate = keyword.lower()
        if exact and normalized == candidate:
            return True
        if not exact and candidate in normalized:
            return True

    return False


def _comparable_time(value: Optional[datetime]) -> datetime:
    """Naive timestamps (and missing ones) are read as UTC so they sort with aware ones"""
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TriggerMatcher:
    """
    Selects the flow to start from the tenant's active flows.

    Flows are checked most recently updated first (ties broken by id,
    descending); the first match wins.
    """

    @staticmethod
    def order(flows: Iterable[Flow]) -> List[Flow]:
        return sorted(
            flows,
            key=lambda flow: (_comparable_time(flow.updated_at), flow.id),
            reverse=True
        )

    @classmethod
    def match(cls, flows: Iterable[Flow], text: str) -> Optional[Flow]:
        for flow in cls.order(flow for flow in flows if flow.is_active):
            if matches_trigger(trigger_spec_for(flow), text):
                logger.info(f"Trigger matched flow {flow.id} ({flow.name}) for text '{text[:50]}'")
                return flow
        return None
