"""
Flow definition models - nodes, edges and the persisted flow record

Node `data` is a tagged union keyed by the node `type`. Field names follow the
camelCase format persisted by the flow builder; snake_case names are accepted
as well, and a few historical aliases are kept for older flows.
"""
from enum import Enum
from typing import Optional, Any, List, Dict, Union, Literal, Annotated
from datetime import datetime
from pydantic import (
    BaseModel, ConfigDict, Field, AliasChoices,
    field_validator, model_validator
)
from pydantic.alias_generators import to_camel


class NodeType(str, Enum):
    """Flow node types"""

    # Entry
    TRIGGER = "trigger"

    # Outbound messages
    TEXT_MESSAGE = "textMessage"
    MEDIA_MESSAGE = "mediaMessage"

    # Waiting nodes (prompt + suspend)
    BUTTONS_MESSAGE = "buttonsMessage"
    LIST_MESSAGE = "listMessage"
    QUESTION = "question"
    WAIT_INPUT = "waitInput"

    # Control
    CONDITION = "condition"

    # Integrations
    API_CALL = "apiCall"
    EXTERNAL_DATA = "externalData"
    GPT_QUERY = "gptQuery"
    AI_DECISION = "aiDecision"

    # State mutation
    SET_VARIABLE = "setVariable"
    TAG_CONTACT = "tagContact"

    # Timing / terminal
    DELAY = "delay"
    END = "end"


WAITING_NODE_TYPES = frozenset({
    NodeType.BUTTONS_MESSAGE,
    NodeType.LIST_MESSAGE,
    NodeType.QUESTION,
    NodeType.WAIT_INPUT,
})

CANONICAL_TYPE_NAMES = frozenset(t.value for t in NodeType)

# Editor names that differ from the canonical type once the "Node" suffix is removed
LEGACY_TYPE_NAMES: Dict[str, str] = {
    "externalDataFetch": NodeType.EXTERNAL_DATA.value,
    "start": NodeType.TRIGGER.value,
}

# Edge handles
SUCCESS_HANDLE = "source-success"
ERROR_HANDLE = "source-error"
DEFAULT_HANDLES = frozenset({"", "default", "source"})


class TriggerType(str, Enum):
    """How a flow is started"""
    KEYWORD = "keyword"
    EXACT_MATCH = "exact_match"
    PATTERN = "pattern"
    FIRST_MESSAGE = "first_message"
    BUTTON_CLICK = "button_click"
    API_CALL = "api_call"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class FlowStatus(str, Enum):
    """Lifecycle status of a flow definition"""
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


def normalize_node_type(raw: Any) -> Any:
    """Map editor type names such as `textMessageNode` to the canonical type"""
    if not isinstance(raw, str):
        return raw
    if raw in CANONICAL_TYPE_NAMES:
        return raw
    name = raw[:-4] if raw.endswith("Node") else raw
    return LEGACY_TYPE_NAMES.get(name, name)


# ============ NODE DATA ============

class NodeData(BaseModel):
    """Base for node data - unknown editor fields are kept"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow"
    )

    label: Optional[str] = None


class TriggerNodeData(NodeData):
    trigger_type: Optional[str] = None
    keywords: Optional[Union[List[str], str]] = None
    keyword: Optional[str] = None
    pattern: Optional[str] = None
    exact_match: bool = False


class TextMessageNodeData(NodeData):
    message: str = Field(
        default="",
        validation_alias=AliasChoices("message", "text", "messageText")
    )


class MediaMessageNodeData(NodeData):
    media_type: str = "image"
    media_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("mediaUrl", "media_url", "url")
    )
    caption: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    ptt: bool = False


class ButtonOption(NodeData):
    id: str
    title: str = Field(validation_alias=AliasChoices("title", "text"))
    type: Optional[str] = None


class ButtonsMessageNodeData(NodeData):
    header_text: Optional[str] = None
    body_text: str = Field(
        default="",
        validation_alias=AliasChoices("bodyText", "body_text", "message", "text")
    )
    footer_text: Optional[str] = None
    buttons: List[ButtonOption] = Field(default_factory=list)
    variable_to_store_reply: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "variableToStoreReply", "variable_to_store_reply", "variableToSaveReply"
        )
    )


class ListRow(NodeData):
    id: str
    title: str
    description: Optional[str] = None


class ListSection(NodeData):
    id: Optional[str] = None
    title: str = ""
    rows: List[ListRow] = Field(default_factory=list)


class ListMessageNodeData(NodeData):
    title_text: Optional[str] = None
    body_text: str = Field(
        default="",
        validation_alias=AliasChoices("bodyText", "body_text", "message", "text")
    )
    button_text: str = "Menu"
    footer_text: Optional[str] = None
    sections: List[ListSection] = Field(default_factory=list)
    variable_to_store_selection: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "variableToStoreSelection", "variable_to_store_selection", "variableToSaveSelection"
        )
    )

    def rows(self) -> List[ListRow]:
        """All rows across sections, in display order"""
        return [row for section in self.sections for row in section.rows]


class QuestionOption(NodeData):
    id: str
    label: str = ""
    value: Optional[str] = None


class QuestionNodeData(NodeData):
    question_text: str = Field(
        default="",
        validation_alias=AliasChoices("questionText", "question_text", "question", "message")
    )
    variable_to_store_answer: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "variableToStoreAnswer", "variable_to_store_answer",
            "variableToSaveAnswer", "variableToSave"
        )
    )
    options: List[QuestionOption] = Field(default_factory=list)
    validation_regex: Optional[str] = None
    error_message: Optional[str] = None


class WaitInputNodeData(NodeData):
    variable_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("variableName", "variable_name", "variableToSave")
    )
    message: Optional[str] = None


class ConditionRule(NodeData):
    id: Optional[str] = None
    variable_name: str = ""
    operator: str = "equals"
    value_to_compare: Any = None


class ConditionBranch(NodeData):
    id: Optional[str] = None
    handle_id: str
    rules: List[ConditionRule] = Field(default_factory=list)
    logical_operator: str = "AND"

    @model_validator(mode="before")
    @classmethod
    def default_handle_to_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not (data.get("handleId") or data.get("handle_id")):
            data = {**data, "handleId": data.get("id")}
        return data


class ConditionNodeData(NodeData):
    branch_configs: List[ConditionBranch] = Field(
        default_factory=list,
        validation_alias=AliasChoices("branchConfigs", "branch_configs", "branches")
    )
    # Single-rule form, routed to the "true"/"false" handles
    variable_to_check: Optional[str] = None
    operator: Optional[str] = None
    value_to_compare: Any = None
    default_handle_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "defaultHandleId", "default_handle_id", "defaultOutputLabel"
        )
    )


class KeyValue(NodeData):
    key: str
    value: Any = ""


class ResponseMapping(NodeData):
    source_path: str = Field(
        validation_alias=AliasChoices("sourcePath", "source_path", "path", "jsonPath")
    )
    target_variable: str = Field(
        validation_alias=AliasChoices(
            "targetVariable", "target_variable", "variable", "variableName"
        )
    )


class ApiCallNodeData(NodeData):
    api_url: str = Field(
        default="",
        validation_alias=AliasChoices("apiUrl", "api_url", "url")
    )
    method: str = "GET"
    headers: Optional[Union[List[KeyValue], Dict[str, Any], str]] = None
    body: Any = None
    query_params: Optional[Union[List[KeyValue], Dict[str, Any], str]] = None
    variable_to_store_response: Optional[str] = None
    response_path: Optional[str] = None
    response_mappings: List[ResponseMapping] = Field(default_factory=list)
    timeout_ms: Optional[int] = None


class ExternalDataNodeData(NodeData):
    data_source_url: str = Field(
        default="",
        validation_alias=AliasChoices("dataSourceUrl", "data_source_url", "url")
    )
    request_type: str = Field(
        default="GET",
        validation_alias=AliasChoices("requestType", "request_type", "method")
    )
    request_payload: Any = None
    headers: Optional[Union[List[KeyValue], Dict[str, Any], str]] = None
    response_mapping: Optional[Union[str, List[ResponseMapping]]] = None
    save_to_variable: Optional[str] = None
    timeout_ms: Optional[int] = None


class GptQueryNodeData(NodeData):
    prompt_template: str = Field(
        default="",
        validation_alias=AliasChoices("promptTemplate", "prompt_template", "prompt")
    )
    system_message: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    variable_to_save_result: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "variableToSaveResult", "variable_to_save_result", "variableToStoreResult"
        )
    )


class AiOutcome(NodeData):
    id: Optional[str] = None
    value: str = ""
    handle_id: Optional[str] = None

    @model_validator(mode="after")
    def fill_defaults(self):
        if not self.value:
            self.value = self.label or self.id or ""
        if not self.handle_id:
            self.handle_id = self.id
        return self


class AiDecisionNodeData(NodeData):
    context_prompt: str = Field(
        default="",
        validation_alias=AliasChoices("contextPrompt", "context_prompt", "prompt")
    )
    possible_outcomes: List[AiOutcome] = Field(
        default_factory=list,
        validation_alias=AliasChoices("possibleOutcomes", "possible_outcomes", "outcomes")
    )
    categories: List[str] = Field(default_factory=list)
    variable_to_store_decision: Optional[str] = None

    def category_values(self) -> List[str]:
        if self.possible_outcomes:
            return [outcome.value for outcome in self.possible_outcomes]
        return list(self.categories)


class VariableAssignment(NodeData):
    id: Optional[str] = None
    variable_name: str
    value: Any = None
    source_type: str = Field(
        default="static",
        validation_alias=AliasChoices("sourceType", "source_type", "type")
    )


class SetVariableNodeData(NodeData):
    assignments: List[VariableAssignment] = Field(default_factory=list)
    variable_name: Optional[str] = None
    value: Any = None

    def all_assignments(self) -> List[VariableAssignment]:
        if self.assignments:
            return self.assignments
        if self.variable_name:
            return [VariableAssignment(variable_name=self.variable_name, value=self.value)]
        return []


class TagContactNodeData(NodeData):
    tag_operation: str = Field(
        default="add",
        validation_alias=AliasChoices("tagOperation", "tag_operation", "operation")
    )
    tag_name: str = Field(
        default="",
        validation_alias=AliasChoices("tagName", "tag_name", "tag")
    )


DELAY_UNIT_SECONDS: Dict[str, int] = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}


class DelayNodeData(NodeData):
    delay_amount: Optional[float] = None
    delay_unit: str = "seconds"
    delay_seconds: Optional[float] = None

    def duration_seconds(self) -> float:
        """Delay length in seconds (0 when not configured)"""
        if self.delay_amount is not None:
            factor = DELAY_UNIT_SECONDS.get(self.delay_unit.lower(), 1)
            return max(0.0, float(self.delay_amount) * factor)
        if self.delay_seconds is not None:
            return max(0.0, float(self.delay_seconds))
        return 0.0


class EndNodeData(NodeData):
    end_state_type: Optional[str] = None
    final_message: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "finalMessage", "final_message", "endMessage", "message"
        )
    )


# ============ NODES ============

class BaseNode(BaseModel):
    """Common node fields - layout data from the editor is ignored"""

    model_config = ConfigDict(extra="ignore")

    id: str

    @property
    def node_type(self) -> NodeType:
        return NodeType(self.type)

    @property
    def is_waiting(self) -> bool:
        return self.node_type in WAITING_NODE_TYPES


class TriggerNode(BaseNode):
    type: Literal["trigger"]
    data: TriggerNodeData = Field(default_factory=TriggerNodeData)


class TextMessageNode(BaseNode):
    type: Literal["textMessage"]
    data: TextMessageNodeData = Field(default_factory=TextMessageNodeData)


class MediaMessageNode(BaseNode):
    type: Literal["mediaMessage"]
    data: MediaMessageNodeData = Field(default_factory=MediaMessageNodeData)


class ButtonsMessageNode(BaseNode):
    type: Literal["buttonsMessage"]
    data: ButtonsMessageNodeData = Field(default_factory=ButtonsMessageNodeData)


class ListMessageNode(BaseNode):
    type: Literal["listMessage"]
    data: ListMessageNodeData = Field(default_factory=ListMessageNodeData)


class QuestionNode(BaseNode):
    type: Literal["question"]
    data: QuestionNodeData = Field(default_factory=QuestionNodeData)


class WaitInputNode(BaseNode):
    type: Literal["waitInput"]
    data: WaitInputNodeData = Field(default_factory=WaitInputNodeData)


class ConditionNode(BaseNode):
    type: Literal["condition"]
    data: ConditionNodeData = Field(default_factory=ConditionNodeData)


class ApiCallNode(BaseNode):
    type: Literal["apiCall"]
    data: ApiCallNodeData = Field(default_factory=ApiCallNodeData)


class ExternalDataNode(BaseNode):
    type: Literal["externalData"]
    data: ExternalDataNodeData = Field(default_factory=ExternalDataNodeData)


class GptQueryNode(BaseNode):
    type: Literal["gptQuery"]
    data: GptQueryNodeData = Field(default_factory=GptQueryNodeData)


class AiDecisionNode(BaseNode):
    type: Literal["aiDecision"]
    data: AiDecisionNodeData = Field(default_factory=AiDecisionNodeData)


class SetVariableNode(BaseNode):
    type: Literal["setVariable"]
    data: SetVariableNodeData = Field(default_factory=SetVariableNodeData)


class TagContactNode(BaseNode):
    type: Literal["tagContact"]
    data: TagContactNodeData = Field(default_factory=TagContactNodeData)


class DelayNode(BaseNode):
    type: Literal["delay"]
    data: DelayNodeData = Field(default_factory=DelayNodeData)


class EndNode(BaseNode):
    type: Literal["end"]
    data: EndNodeData = Field(default_factory=EndNodeData)


FlowNode = Annotated[
    Union[
        TriggerNode,
        TextMessageNode,
        MediaMessageNode,
        ButtonsMessageNode,
        ListMessageNode,
        QuestionNode,
        WaitInputNode,
        ConditionNode,
        ApiCallNode,
        ExternalDataNode,
        GptQueryNode,
        AiDecisionNode,
        SetVariableNode,
        TagContactNode,
        DelayNode,
        EndNode,
    ],
    Field(discriminator="type")
]


class FlowEdge(BaseModel):
    """Directed connection between a node output handle and another node"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore"
    )

    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.source_handle is None or self.source_handle in DEFAULT_HANDLES


class FlowElements(BaseModel):
    """Persisted graph shape: {nodes, edges}"""

    model_config = ConfigDict(extra="ignore")

    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)

    @field_validator("nodes", mode="before")
    @classmethod
    def normalize_types(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        normalized = []
        for node in value:
            if isinstance(node, dict) and "type" in node:
                node = {**node, "type": normalize_node_type(node["type"])}
                if node.get("data") is None:
                    node.pop("data", None)
            normalized.append(node)
        return normalized


class Flow(BaseModel):
    """Persisted flow definition"""

    model_config = ConfigDict(extra="ignore")

    id: str
    tenant_id: str
    name: str = ""
    description: Optional[str] = None
    trigger_type: Optional[str] = None
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    status: FlowStatus = FlowStatus.DRAFT
    elements: FlowElements = Field(default_factory=FlowElements)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("id", "tenant_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("trigger_config", mode="before")
    @classmethod
    def default_config(cls, value: Any) -> Any:
        return value or {}

    @property
    def is_active(self) -> bool:
        return self.status == FlowStatus.ACTIVE
