"""
Flow Executor - the per-contact state machine

Advances a conversation through action and control nodes, suspends at
waiting and delay nodes, and deletes the execution state when the
traversal reaches an end node or a dead end.
"""
import re
import json
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Any, Dict, List, Callable, Awaitable, Tuple, TYPE_CHECKING

from ..core.config import settings
from ..models.flow import (
    NodeType, WAITING_NODE_TYPES, FlowNode, KeyValue, ResponseMapping,
    TriggerNode, TextMessageNode, MediaMessageNode, ButtonsMessageNode,
    ListMessageNode, QuestionNode, WaitInputNode, ConditionNode, ApiCallNode,
    ExternalDataNode, GptQueryNode, AiDecisionNode, SetVariableNode,
    TagContactNode, DelayNode, EndNode
)
from ..models.state import ExecutionStatus
from ..models.message import (
    OutboundPayload, TextPayload, ButtonsPayload, ButtonChoice,
    ListPayload, ListChoiceSection, ListChoice, MediaPayload
)
from .context import StepContext
from .errors import ExternalCallError, CycleDetectedError
from .evaluator import ConditionEvaluator
from .graph import FlowGraph
from .interpolator import resolve_path, stringify, strip_braces
from .result import (
    NodeOutcome, StepResult, StepStatus,
    success_outcome, branch_outcome, failure_outcome, end_outcome
)

if TYPE_CHECKING:
    from ..services.store import FlowStore
    from ..services.external_api import ExternalApiClient, ApiResponse
    from ..services.ai import AIQueryClient

logger = logging.getLogger(__name__)

NodeHandler = Callable[[Any, StepContext], Awaitable[NodeOutcome]]
InputHandler = Callable[[Any, StepContext], Awaitable[Optional[NodeOutcome]]]


class FlowExecutor:
    """
    Runs one turn of a conversation.

    Every node type has exactly one handler. For waiting nodes the handler
    emits the prompt; a second table consumes the contact's reply.
    """

    def __init__(
        self,
        store: "FlowStore",
        api_client: "ExternalApiClient",
        ai_client: "AIQueryClient",
        max_steps: Optional[int] = None,
        call_timeout: Optional[float] = None
    ):
        self.store = store
        self.api_client = api_client
        self.ai_client = ai_client
        self.max_steps = max_steps or settings.FLOW_MAX_STEPS_PER_MESSAGE
        self.call_timeout = call_timeout or settings.EXTERNAL_CALL_TIMEOUT_SECONDS

        self._handlers: Dict[NodeType, NodeHandler] = self._register_handlers()
        self._input_handlers: Dict[NodeType, InputHandler] = self._register_input_handlers()

        missing = [t.value for t in NodeType if t not in self._handlers]
        missing += [t.value for t in WAITING_NODE_TYPES if t not in self._input_handlers]
        if missing:
            raise RuntimeError(f"FlowExecutor has no handler for node types: {missing}")

    def _register_handlers(self) -> Dict[NodeType, NodeHandler]:
        """Register all node type handlers"""
        return {
            # Entry / messages
            NodeType.TRIGGER: self._handle_trigger,
            NodeType.TEXT_MESSAGE: self._handle_text_message,
            NodeType.MEDIA_MESSAGE: self._handle_media_message,

            # Waiting nodes (prompt emission)
            NodeType.BUTTONS_MESSAGE: self._prompt_buttons,
            NodeType.LIST_MESSAGE: self._prompt_list,
            NodeType.QUESTION: self._prompt_question,
            NodeType.WAIT_INPUT: self._prompt_wait_input,

            # Control
            NodeType.CONDITION: self._handle_condition,

            # Integrations
            NodeType.API_CALL: self._handle_api_call,
            NodeType.EXTERNAL_DATA: self._handle_external_data,
            NodeType.GPT_QUERY: self._handle_gpt_query,
            NodeType.AI_DECISION: self._handle_ai_decision,

            # State
            NodeType.SET_VARIABLE: self._handle_set_variable,
            NodeType.TAG_CONTACT: self._handle_tag_contact,

            # Timing / terminal
            NodeType.DELAY: self._handle_delay,
            NodeType.END: self._handle_end,
        }

    def _register_input_handlers(self) -> Dict[NodeType, InputHandler]:
        return {
            NodeType.BUTTONS_MESSAGE: self._input_buttons,
            NodeType.LIST_MESSAGE: self._input_list,
            NodeType.QUESTION: self._input_question,
            NodeType.WAIT_INPUT: self._input_wait_input,
        }

    # ==================== Turn entry points ====================

    async def start(self, ctx: StepContext, graph: FlowGraph, start_node_id: str) -> StepResult:
        """Run a new session from its start node"""
        return await self.advance(ctx, graph, start_node_id)

    async def resume_with_input(self, ctx: StepContext, graph: FlowGraph, node: FlowNode) -> StepResult:
        """
        Feed the inbound message to the waiting node the contact is parked at.

        A reply that matches nothing leaves the state untouched and sends nothing
        (unless the question node configures an error message).
        """
        handler = self._input_handlers[node.node_type]
        outcome = await handler(node, ctx)

        if outcome is None:
            logger.info(f"[{ctx.contact_id}] reply did not match node {node.id}, waiting again")
            return StepResult(
                status=StepStatus.STALLED,
                flow_id=ctx.flow_id,
                current_node_id=node.id,
                messages_sent=ctx.messages_sent
            )

        next_node_id = graph.resolve_action(node.id, True, outcome.handle)
        return await self.advance(ctx, graph, next_node_id)

    async def continue_after_delay(self, ctx: StepContext, graph: FlowGraph, node: FlowNode) -> StepResult:
        """Re-enter the state machine after a delay node's timer fired"""
        logger.info(f"[{ctx.contact_id}] delay {node.id} elapsed, resuming flow {ctx.flow_id}")
        next_node_id = graph.resolve_action(node.id, True)
        return await self.advance(ctx, graph, next_node_id)

    # ==================== Main loop ====================

    async def advance(self, ctx: StepContext, graph: FlowGraph, next_node_id: Optional[str]) -> StepResult:
        """
        Execute nodes until a waiting node, a delay or the end of the graph.

        Raises:
            CycleDetectedError: more than `max_steps` nodes in this turn
        """
        steps = 0
        last_node_id: Optional[str] = None

        while next_node_id:
            node = graph.get_node(next_node_id)
            if node is None:
                logger.warning(f"[{ctx.contact_id}] next node {next_node_id} not in flow {ctx.flow_id}")
                break

            steps += 1
            if steps > self.max_steps:
                raise CycleDetectedError(ctx.flow_id, node.id, self.max_steps)

            ctx.executed_nodes.append(node.id)
            last_node_id = node.id

            if node.is_waiting:
                return await self._suspend_for_input(ctx, node)

            outcome = await self._execute(node, ctx)

            if outcome.resume_at is not None:
                return await self._suspend_for_delay(ctx, node, outcome.resume_at)

            if outcome.ends_flow:
                next_node_id = None
                break

            next_node_id = self._next_node_id(graph, node, outcome)
            if next_node_id is None and not outcome.succeeded:
                logger.warning(
                    f"[{ctx.contact_id}] node {node.id} failed without an error edge, "
                    f"ending flow {ctx.flow_id}"
                )

        await self.store.delete_state(ctx.state.id)
        logger.info(f"[{ctx.contact_id}] flow {ctx.flow_id} ended at node {last_node_id}")

        return StepResult(
            status=StepStatus.ENDED,
            flow_id=ctx.flow_id,
            current_node_id=last_node_id,
            is_new_session=ctx.is_new_session,
            executed_nodes=ctx.executed_nodes,
            messages_sent=ctx.messages_sent
        )

    async def _execute(self, node: FlowNode, ctx: StepContext) -> NodeOutcome:
        """Run an action/control handler; any exception becomes the error outcome"""
        handler = self._handlers[node.node_type]
        try:
            return await handler(node, ctx)
        except Exception as e:
            logger.exception(f"[{ctx.contact_id}] node {node.id} ({node.type}) failed: {e}")
            return failure_outcome(str(e))

    @staticmethod
    def _next_node_id(graph: FlowGraph, node: FlowNode, outcome: NodeOutcome) -> Optional[str]:
        if not outcome.succeeded:
            return graph.resolve_action(node.id, False)
        if not outcome.allow_fallback:
            return graph.target_for_handle(node.id, outcome.handle) if outcome.handle else None
        return graph.resolve_action(node.id, True, outcome.handle)

    async def _suspend_for_input(self, ctx: StepContext, node: FlowNode) -> StepResult:
        await self.store.update_state(
            ctx.state.id,
            current_node_id=node.id,
            variables=ctx.variables,
            status=ExecutionStatus.AWAITING_INPUT,
            resume_at=None
        )

        try:
            await self._handlers[node.node_type](node, ctx)
        except ExternalCallError as e:
            # State already points at the node, the next reply is still consumed there
            logger.error(f"[{ctx.contact_id}] could not send prompt for node {node.id}: {e}")

        logger.info(f"[{ctx.contact_id}] waiting for input at node {node.id}")
        return StepResult(
            status=StepStatus.AWAITING_INPUT,
            flow_id=ctx.flow_id,
            current_node_id=node.id,
            is_new_session=ctx.is_new_session,
            executed_nodes=ctx.executed_nodes,
            messages_sent=ctx.messages_sent
        )

    async def _suspend_for_delay(self, ctx: StepContext, node: FlowNode, resume_at: datetime) -> StepResult:
        await self.store.update_state(
            ctx.state.id,
            current_node_id=node.id,
            variables=ctx.variables,
            status=ExecutionStatus.DELAYED,
            resume_at=resume_at
        )
        logger.info(f"[{ctx.contact_id}] delayed at node {node.id} until {resume_at.isoformat()}")
        return StepResult(
            status=StepStatus.DELAYED,
            flow_id=ctx.flow_id,
            current_node_id=node.id,
            is_new_session=ctx.is_new_session,
            executed_nodes=ctx.executed_nodes,
            messages_sent=ctx.messages_sent
        )

    # ==================== Helpers ====================

    async def _send(self, ctx: StepContext, payload: OutboundPayload) -> None:
        await ctx.transport.send(ctx.contact_id, payload)
        ctx.messages_sent += 1

    async def _call(self, awaitable: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """Await a collaborator call with a timeout; expiry is an ExternalCallError"""
        timeout = timeout or self.call_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ExternalCallError(f"External call timed out after {timeout}s") from e

    @staticmethod
    def _reply_text(ctx: StepContext) -> str:
        return (ctx.inbound.text if ctx.inbound else "").strip()

    @staticmethod
    def _match_choice(ctx: StepContext, choices: List[Tuple[str, List[str]]]) -> Optional[str]:
        """
        Find the selected choice id.

        The channel's reply id wins; otherwise the text is compared
        case-insensitively with each choice's id and labels.
        """
        if ctx.inbound is None:
            return None

        if ctx.inbound.reply_id:
            for choice_id, _ in choices:
                if choice_id == ctx.inbound.reply_id:
                    return choice_id

        text = ctx.inbound.text.strip().lower()
        if not text:
            return None

        for choice_id, labels in choices:
            candidates = [choice_id] + labels
            if any(text == candidate.strip().lower() for candidate in candidates if candidate):
                return choice_id

        return None

    def _key_values(self, ctx: StepContext, value: Any) -> Dict[str, Any]:
        """Headers / query params from a [{key, value}] list, a mapping or a JSON string"""
        if not value:
            return {}

        if isinstance(value, str):
            rendered = ctx.render(value)
            try:
                value = json.loads(rendered)
            except ValueError:
                logger.warning(f"[{ctx.contact_id}] ignoring non-JSON key/value config: {rendered[:80]}")
                return {}

        if isinstance(value, list):
            pairs = {}
            for item in value:
                if isinstance(item, dict):
                    item = KeyValue.model_validate(item)
                if item.key:
                    pairs[ctx.render(item.key)] = ctx.render(stringify(item.value))
            return pairs

        if isinstance(value, dict):
            return {str(k): stringify(v) for k, v in ctx.render_data(value).items()}

        return {}

    @staticmethod
    def _request_body(ctx: StepContext, body: Any) -> Any:
        """JSON text is parsed after interpolation; anything else is sent as-is"""
        if body is None or body == "":
            return None
        if isinstance(body, str):
            rendered = ctx.render(body)
            try:
                return json.loads(rendered)
            except ValueError:
                return rendered
        return ctx.render_data(body)

    @staticmethod
    def _store_mappings(ctx: StepContext, data: Any, mappings: List[ResponseMapping]) -> None:
        for mapping in mappings:
            value = resolve_path({"response": data}, f"response.{mapping.source_path}")
            ctx.set_variable(mapping.target_variable, value)

    # ==================== Action handlers ====================

    async def _handle_trigger(self, node: TriggerNode, ctx: StepContext) -> NodeOutcome:
        return success_outcome()

    async def _handle_text_message(self, node: TextMessageNode, ctx: StepContext) -> NodeOutcome:
        text = ctx.render(node.data.message)
        if not text.strip():
            logger.warning(f"[{ctx.contact_id}] text node {node.id} has an empty message, skipping")
            return success_outcome()
        await self._send(ctx, TextPayload(text=text))
        return success_outcome()

    async def _handle_media_message(self, node: MediaMessageNode, ctx: StepContext) -> NodeOutcome:
        data = node.data
        url = ctx.render(data.media_url).strip()
        if not url:
            return failure_outcome(f"Media node {node.id} has no URL")

        await self._send(ctx, MediaPayload(
            media_type=data.media_type,
            url=url,
            caption=ctx.render(data.caption) or None,
            file_name=ctx.render(data.file_name) or None,
            mime_type=data.mime_type,
            ptt=data.ptt
        ))
        return success_outcome()

    async def _handle_condition(self, node: ConditionNode, ctx: StepContext) -> NodeOutcome:
        handle = ConditionEvaluator.select_branch(node.data, ctx.variables)
        if handle is None:
            logger.info(f"[{ctx.contact_id}] no branch matched at condition {node.id}")
        return branch_outcome(handle)

    async def _handle_api_call(self, node: ApiCallNode, ctx: StepContext) -> NodeOutcome:
        data = node.data
        url = ctx.render(data.api_url).strip()
        if not url:
            return failure_outcome(f"API node {node.id} has no URL")

        timeout = data.timeout_ms / 1000 if data.timeout_ms else None
        response: "ApiResponse" = await self._call(
            self.api_client.request(
                url,
                method=data.method,
                headers=self._key_values(ctx, data.headers),
                body=self._request_body(ctx, data.body),
                params=self._key_values(ctx, data.query_params),
                timeout=timeout
            ),
            timeout
        )

        if data.variable_to_store_response:
            value = response.data
            if data.response_path:
                value = resolve_path({"response": response.data}, f"response.{data.response_path}")
            ctx.set_variable(data.variable_to_store_response, value)

        self._store_mappings(ctx, response.data, data.response_mappings)
        return success_outcome()

    async def _handle_external_data(self, node: ExternalDataNode, ctx: StepContext) -> NodeOutcome:
        data = node.data
        url = ctx.render(data.data_source_url).strip()
        if not url:
            return failure_outcome(f"External data node {node.id} has no URL")

        method = (data.request_type or "GET").upper()
        payload = self._request_body(ctx, data.request_payload)
        params = None
        if method == "GET" and isinstance(payload, dict):
            params, payload = {k: stringify(v) for k, v in payload.items()}, None

        timeout = data.timeout_ms / 1000 if data.timeout_ms else None
        response: "ApiResponse" = await self._call(
            self.api_client.request(
                url,
                method=method,
                headers=self._key_values(ctx, data.headers),
                body=payload,
                params=params,
                timeout=timeout
            ),
            timeout
        )

        mapping = data.response_mapping
        if isinstance(mapping, list):
            self._store_mappings(ctx, response.data, mapping)
        elif data.save_to_variable:
            value = response.data
            if mapping:
                value = resolve_path({"response": response.data}, f"response.{mapping}")
            ctx.set_variable(data.save_to_variable, value)

        return success_outcome()

    async def _handle_gpt_query(self, node: GptQueryNode, ctx: StepContext) -> NodeOutcome:
        data = node.data
        prompt = ctx.render(data.prompt_template)
        if not prompt.strip():
            return failure_outcome(f"GPT node {node.id} has an empty prompt")

        text = await self._call(self.ai_client.generate(
            prompt,
            system_context=ctx.render(data.system_message) or None,
            model=data.model,
            temperature=data.temperature,
            max_tokens=data.max_tokens
        ))

        if data.variable_to_save_result:
            ctx.set_variable(data.variable_to_save_result, text)
        return success_outcome()

    async def _handle_ai_decision(self, node: AiDecisionNode, ctx: StepContext) -> NodeOutcome:
        data = node.data
        categories = data.category_values()
        if not categories:
            return failure_outcome(f"AI decision node {node.id} has no outcomes")

        decision = await self._call(self.ai_client.decide(ctx.render(data.context_prompt), categories))
        outcome = next((o for o in data.possible_outcomes if o.value == decision), None)
        if outcome is None and decision not in categories:
            raise ExternalCallError(f"AI decision '{decision}' is not one of {categories}")

        if data.variable_to_store_decision:
            ctx.set_variable(data.variable_to_store_decision, decision)

        return success_outcome(outcome.handle_id if outcome else None)

    async def _handle_set_variable(self, node: SetVariableNode, ctx: StepContext) -> NodeOutcome:
        for assignment in node.data.all_assignments():
            source = (assignment.source_type or "static").lower()
            if source == "variable":
                value = resolve_path(ctx.variables, strip_braces(stringify(assignment.value)))
            else:
                value = ctx.render_data(assignment.value)
            ctx.set_variable(assignment.variable_name, value)
        return success_outcome()

    async def _handle_tag_contact(self, node: TagContactNode, ctx: StepContext) -> NodeOutcome:
        tag = ctx.render(node.data.tag_name).strip()
        if not tag:
            logger.warning(f"[{ctx.contact_id}] tag node {node.id} has no tag name")
            return success_outcome()

        if node.data.tag_operation.lower() == "remove":
            await self.store.update_contact_tags(ctx.tenant_id, ctx.contact_id, remove=[tag])
        else:
            await self.store.update_contact_tags(ctx.tenant_id, ctx.contact_id, add=[tag])
        return success_outcome()

    async def _handle_delay(self, node: DelayNode, ctx: StepContext) -> NodeOutcome:
        seconds = node.data.duration_seconds()
        if seconds <= 0:
            return success_outcome()
        return NodeOutcome(resume_at=datetime.now() + timedelta(seconds=seconds))

    async def _handle_end(self, node: EndNode, ctx: StepContext) -> NodeOutcome:
        if node.data.final_message:
            try:
                await self._send(ctx, TextPayload(text=ctx.render(node.data.final_message)))
            except ExternalCallError as e:
                logger.error(f"[{ctx.contact_id}] could not send final message: {e}")
        return end_outcome()

    # ==================== Waiting nodes: prompts ====================

    async def _prompt_buttons(self, node: ButtonsMessageNode, ctx: StepContext) -> NodeOutcome:
        data = node.data
        await self._send(ctx, ButtonsPayload(
            text=ctx.render(data.body_text),
            buttons=[ButtonChoice(id=b.id, title=ctx.render(b.title)) for b in data.buttons],
            header=ctx.render(data.header_text) or None,
            footer=ctx.render(data.footer_text) or None
        ))
        return success_outcome()

    async def _prompt_list(self, node: ListMessageNode, ctx: StepContext) -> NodeOutcome:
        data = node.data
        await self._send(ctx, ListPayload(
            text=ctx.render(data.body_text),
            button_text=ctx.render(data.button_text) or "Menu",
            title=ctx.render(data.title_text) or None,
            footer=ctx.render(data.footer_text) or None,
            sections=[
                ListChoiceSection(
                    title=ctx.render(section.title),
                    rows=[
                        ListChoice(
                            id=row.id,
                            title=ctx.render(row.title),
                            description=ctx.render(row.description) or None
                        )
                        for row in section.rows
                    ]
                )
                for section in data.sections
            ]
        ))
        return success_outcome()

    async def _prompt_question(self, node: QuestionNode, ctx: StepContext) -> NodeOutcome:
        data = node.data
        text = ctx.render(data.question_text)
        if data.options:
            await self._send(ctx, ButtonsPayload(
                text=text,
                buttons=[ButtonChoice(id=o.id, title=ctx.render(o.label or o.value or o.id)) for o in data.options]
            ))
        elif text.strip():
            await self._send(ctx, TextPayload(text=text))
        return success_outcome()

    async def _prompt_wait_input(self, node: WaitInputNode, ctx: StepContext) -> NodeOutcome:
        if node.data.message:
            await self._send(ctx, TextPayload(text=ctx.render(node.data.message)))
        return success_outcome()

    # ==================== Waiting nodes: replies ====================

    async def _input_buttons(self, node: ButtonsMessageNode, ctx: StepContext) -> Optional[NodeOutcome]:
        buttons = node.data.buttons
        selected = self._match_choice(ctx, [(b.id, [b.title]) for b in buttons])
        if selected is None:
            return None

        button = next(b for b in buttons if b.id == selected)
        if node.data.variable_to_store_reply:
            ctx.set_variable(node.data.variable_to_store_reply, button.title)
        return success_outcome(selected)

    async def _input_list(self, node: ListMessageNode, ctx: StepContext) -> Optional[NodeOutcome]:
        rows = node.data.rows()
        selected = self._match_choice(ctx, [(r.id, [r.title]) for r in rows])
        if selected is None:
            return None

        row = next(r for r in rows if r.id == selected)
        if node.data.variable_to_store_selection:
            ctx.set_variable(node.data.variable_to_store_selection, row.title)
        return success_outcome(selected)

    async def _input_question(self, node: QuestionNode, ctx: StepContext) -> Optional[NodeOutcome]:
        data = node.data

        if data.options:
            selected = self._match_choice(
                ctx, [(o.id, [o.label, o.value or ""]) for o in data.options]
            )
            if selected is None:
                await self._send_validation_error(node, ctx)
                return None
            option = next(o for o in data.options if o.id == selected)
            if data.variable_to_store_answer:
                ctx.set_variable(data.variable_to_store_answer, option.value or option.label)
            return success_outcome(selected)

        answer = self._reply_text(ctx)
        if not answer:
            return None

        if data.validation_regex and not self._passes_validation(data.validation_regex, answer):
            await self._send_validation_error(node, ctx)
            return None

        if data.variable_to_store_answer:
            ctx.set_variable(data.variable_to_store_answer, answer)
        return success_outcome()

    async def _input_wait_input(self, node: WaitInputNode, ctx: StepContext) -> Optional[NodeOutcome]:
        answer = self._reply_text(ctx)
        if not answer:
            return None
        if node.data.variable_name:
            ctx.set_variable(node.data.variable_name, answer)
        return success_outcome()

    @staticmethod
    def _passes_validation(pattern: str, answer: str) -> bool:
        try:
            return re.fullmatch(pattern, answer) is not None
        except re.error as e:
            logger.warning(f"Invalid validation regex '{pattern}', accepting answer: {e}")
            return True

    async def _send_validation_error(self, node: QuestionNode, ctx: StepContext) -> None:
        """Optional feedback for a rejected answer; silent when not configured"""
        if not node.data.error_message:
            return
        try:
            await self._send(ctx, TextPayload(text=ctx.render(node.data.error_message)))
        except ExternalCallError as e:
            logger.error(f"[{ctx.contact_id}] could not send validation error: {e}")
