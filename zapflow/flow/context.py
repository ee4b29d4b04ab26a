"""
Step Context - working state for one inbound-message turn
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, Any, Dict, List, TYPE_CHECKING

from ..models.state import ExecutionState
from ..models.message import InboundMessage
from .interpolator import InterpolationMiss, interpolate, interpolate_data, assign_path

if TYPE_CHECKING:
    from ..services.transport import MessagingTransport

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """
    Everything a node handler may read or change during one turn.

    `variables` is a working copy of the state's bag; it is written back to
    the store when the turn suspends.
    """

    state: ExecutionState
    transport: "MessagingTransport"
    inbound: Optional[InboundMessage] = None
    is_new_session: bool = False
    variables: Dict[str, Any] = field(default_factory=dict)
    executed_nodes: List[str] = field(default_factory=list)
    messages_sent: int = 0

    def __post_init__(self):
        if not self.variables:
            self.variables = dict(self.state.variables or {})

    @property
    def tenant_id(self) -> str:
        return self.state.tenant_id

    @property
    def contact_id(self) -> str:
        return self.state.contact_id

    @property
    def flow_id(self) -> str:
        return self.state.active_flow_id

    def render(self, template: Optional[str]) -> str:
        """Interpolate a template, logging unresolved tokens"""
        misses: List[InterpolationMiss] = []
        text = interpolate(template, self.variables, misses)
        self._log_misses(misses)
        return text

    def render_data(self, value: Any) -> Any:
        misses: List[InterpolationMiss] = []
        rendered = interpolate_data(value, self.variables, misses)
        self._log_misses(misses)
        return rendered

    def set_variable(self, name: str, value: Any) -> None:
        if not name:
            return
        assign_path(self.variables, name, value)
        logger.debug(f"[{self.contact_id}] variable {name} = {repr(value)[:100]}")

    def _log_misses(self, misses: List[InterpolationMiss]) -> None:
        for miss in misses:
            logger.warning(
                f"[{self.contact_id}] unresolved token {miss.token} "
                f"in flow {self.flow_id}"
            )
