"""
Unit tests for FlowEngine session handling.
"""
import asyncio
from datetime import datetime, timedelta

from zapflow.flow.result import StepStatus
from zapflow.models.state import ExecutionStatus

TENANT_ID = "tenant-1"
CONTACT_ID = "5511999998888"


class TestSessionStart:
    """Tests for trigger matching and state creation."""

    async def test_no_trigger_is_ignored(self, engine, store, greeting_flow, inbound, transport):
        store.add_flow(greeting_flow)

        result = await engine.process_message(TENANT_ID, inbound("good morning"))

        assert result.status == StepStatus.IGNORED
        assert transport.sent == []
        assert await store.get_state(TENANT_ID, CONTACT_ID) is None

    async def test_trigger_starts_session(self, engine, store, greeting_flow, inbound, transport):
        store.add_flow(greeting_flow)

        result = await engine.process_message(TENANT_ID, inbound("start"))

        assert result.status == StepStatus.AWAITING_INPUT
        assert result.is_new_session
        assert transport.texts == ["Hi", "What is your name?"]
        state = await store.get_state(TENANT_ID, CONTACT_ID)
        assert state.current_node_id == "ask_name"

    async def test_initial_variables(self, engine, store, make_flow, make_chain, inbound, transport):
        """New sessions know who wrote and what they wrote."""
        store.add_flow(make_flow(
            [
                {"id": "t", "type": "trigger"},
                {"id": "m", "type": "textMessage", "data": {
                    "message": "{{contactName}} ({{contactId}}) said {{triggerMessage}}"
                }},
            ],
            make_chain("t", "m")
        ))

        await engine.process_message(TENANT_ID, inbound("start now"))

        assert transport.texts == [f"Bob ({CONTACT_ID}) said start now"]

    async def test_other_tenant_flows_not_matched(self, engine, store, greeting_flow, inbound):
        store.add_flow({**greeting_flow, "tenant_id": "tenant-2"})

        result = await engine.process_message(TENANT_ID, inbound("start"))

        assert result.status == StepStatus.IGNORED

    async def test_invalid_graph_drops_message(self, engine, store, make_flow, inbound, transport):
        """A flow with two start nodes is refused and nothing is sent."""
        store.add_flow(make_flow(
            [{"id": "a", "type": "trigger"}, {"id": "b", "type": "textMessage", "data": {"message": "x"}}],
            []
        ))

        result = await engine.process_message(TENANT_ID, inbound("start"))

        assert result.status == StepStatus.ERROR
        assert "start node" in result.error
        assert transport.sent == []
        assert await store.get_state(TENANT_ID, CONTACT_ID) is None


class TestSessionContinue:
    """Tests for replies to a live session."""

    async def test_reply_ends_flow(self, engine, store, greeting_flow, inbound, transport):
        store.add_flow(greeting_flow)
        await engine.process_message(TENANT_ID, inbound("start"))
        transport.clear()

        result = await engine.process_message(TENANT_ID, inbound("Bob"))

        assert result.status == StepStatus.ENDED
        assert not result.is_new_session
        assert transport.texts == ["Hello Bob"]
        assert await store.get_state(TENANT_ID, CONTACT_ID) is None

    async def test_stale_flow_retries_trigger(self, engine, store, greeting_flow, inbound, transport):
        """A state whose flow was deleted is discarded and triggers are matched again."""
        store.add_flow(greeting_flow)
        await store.create_state(TENANT_ID, CONTACT_ID, "deleted-flow", "somewhere")

        result = await engine.process_message(TENANT_ID, inbound("start"))

        assert result.is_new_session
        assert result.flow_id == "flow-1"
        assert transport.texts == ["Hi", "What is your name?"]

    async def test_stale_node_without_trigger(self, engine, store, greeting_flow, inbound):
        store.add_flow(greeting_flow)
        await store.create_state(TENANT_ID, CONTACT_ID, "flow-1", "removed-node")

        result = await engine.process_message(TENANT_ID, inbound("hello"))

        assert result.status == StepStatus.IGNORED
        assert await store.get_state(TENANT_ID, CONTACT_ID) is None

    async def test_same_contact_serialized(self, engine, store, greeting_flow, inbound, transport):
        """Concurrent messages of one contact run one after the other."""
        store.add_flow(greeting_flow)

        await asyncio.gather(
            engine.process_message(TENANT_ID, inbound("start")),
            engine.process_message(TENANT_ID, inbound("Bob")),
        )

        assert transport.texts == ["Hi", "What is your name?", "Hello Bob"]
        assert await store.get_state(TENANT_ID, CONTACT_ID) is None
        assert len(engine.locks) == 0

    async def test_cycle_removes_state(self, engine, store, make_flow, make_chain, inbound):
        store.add_flow(make_flow(
            [
                {"id": "t", "type": "trigger"},
                {"id": "a", "type": "setVariable", "data": {"variableName": "x", "value": 1}},
                {"id": "b", "type": "setVariable", "data": {"variableName": "x", "value": 2}},
            ],
            make_chain("t", "a", "b") + [{"id": "loop", "source": "b", "target": "a"}]
        ))

        result = await engine.process_message(TENANT_ID, inbound("start"))

        assert result.status == StepStatus.ERROR
        assert result.flow_id == "flow-1"
        assert await store.get_state(TENANT_ID, CONTACT_ID) is None


class TestDelayAndEnd:
    """Tests for delayed conversations and explicit termination."""

    def delay_flow(self, make_flow, make_chain):
        return make_flow(
            [
                {"id": "t", "type": "trigger"},
                {"id": "d", "type": "delay", "data": {"delayAmount": 1, "delayUnit": "hours"}},
                {"id": "m", "type": "textMessage", "data": {"message": "Still there?"}},
            ],
            make_chain("t", "d", "m")
        )

    async def test_messages_during_delay_ignored(self, engine, store, make_flow, make_chain, inbound, transport):
        store.add_flow(self.delay_flow(make_flow, make_chain))
        await engine.process_message(TENANT_ID, inbound("start"))

        result = await engine.process_message(TENANT_ID, inbound("hello?"))

        assert result.status == StepStatus.IGNORED
        assert transport.sent == []
        state = await store.get_state(TENANT_ID, CONTACT_ID)
        assert state.status == ExecutionStatus.DELAYED

    async def test_resume(self, engine, store, make_flow, make_chain, inbound, transport):
        store.add_flow(self.delay_flow(make_flow, make_chain))
        await engine.process_message(TENANT_ID, inbound("start"))

        result = await engine.resume(TENANT_ID, CONTACT_ID)

        assert result.status == StepStatus.ENDED
        assert transport.texts == ["Still there?"]

    async def test_resume_without_delay_is_noop(self, engine, store, greeting_flow, inbound, transport):
        store.add_flow(greeting_flow)
        await engine.process_message(TENANT_ID, inbound("start"))
        transport.clear()

        result = await engine.resume(TENANT_ID, CONTACT_ID)

        assert result.status == StepStatus.IGNORED
        assert transport.sent == []

    async def test_due_states(self, engine, store, make_flow, make_chain, inbound):
        store.add_flow(self.delay_flow(make_flow, make_chain))
        await engine.process_message(TENANT_ID, inbound("start"))

        assert await store.list_due_states(datetime.now()) == []
        assert len(await store.list_due_states(datetime.now() + timedelta(hours=2))) == 1

    async def test_end_conversation(self, engine, store, greeting_flow, inbound):
        store.add_flow(greeting_flow)
        await engine.process_message(TENANT_ID, inbound("start"))

        assert await engine.end_conversation(TENANT_ID, CONTACT_ID) is True
        assert await store.get_state(TENANT_ID, CONTACT_ID) is None
        assert await engine.end_conversation(TENANT_ID, CONTACT_ID) is False


class TestContactLocks:
    """Tests for the per-contact lock registry."""

    async def test_locks_released_after_ignored_messages(self, engine, store, greeting_flow, inbound):
        """Contacts that never start a conversation leave no lock behind."""
        store.add_flow(greeting_flow)

        for i in range(100):
            await engine.process_message(TENANT_ID, inbound("hello", contact_id=f"55119{i:08d}"))

        assert len(engine.locks) == 0

    async def test_locks_released_after_session_turns(self, engine, store, greeting_flow, inbound):
        store.add_flow(greeting_flow)

        await engine.process_message(TENANT_ID, inbound("start"))
        assert len(engine.locks) == 0
        assert await store.get_state(TENANT_ID, CONTACT_ID) is not None

        await engine.resume(TENANT_ID, CONTACT_ID)
        await engine.end_conversation(TENANT_ID, CONTACT_ID)
        assert len(engine.locks) == 0

    async def test_lock_kept_while_turns_wait(self, engine):
        """A waiting turn keeps the lock alive after the holder leaves."""
        entered = []

        async def turn(name, release):
            async with engine.locks.hold(TENANT_ID, CONTACT_ID):
                entered.append(name)
                await release.wait()

        first_release, second_release = asyncio.Event(), asyncio.Event()
        first = asyncio.create_task(turn("first", first_release))
        second = asyncio.create_task(turn("second", second_release))
        await asyncio.sleep(0)

        assert entered == ["first"]
        assert len(engine.locks) == 1

        first_release.set()
        await first
        await asyncio.sleep(0)
        assert entered == ["first", "second"]
        assert len(engine.locks) == 1

        second_release.set()
        await second
        assert len(engine.locks) == 0
