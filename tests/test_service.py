"""Tests for the host-facing workflow service.

Tests cover:
- Result dicts for execute/stop/execute-node
- Rejections returned as errors instead of raised
- Context push to subscribers and the snapshot channel
"""

import asyncio

import pytest

from devflow.core.service import WorkflowService


NODES = [
    {"id": "start", "type": "start", "data": {"label": "Launch", "config": {"waitTime": 0}}},
    {"id": "tap", "type": "click", "data": {"label": "Tap", "config": {"x": 10, "y": 10}}},
]
EDGES = [{"id": "e1", "source": "start", "target": "tap"}]


@pytest.fixture
def service(fake_device, settings, store, recording_sleep):
    return WorkflowService(device=fake_device, settings=settings, store=store, sleep=recording_sleep)


# =============================================================================
# Workflow Verbs
# =============================================================================


class TestExecuteWorkflow:
    """Test execute_workflow / stop_workflow results."""

    def test_success(self, service):
        result = asyncio.run(service.execute_workflow(NODES, EDGES, "dev-1"))

        assert result == {"success": True}

    def test_named_workflow(self, service, store):
        asyncio.run(service.execute_workflow(NODES, EDGES, "dev-1", name="Smoke"))

        assert store.get_execution_log()[0].message == "Workflow 'Smoke' started on device dev-1"

    def test_node_failure(self, service, fake_device):
        fake_device.failures["tap"] = 1

        result = asyncio.run(service.execute_workflow(NODES, EDGES, "dev-1"))

        assert result == {"success": False, "error": "Node 'Tap' failed: tap failed on device"}

    def test_invalid_graph(self, service):
        result = asyncio.run(service.execute_workflow(NODES[1:], [], "dev-1"))

        assert result["success"] is False
        assert result["error"].startswith("Invalid workflow graph: No start node found")

    def test_malformed_payload(self, service):
        result = asyncio.run(service.execute_workflow([{"id": "x"}], [], "dev-1"))

        assert result["success"] is False
        assert result["error"].startswith("Invalid workflow")

    def test_device_unreachable(self, service, fake_device):
        fake_device.connected = False

        result = asyncio.run(service.execute_workflow(NODES, EDGES, "dev-9"))

        assert result == {"success": False, "error": "Device 'dev-9' is not connected"}

    def test_stop_when_idle(self, service):
        result = asyncio.run(service.stop_workflow())

        assert result == {"success": False, "error": "No workflow is running"}

    def test_stop_running_workflow(self, service, store):
        nodes = [
            NODES[0],
            {
                "id": "wait",
                "type": "wait",
                "config": {"waitType": "arise", "selector": "#never", "duration": 60, "unit": "s"},
            },
        ]
        edges = [{"id": "e1", "source": "start", "target": "wait"}]

        async def scenario():
            run = asyncio.create_task(service.execute_workflow(nodes, edges, "dev-1"))
            while store.current_node_id != "wait":
                await asyncio.sleep(0)
            stopped = await service.stop_workflow()
            return stopped, await run

        stopped, result = asyncio.run(scenario())

        assert stopped == {"success": True}
        assert result == {"success": False, "error": "Workflow stopped by user"}

    def test_second_run_rejected_while_busy(self, service, store):
        store.set_running(True)

        result = asyncio.run(service.execute_workflow(NODES, EDGES, "dev-1"))

        assert result == {"success": False, "error": "A workflow is already running"}


class TestExecuteSingleNode:
    """Test execute_single_node results."""

    def test_editor_node_dict(self, service, fake_device):
        result = asyncio.run(service.execute_single_node(NODES[1], "dev-1"))

        assert result == {"success": True}
        assert fake_device.calls == [("tap", (10, 10))]

    def test_node_failure(self, service):
        result = asyncio.run(
            service.execute_single_node({"id": "c", "type": "click", "config": {}}, "dev-1")
        )

        assert result["success"] is False
        assert "selector or both x and y" in result["error"]

    def test_malformed_node(self, service):
        result = asyncio.run(service.execute_single_node({"id": "c"}, "dev-1"))

        assert result["success"] is False
        assert result["error"].startswith("Invalid node")


# =============================================================================
# Context Push
# =============================================================================


class TestContextPush:
    """Test subscribers and the wire form they receive."""

    def test_get_workflow_context_is_wire_form(self, service):
        asyncio.run(service.execute_workflow(NODES, EDGES, "dev-1"))

        context = service.get_workflow_context()

        assert context["isRunning"] is False
        assert context["nodeStatuses"] == {"start": "success", "tap": "success"}

    def test_subscriber_sees_every_update(self, service):
        updates = []
        unsubscribe = service.on_workflow_context_update(updates.append)

        asyncio.run(service.execute_workflow(NODES, EDGES, "dev-1"))
        unsubscribe()
        count = len(updates)
        asyncio.run(service.execute_workflow(NODES, EDGES, "dev-1"))

        assert len(updates) == count
        assert updates[0]["isRunning"] is False
        assert any(u["isRunning"] and u["currentNodeId"] == "tap" for u in updates)
        assert updates[-1]["isRunning"] is False
        assert updates[-1]["executionLog"][-1]["message"] == "Workflow completed (2/2 successful)"

    def test_channel_streams_run(self, service):
        async def scenario():
            async with service.open_channel() as channel:
                result = await service.execute_workflow(NODES, EDGES, "dev-1")
                payloads = []
                while channel.pending():
                    payloads.append(channel.get_nowait())
            return result, payloads

        result, payloads = asyncio.run(scenario())

        assert result == {"success": True}
        lengths = [len(p["executionLog"]) for p in payloads]
        assert lengths == sorted(lengths)
        assert payloads[-1]["isRunning"] is False

    def test_cleanup_stops_push(self, service):
        updates = []
        service.on_workflow_context_update(updates.append)

        service.cleanup()
        asyncio.run(service.execute_workflow(NODES, EDGES, "dev-1"))

        assert updates == []
