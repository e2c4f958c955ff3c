"""End-to-end API tests over the ASGI app with a scripted model."""

import pytest

from fakes import text_response, tool_use_response


pytestmark = pytest.mark.integration

API = "/api/v1"


async def create_agent(client, **fields) -> dict:
    body = {"name": "Product Assistant", "system_prompt": "Answer product questions.",
            "tool_names": ["search_products"]}
    body.update(fields)
    response = await client.post(f"{API}/agents/", json=body)
    assert response.status_code == 201, response.text
    return response.json()


async def create_workflow(client, agent_id, **fields) -> dict:
    body = {
        "name": "Product Q&A",
        "input_schema": {
            "type": "object",
            "properties": {"question": {"type": "string"}},
            "required": ["question"],
        },
        "steps": [{
            "name": "answer",
            "step_type": "AGENT_EXECUTION",
            "agent_id": agent_id,
            "input_mapping": {"message": "${trigger.question}"},
            "output_variable": "answer",
        }],
    }
    body.update(fields)
    response = await client.post(f"{API}/workflows/", json=body)
    assert response.status_code == 201, response.text
    return response.json()


# ─── Agents and tools ───

class TestAgents:
    async def test_tools_listed(self, client):
        response = await client.get(f"{API}/tools/")
        assert response.status_code == 200
        names = [t["name"] for t in response.json()]
        assert {"search_products", "lookup_order", "broken_tool"} == set(names)

    async def test_create_and_get(self, client):
        agent = await create_agent(client)
        response = await client.get(f"{API}/agents/{agent['id']}")
        assert response.status_code == 200
        assert response.json()["tool_names"] == ["search_products"]

    async def test_unknown_tool_is_422(self, client):
        response = await client.post(f"{API}/agents/", json={"name": "x", "tool_names": ["teleport"]})
        assert response.status_code == 422
        assert "teleport" in response.json()["detail"]

    async def test_missing_agent_is_404(self, client):
        response = await client.get(f"{API}/agents/does-not-exist")
        assert response.status_code == 404


# ─── Workflows ───

class TestWorkflows:
    async def test_crud(self, client):
        agent = await create_agent(client)
        workflow = await create_workflow(client, agent["id"])
        assert [s["step_order"] for s in workflow["steps"]] == [0]

        response = await client.put(f"{API}/workflows/{workflow['id']}", json={"description": "FAQ bot"})
        assert response.json()["description"] == "FAQ bot"

        listing = (await client.get(f"{API}/workflows/")).json()
        assert listing["total"] == 1

        assert (await client.delete(f"{API}/workflows/{workflow['id']}")).status_code == 204
        assert (await client.get(f"{API}/workflows/{workflow['id']}")).status_code == 404

    async def test_invalid_steps_rejected(self, client):
        response = await client.post(f"{API}/workflows/", json={
            "name": "Broken",
            "steps": [{"name": "a", "step_type": "AGENT_EXECUTION", "agent_id": "ghost"}],
        })
        assert response.status_code == 422
        assert "Unknown agent" in response.json()["detail"]

    async def test_step_endpoints(self, client):
        agent = await create_agent(client)
        workflow = await create_workflow(client, agent["id"])

        response = await client.post(f"{API}/workflows/{workflow['id']}/steps", json={
            "name": "summary",
            "step_type": "CONDITION",
            "input_mapping": {"answer": "${answer}"},
            "output_variable": "summary",
        })
        assert response.status_code == 201
        step = response.json()
        assert step["step_order"] == 1

        first_id = workflow["steps"][0]["id"]
        response = await client.post(
            f"{API}/workflows/{workflow['id']}/steps/reorder",
            json={"step_ids": [step["id"], first_id]},
        )
        assert [s["name"] for s in response.json()["steps"]] == ["summary", "answer"]

        response = await client.delete(f"{API}/workflows/{workflow['id']}/steps/{step['id']}")
        assert response.status_code == 204


# ─── Execution ───

class TestExecution:
    async def test_execute_sync(self, client, model_client):
        model_client.responses = [
            tool_use_response(("tu_1", "search_products", {"query": "drill"})),
            text_response("Two drills are in stock."),
        ]
        agent = await create_agent(client)
        workflow = await create_workflow(client, agent["id"])

        response = await client.post(
            f"{API}/workflows/{workflow['id']}/execute",
            json={"payload": {"question": "Do you sell drills?"}},
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["status"] == "completed"
        assert body["context"]["answer"] == "Two drills are in stock."

        records = (await client.get(f"{API}/executions/{body['id']}/agent-executions")).json()
        assert len(records) == 1
        assert records[0]["turns"] == 2
        assert records[0]["tool_calls"][0]["name"] == "search_products"

    async def test_failed_sync_run_is_500(self, client):
        agent = await create_agent(client)
        workflow = await create_workflow(client, agent["id"], steps=[{
            "name": "answer",
            "step_type": "AGENT_EXECUTION",
            "agent_id": agent["id"],
            "input_mapping": "${trigger.nothing}",
            "output_variable": "answer",
        }], input_schema=None)

        response = await client.post(f"{API}/workflows/{workflow['id']}/execute", json={"payload": {}})

        assert response.status_code == 500
        body = response.json()
        assert body["status"] == "failed"
        assert "trigger.nothing" in body["error_message"]

    async def test_invalid_payload_is_422_with_errors(self, client):
        agent = await create_agent(client)
        workflow = await create_workflow(client, agent["id"])

        response = await client.post(f"{API}/workflows/{workflow['id']}/execute", json={"payload": {}})

        assert response.status_code == 422
        body = response.json()
        assert body["errors"]
        assert "question" in body["errors"][0]

    async def test_public_endpoint(self, client):
        agent = await create_agent(client)
        private = await create_workflow(client, agent["id"])
        public = await create_workflow(client, agent["id"], name="Public Q&A", is_public=True)

        response = await client.post(
            f"{API}/workflows/public/{private['id']}/execute", json={"payload": {"question": "hi"}}
        )
        assert response.status_code == 403

        response = await client.post(
            f"{API}/workflows/public/{public['id']}/execute", json={"payload": {"question": "hi"}}
        )
        assert response.status_code == 200
        assert response.json()["context"]["answer"] == "All done."

    async def test_inactive_is_409(self, client):
        agent = await create_agent(client)
        workflow = await create_workflow(client, agent["id"])
        await client.post(f"{API}/workflows/{workflow['id']}/deactivate")

        response = await client.post(
            f"{API}/workflows/{workflow['id']}/execute", json={"payload": {"question": "hi"}}
        )
        assert response.status_code == 409

    async def test_list_and_filter(self, client):
        agent = await create_agent(client)
        workflow = await create_workflow(client, agent["id"])
        for _ in range(2):
            await client.post(f"{API}/workflows/{workflow['id']}/execute", json={"payload": {"question": "q"}})

        response = await client.get(f"{API}/executions/", params={"workflow_id": workflow["id"], "status": "completed"})
        assert response.json()["total"] == 2

        response = await client.get(f"{API}/executions/", params={"status": "failed"})
        assert response.json()["total"] == 0


# ─── Approvals ───

class TestApprovals:
    async def _suspended(self, client) -> tuple[dict, dict]:
        agent = await create_agent(client)
        workflow = await create_workflow(client, agent["id"], input_schema=None, steps=[
            {
                "name": "draft",
                "step_type": "AGENT_EXECUTION",
                "agent_id": agent["id"],
                "input_mapping": "${trigger.question}",
                "output_variable": "draft",
            },
            {
                "name": "review",
                "step_type": "APPROVAL",
                "input_mapping": {"draft": "${draft}"},
                "output_variable": "review",
                "approval_config": {"required_role": "support_lead"},
            },
        ])
        execution = (await client.post(
            f"{API}/workflows/{workflow['id']}/execute", json={"payload": {"question": "q"}}
        )).json()
        [approval] = (await client.get(f"{API}/executions/{execution['id']}/approvals")).json()
        return execution, approval

    async def test_queue_and_approve(self, client):
        execution, approval = await self._suspended(client)
        assert execution["status"] == "running"

        pending = (await client.get(f"{API}/approvals/pending", params={"role": "support_lead"})).json()
        assert [a["id"] for a in pending] == [approval["id"]]
        assert (await client.get(f"{API}/approvals/pending/count")).json() == {"pending": 1}

        response = await client.post(
            f"{API}/approvals/{approval['id']}/approve", json={"approver": "lead@example.com"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        execution = (await client.get(f"{API}/executions/{execution['id']}")).json()
        assert execution["status"] == "completed"
        assert execution["context"]["review"] == {"draft": "All done."}

    async def test_second_decision_is_409(self, client):
        _, approval = await self._suspended(client)
        await client.post(f"{API}/approvals/{approval['id']}/reject", json={"approver": "a", "comments": "no"})

        response = await client.post(f"{API}/approvals/{approval['id']}/approve", json={"approver": "b"})
        assert response.status_code == 409

    async def test_cancel(self, client):
        execution, approval = await self._suspended(client)

        response = await client.post(f"{API}/executions/{execution['id']}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "failed"

        assert (await client.post(f"{API}/executions/{execution['id']}/cancel")).status_code == 409
        assert (await client.get(f"{API}/approvals/pending/count")).json() == {"pending": 1}
