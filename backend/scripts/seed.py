"""Database seed script: creates a demo product-assistant agent and workflows.

Run: python -m scripts.seed
"""

import asyncio
import sys
import os

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


PRODUCT_ASSISTANT_PROMPT = (
    "You are a product assistant for an online hardware store. "
    "Use search_products to find items matching the customer's question and "
    "lookup_order for order status. Answer in two or three sentences, "
    "quoting prices exactly as the tools return them."
)


async def seed():
    """Seed the database with a demo agent and workflows."""
    from db.database import init_db
    from db.database import AsyncSessionLocal
    from db.models.agent import Agent
    from db.models.workflow import Workflow
    from services.workflow_service import WorkflowService
    from sqlalchemy import select

    # Initialize DB tables
    await init_db()

    async with AsyncSessionLocal() as db:
        # 1. Product assistant agent
        result = await db.execute(select(Agent).where(Agent.name == "Product Assistant"))
        agent = result.scalar_one_or_none()

        if not agent:
            agent = Agent(
                name="Product Assistant",
                description="Answers catalogue and order questions using the commerce tools",
                system_prompt=PRODUCT_ASSISTANT_PROMPT,
                temperature=0.3,
                max_tokens=1024,
                tool_names=["search_products", "get_products", "lookup_order"],
            )
            db.add(agent)
            await db.flush()
            print(f"[seed] Created agent: {agent.name} ({agent.id})")
        else:
            print(f"[seed] Agent exists: {agent.name}")

        svc = WorkflowService(db)

        # 2. Public Q&A workflow
        result = await db.execute(select(Workflow).where(Workflow.name == "Product Q&A"))
        if not result.scalar_one_or_none():
            wf = await svc.create_workflow(
                name="Product Q&A",
                description="Answer a customer question about products",
                execution_mode="sync",
                interface_type="chat",
                is_public=True,
                input_schema={
                    "type": "object",
                    "properties": {
                        "question": {"type": "string", "minLength": 1},
                        "category": {"type": "string"},
                    },
                    "required": ["question"],
                },
                steps=[
                    {
                        "name": "answer",
                        "step_type": "AGENT_EXECUTION",
                        "agent_id": agent.id,
                        "input_mapping": {"message": "${trigger.question}"},
                        "output_variable": "answer",
                        "retry_config": {"max_attempts": 3, "backoff": "exponential", "base_delay_ms": 100},
                        "timeout_seconds": 120,
                    },
                ],
            )
            print(f"[seed] Created workflow: {wf.name} ({wf.id})")

        # 3. Reviewed answer workflow: agent draft held for human approval
        result = await db.execute(select(Workflow).where(Workflow.name == "Reviewed Product Answer"))
        if not result.scalar_one_or_none():
            wf = await svc.create_workflow(
                name="Reviewed Product Answer",
                description="Draft an answer for tools questions and hold it for review",
                execution_mode="async",
                interface_type="form",
                input_schema={
                    "type": "object",
                    "properties": {
                        "question": {"type": "string"},
                        "category": {"type": "string"},
                    },
                    "required": ["question", "category"],
                },
                steps=[
                    {
                        "name": "draft",
                        "step_type": "AGENT_EXECUTION",
                        "agent_id": agent.id,
                        "input_mapping": {"message": "${trigger.question}"},
                        "output_variable": "draft",
                        "condition_expression": "${trigger.category} == tools",
                    },
                    {
                        "name": "review",
                        "step_type": "APPROVAL",
                        "condition_expression": "${trigger.category} == tools",
                        "depends_on": [0],
                        "input_mapping": {"draft": "${draft}", "question": "${trigger.question}"},
                        "output_variable": "review",
                        "approval_config": {
                            "required_role": "support_lead",
                            "timeout_seconds": 3600,
                            "on_timeout": "reject",
                            "on_reject": "fail",
                        },
                    },
                ],
            )
            print(f"[seed] Created workflow: {wf.name} ({wf.id})")

        await db.commit()
        print("[seed] Done")


if __name__ == "__main__":
    asyncio.run(seed())
