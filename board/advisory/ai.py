"""
Taskflow AI Advisory — risk commentary and task breakdowns.

Purely advisory: nothing in the transition gate waits on these calls. Each
call goes through a circuit breaker and degrades to a neutral answer
(not at risk, no steps, no tags) when the provider fails or is unavailable.

Agents are built lazily by ``agent_factory`` so the module imports without
provider credentials; tests pass a factory returning fakes.
"""
from __future__ import annotations
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from board.advisory.breaker import CircuitBreaker
from board.models.records import Task


class RiskAssessment(BaseModel):
    is_at_risk: bool = False
    reason: str = ""


class TaskBreakdown(BaseModel):
    steps: list[str] = Field(default_factory=list, description="Short, actionable subtasks in execution order")


class TagSuggestions(BaseModel):
    tags: list[str] = Field(default_factory=list, description="Up to five one- or two-word labels")


RISK_PROMPT = (
    "You review tasks on a project board. Decide whether the task is at risk of "
    "slipping and give a one-sentence reason. Be conservative: only flag real risk."
)
BREAKDOWN_PROMPT = (
    "You split a task into 3 to 7 concrete subtasks. Each step is a short imperative sentence."
)
TAGS_PROMPT = "You suggest short labels that categorize a task on a project board."

AgentFactory = Callable[[str, type[BaseModel], str], Any]


def create_agent(name: str, output_type: type[BaseModel], system_prompt: str, model: Any, retries: int = 2) -> Agent:
    return Agent(
        model,
        output_type=output_type,
        system_prompt=system_prompt,
        retries=retries,
        name=name,
    )


class AIAdvisoryService:
    """Advisory AI calls behind a shared circuit breaker."""

    def __init__(
        self,
        model: str = "anthropic:claude-sonnet-4-20250514",
        agent_factory: Optional[AgentFactory] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.model = model
        self.agent_factory = agent_factory or (
            lambda name, output_type, prompt: create_agent(name, output_type, prompt, model)
        )
        self.breaker = breaker or CircuitBreaker(name="ai-advisory")
        self._agents: dict[str, Any] = {}

    def _agent(self, name: str, output_type: type[BaseModel], prompt: str) -> Any:
        if name not in self._agents:
            self._agents[name] = self.agent_factory(name, output_type, prompt)
        return self._agents[name]

    async def _run(self, name: str, output_type: type[BaseModel], prompt: str, user_prompt: str) -> BaseModel:
        agent = self._agent(name, output_type, prompt)
        result = await agent.run(user_prompt)
        return result.output

    async def predict_risk(self, task: Task) -> RiskAssessment:
        user_prompt = (
            f"Evaluate risk for: {task.title}. Status: {task.status}. Priority: {task.priority.value}."
            + (f" Due: {task.due_date.date().isoformat()}." if task.due_date else "")
        )
        return await self.breaker.call(
            self._run, "risk", RiskAssessment, RISK_PROMPT, user_prompt,
            fallback=RiskAssessment,
        )

    async def breakdown(self, title: str, description: str = "") -> list[str]:
        user_prompt = f"Break down this task.\nTitle: {title}\nDescription: {description or '(none)'}"
        result = await self.breaker.call(
            self._run, "breakdown", TaskBreakdown, BREAKDOWN_PROMPT, user_prompt,
            fallback=TaskBreakdown,
        )
        return [step.strip() for step in result.steps if step and step.strip()]

    async def suggest_tags(self, title: str, description: str = "") -> list[str]:
        user_prompt = f"Title: {title}\nDescription: {description or '(none)'}"
        result = await self.breaker.call(
            self._run, "tags", TagSuggestions, TAGS_PROMPT, user_prompt,
            fallback=TagSuggestions,
        )
        return list(dict.fromkeys(tag.strip() for tag in result.tags if tag and tag.strip()))[:5]
