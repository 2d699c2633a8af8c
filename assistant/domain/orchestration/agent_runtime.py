from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
import structlog

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig, RunnableLambda
from langchain_core.tools import BaseTool

logger = structlog.get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that can call tools on the user's behalf. "
    "Answer concisely and say which tools you used."
)

CONTEXT_HEADER = (
    "# User's Relevant Context (from Artifacts)\n\n"
    "The following contextual information has been automatically retrieved based on the "
    "user's message. Use this to provide more personalized and informed responses:\n\n"
)


def build_system_prompt(base_prompt: str, context: Optional[str]) -> str:
    if not context:
        return base_prompt
    return f"{base_prompt}\n\n{CONTEXT_HEADER}{context}"


def history_to_messages(history: Optional[Sequence[Any]]) -> List[BaseMessage]:
    """Convert ``{role, content}`` history items into chat messages"""

    messages: List[BaseMessage] = []
    for item in history or []:
        if isinstance(item, BaseMessage):
            messages.append(item)
            continue

        role = item.get("role") if isinstance(item, dict) else getattr(item, "role", None)
        content = item.get("content") if isinstance(item, dict) else getattr(item, "content", None)
        if not isinstance(content, str) or not content:
            continue

        if role == "assistant":
            messages.append(AIMessage(content=content))
        elif role == "system":
            messages.append(SystemMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))

    return messages


class AgentRuntime(ABC):
    """Produces the raw event stream for one conversation turn"""

    @abstractmethod
    def stream(
        self,
        user_id: str,
        message: str,
        history: Optional[Sequence[Any]] = None,
        context: Optional[str] = None
    ) -> AsyncIterator[Any]:
        pass


class ChatModelAgentRuntime(AgentRuntime):
    """Tool-calling loop over a LangChain chat model.

    The loop runs inside a runnable so ``astream_events`` reports the model's
    token stream and every tool start and end as raw events.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        tools: Optional[Sequence[BaseTool]] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_tool_rounds: int = 5
    ):
        self.llm = llm
        self.tools: Dict[str, BaseTool] = {tool.name: tool for tool in tools or []}
        self.system_prompt = system_prompt
        self.max_tool_rounds = max_tool_rounds

    def stream(
        self,
        user_id: str,
        message: str,
        history: Optional[Sequence[Any]] = None,
        context: Optional[str] = None
    ) -> AsyncIterator[Any]:
        messages: List[BaseMessage] = [SystemMessage(content=build_system_prompt(self.system_prompt, context))]
        messages.extend(history_to_messages(history))
        messages.append(HumanMessage(content=message))

        runnable = RunnableLambda(self._run).with_config(run_name="agent_turn")
        return runnable.astream_events(
            {"messages": messages},
            version="v2",
            config={"metadata": {"user_id": user_id}}
        )

    async def _run(self, inputs: Dict[str, Any], config: RunnableConfig) -> AIMessage:
        messages: List[BaseMessage] = list(inputs["messages"])
        llm = self.llm.bind_tools(list(self.tools.values())) if self.tools else self.llm

        for round_number in range(self.max_tool_rounds + 1):
            response = await llm.ainvoke(messages, config=config)
            messages.append(response)

            tool_calls = getattr(response, "tool_calls", None) or []
            if not tool_calls or round_number == self.max_tool_rounds:
                return response

            for call in tool_calls:
                messages.append(await self._execute_tool(call, config))

        return response

    async def _execute_tool(self, call: Dict[str, Any], config: RunnableConfig) -> ToolMessage:
        tool = self.tools.get(call["name"])
        if tool is None:
            logger.warning("Model requested unknown tool", tool_name=call["name"])
            return ToolMessage(content=f"Unknown tool: {call['name']}", tool_call_id=call["id"], status="error")

        try:
            result = await tool.ainvoke(call, config=config)
        except Exception as e:
            logger.error("Tool execution failed", tool_name=call["name"], error=str(e))
            return ToolMessage(content=f"Tool error: {e}", tool_call_id=call["id"], status="error")

        if isinstance(result, ToolMessage):
            return result
        return ToolMessage(content=str(result), tool_call_id=call["id"])
