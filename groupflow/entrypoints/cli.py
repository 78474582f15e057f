from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from contextlib import AsyncExitStack
from typing import Dict, List, Optional

import httpx

from groupflow.agents.base import Agent
from groupflow.agents.default_reply import DefaultReplyAgent
from groupflow.agents.middleware import LoggingMiddleware, register_middleware, register_print_message
from groupflow.agents.model import ModelAgent
from groupflow.agents.remote import RemoteAgent
from groupflow.agents.user_proxy import HumanInputMode, UserProxyAgent
from groupflow.errors import ConfigurationError
from groupflow.schemas.messages import format_message
from groupflow.telemetry.logging import setup_logging
from groupflow.utils.llm_clients import LLMClient, OpenAIClient
from groupflow.utils.settings import AgentConfig, AppConfig, LLMConfig, load_config
from groupflow.workflows.graph import Graph
from groupflow.workflows.group_chat import GroupChat
from groupflow.workflows.manager import ChatState, GroupChatManager, GroupChatResult
from groupflow.workflows.transition import Predicate, Transition, max_messages, min_messages

logger = logging.getLogger(__name__)


def build_llm_client(config: LLMConfig) -> LLMClient:
    if config.provider != "openai":
        raise ConfigurationError(f"unsupported llm provider: {config.provider}")
    return OpenAIClient(
        model=config.model,
        temperature=config.temperature,
        base_url=config.base_url,
        api_key=os.environ.get(config.api_key_env, "not-needed"),
    )


async def build_agent(
    name: str,
    spec: AgentConfig,
    config: AppConfig,
    stack: AsyncExitStack,
) -> Agent:
    agent: Agent
    if spec.type == "remote":
        if not spec.url:
            raise ConfigurationError(f"remote agent {name} needs a url")
        client = await stack.enter_async_context(
            httpx.AsyncClient(
                base_url=spec.url,
                headers={"Accept": "application/json"},
                timeout=config.http.timeout,
            )
        )
        agent = RemoteAgent(name, client, chat_endpoint=spec.endpoint, description=spec.description)
    elif spec.type == "model":
        if config.llm is None:
            raise ConfigurationError(f"model agent {name} needs an llm section")
        agent = ModelAgent(
            name,
            build_llm_client(config.llm),
            system_message=spec.system_message,
            description=spec.description,
        )
    elif spec.type == "user_proxy":
        agent = UserProxyAgent(
            name,
            human_input_mode=HumanInputMode(spec.human_input_mode),
            default_reply=spec.default_reply,
            termination_keyword=config.workflow.termination_keyword,
            description=spec.description,
        )
    else:
        agent = DefaultReplyAgent(name, spec.default_reply, description=spec.description)

    agent = register_middleware(agent, LoggingMiddleware())
    if spec.print_messages:
        agent = register_print_message(agent)
    return agent


def _guard(min_count: Optional[int], max_count: Optional[int]) -> Optional[Predicate]:
    guards: List[Predicate] = []
    if max_count is not None:
        guards.append(max_messages(max_count))
    if min_count is not None:
        guards.append(min_messages(min_count))
    if not guards:
        return None
    if len(guards) == 1:
        return guards[0]
    return lambda f, t, history: all(g(f, t, history) for g in guards)


def build_graph(config: AppConfig) -> Optional[Graph]:
    if not config.transitions:
        return None
    return Graph(
        Transition.create(t.from_agent, t.to_agent, _guard(t.min_messages, t.max_messages))
        for t in config.transitions
    )


async def run_chat(config: AppConfig, task: str, to: Optional[str] = None) -> GroupChatResult:
    async with AsyncExitStack() as stack:
        agents: Dict[str, Agent] = {}
        for name, spec in config.agents.items():
            agents[name] = await build_agent(name, spec, config, stack)
        admin_name = config.workflow.admin
        logger.info("Built %d agent(s), %d transition(s)", len(agents), len(config.transitions))
        chat = GroupChat(
            members=[a for n, a in agents.items() if n != admin_name],
            graph=build_graph(config),
            admin=agents.get(admin_name) if admin_name else None,
        )
        manager = GroupChatManager(
            chat,
            max_round=config.workflow.max_rounds,
            termination_keyword=config.workflow.termination_keyword,
            stream=config.workflow.stream,
        )
        return await manager.send(task, to=to)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run a configured multi-agent group chat.")
    parser.add_argument("task", help="Opening message of the conversation.")
    parser.add_argument("--env", default="base", help="Config environment (base, dev, prod, ...).")
    parser.add_argument("--config-dir", default="configs", help="Directory holding <env>.yaml files.")
    parser.add_argument("--to", default=None, help="Agent that answers the opening message.")
    parser.add_argument("--transcript", action="store_true", help="Print the full history at the end.")
    args = parser.parse_args(argv)

    config = load_config(args.env, args.config_dir)
    setup_logging(config.logging.level)
    result = asyncio.run(run_chat(config, args.task, to=args.to))

    if args.transcript:
        for message in result.history:
            print(f"\n{format_message(message)}")
    print(f"\n[{result.state.value}] rounds={result.rounds} {result.reason}")
    if result.state is ChatState.FAILED:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
