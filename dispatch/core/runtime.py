"""Wires the concrete collaborators into the core."""

from __future__ import annotations

from dataclasses import dataclass

from dispatch.agents.decision import LLMDecisionAgent
from dispatch.agents.execution import CLIExecutionAgent
from dispatch.agents.review import LLMReviewAgent
from dispatch.core.config import Settings, get_settings
from dispatch.core.interfaces import MessagingChannel
from dispatch.core.router import HumanReplyRouter
from dispatch.core.scheduler import CycleScheduler
from dispatch.core.state_machine import ProjectProcessor
from dispatch.core.store import JsonProjectStore
from dispatch.telegram.bot import TelegramChannel
from dispatch.tools.git import GitRepositoryInspector, GitVersionControl


@dataclass
class Runtime:
    settings: Settings
    store: JsonProjectStore
    channel: MessagingChannel
    processor: ProjectProcessor
    scheduler: CycleScheduler
    router: HumanReplyRouter


def build_runtime(settings: Settings | None = None, channel: MessagingChannel | None = None) -> Runtime:
    settings = settings or get_settings()
    store = JsonProjectStore(settings.data_dir)
    channel = channel or TelegramChannel()
    vcs = GitVersionControl()
    decision_agent = LLMDecisionAgent()

    processor = ProjectProcessor(
        store=store,
        inspector=GitRepositoryInspector(settings.max_diff_chars),
        vcs=vcs,
        decision_maker=decision_agent,
        executor=CLIExecutionAgent(settings.execution_command, settings.execution_timeout_seconds),
        reviewer=LLMReviewAgent(),
        channel=channel,
        settings=settings,
    )
    scheduler = CycleScheduler(store, processor, decision_agent, vcs, channel, settings)
    router = HumanReplyRouter(store, scheduler)
    return Runtime(settings, store, channel, processor, scheduler, router)
