"""Keyed registry of per-repository agents.

The FastAPI application owns one AgentRegistry. Agents are built lazily
on first use and share the process-wide GitHub client, proposal
generator, notifier, event emitter and command runner; each agent gets
its own proposal store, working tree and validation gate.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from src.bugfixer.agent import BugFixerAgent
from src.bugfixer.config import BugFixerSettings
from src.bugfixer.context.assembler import ContextAssembler
from src.bugfixer.events.emitter import EventEmitter
from src.bugfixer.github.client import GitHubClient
from src.bugfixer.github.models import RepositoryRef, parse_repository
from src.bugfixer.notifications.mailer import EmailNotifier
from src.bugfixer.proposals.generator import ProposalGenerator
from src.bugfixer.proposals.store import ProposalStore
from src.bugfixer.publisher import PRPublisher
from src.bugfixer.runner.command import CommandRunner
from src.bugfixer.validation.gate import ValidationGate, ValidationTimeouts
from src.bugfixer.workspace.patcher import PatchApplier
from src.bugfixer.workspace.repository import (
    WorkingTree,
    authenticated_clone_url,
    working_dir_for,
)

logger = logging.getLogger(__name__)


class UnknownRepositoryError(ValueError):
    """Raised when a repository reference cannot be parsed."""

    def __init__(self, repository: str):
        self.repository = repository
        super().__init__(f"Invalid repository: {repository!r}")


class AgentRegistry:
    """Builds and caches one BugFixerAgent per repository.

    Agents are keyed by "owner/name", so "owner/name",
    "https://github.com/owner/name" and "https://github.com/owner/name.git"
    all resolve to the same agent.
    """

    def __init__(
        self,
        settings: BugFixerSettings,
        github_client: GitHubClient,
        generator: ProposalGenerator,
        notifier: EmailNotifier,
        event_emitter: EventEmitter,
        runner: Optional[CommandRunner] = None,
    ):
        self.settings = settings
        self.github_client = github_client
        self.generator = generator
        self.notifier = notifier
        self.event_emitter = event_emitter
        self.runner = runner or CommandRunner()
        self._agents: Dict[str, BugFixerAgent] = {}

    def repositories(self) -> List[str]:
        return sorted(self._agents)

    def resolve(self, repository: str) -> RepositoryRef:
        """Canonical reference for "owner/name" or a repository URL.

        Raises:
            UnknownRepositoryError: If the reference cannot be parsed.
        """
        ref = parse_repository(repository)
        if ref is None:
            raise UnknownRepositoryError(repository)
        return ref

    def get(self, repository: str) -> Optional[BugFixerAgent]:
        """Return the registered agent for a repository, or None.

        Raises:
            UnknownRepositoryError: If the reference cannot be parsed.
        """
        return self._agents.get(self.resolve(repository).full_name)

    def assembler_for(self, repository: str) -> ContextAssembler:
        """Context assembler for a repository without registering an agent."""
        agent = self.get(repository)
        if agent is not None:
            return agent.assembler
        return ContextAssembler(self.github_client, self.resolve(repository))

    def get_or_create(self, repository: str) -> BugFixerAgent:
        """Return the agent for a repository, building it on first use.

        Args:
            repository: "owner/name" or a repository URL.

        Raises:
            UnknownRepositoryError: If the reference cannot be parsed.
        """
        ref = self.resolve(repository)
        agent = self._agents.get(ref.full_name)
        if agent is None:
            agent = self._build_agent(ref)
            self._agents[ref.full_name] = agent
            logger.info(
                "Registered repository",
                extra={"repository": ref.full_name, "repo_url": agent.repo_url},
            )
        return agent

    def _build_agent(self, ref: RepositoryRef) -> BugFixerAgent:
        cfg = self.settings
        repo_url = f"{cfg.github_web_url}/{ref.full_name}"
        path = working_dir_for(Path(cfg.workspace_base_path), repo_url)

        working_tree = WorkingTree(
            path=path,
            clone_url=authenticated_clone_url(
                cfg.github_web_url, ref.full_name, cfg.github_token
            ),
            runner=self.runner,
            timeout_seconds=cfg.git_timeout_seconds,
            author_name=cfg.git_author_name,
            author_email=cfg.git_author_email,
            secrets=[cfg.github_token],
        )
        gate = ValidationGate(
            root=path,
            runner=self.runner,
            timeouts=ValidationTimeouts(
                lint=cfg.lint_timeout_seconds,
                build=cfg.build_timeout_seconds,
                test=cfg.test_timeout_seconds,
            ),
        )

        return BugFixerAgent(
            repository=ref,
            repo_url=repo_url,
            github_client=self.github_client,
            assembler=ContextAssembler(self.github_client, ref),
            generator=self.generator,
            store=ProposalStore(),
            notifier=self.notifier,
            working_tree=working_tree,
            patcher=PatchApplier(working_tree),
            gate=gate,
            publisher=PRPublisher(self.github_client, ref),
            event_emitter=self.event_emitter,
            scan_labels=list(cfg.scan_labels),
        )

    async def close(self) -> None:
        await self.github_client.close()
        await self.event_emitter.close()
