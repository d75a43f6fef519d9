"""
Engine Host
===========
Wires config, store, tool registry, controller, and scheduler together and
owns their lifecycle.

    with EngineHost(Config.load()) as host:
        ...  # scheduler runs in the background

start() connects every configured tool server (a server that fails to come
up is logged and skipped), recovers tasks a previous process left
in_progress, and starts the scheduler. stop() reverses it.
"""

import logging
from typing import List, Optional

from .agent.proposals import LLMProposalGenerator, ProposalGenerator
from .config import Config
from .controller import DeterministicController
from .mcp.config import build_servers, load_mcp_config
from .mcp.registry import ToolRegistry
from .mcp.server import ToolServer
from .notifications import NotificationSink
from .scheduler import CampaignScheduler
from .store import JsonStore

log = logging.getLogger("outreach.host")


class EngineHost:

    def __init__(
        self,
        config: Optional[Config] = None,
        store=None,
        registry: Optional[ToolRegistry] = None,
        generator: Optional[ProposalGenerator] = None,
        notifier: Optional[NotificationSink] = None,
        servers: Optional[List[ToolServer]] = None,
    ):
        self.config = config or Config()
        self.store = store or JsonStore(self.config.store_dir or None)
        self.registry = registry or ToolRegistry()
        self.notifier = notifier or self.config.create_notifier()
        self._extra_servers = list(servers or [])

        if generator is None:
            generator = LLMProposalGenerator(
                self.config.create_provider(),
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        self.controller = DeterministicController(
            self.store,
            self.registry,
            generator,
            notifier=self.notifier,
            proposal_attempts=self.config.proposal_attempts,
            proposal_backoff=self.config.proposal_backoff,
        )
        self.scheduler = CampaignScheduler(
            self.controller,
            polling_interval=self.config.polling_interval,
            max_concurrent_campaigns=self.config.max_concurrent_campaigns,
            notifier=self.notifier,
        )

    def connect_servers(self) -> List[str]:
        """Connect and register every configured server. Returns the registered ids."""
        servers = list(self._extra_servers)
        if self.config.mcp_config:
            mcp = load_mcp_config(self.config.mcp_config, self.config.mcp_inputs)
            servers += build_servers(mcp, timeout=self.config.tool_timeout)

        registered = []
        for server in servers:
            try:
                server.connect()
                self.registry.register(server)
                registered.append(server.id)
            except Exception as e:
                log.warning(f"Tool server {server.id} unavailable, skipping: {e}")
                try:
                    server.disconnect()
                except Exception as close_error:
                    log.debug(f"Cleanup of {server.id} failed: {close_error}")
        log.info(f"{len(registered)}/{len(servers)} tool servers connected")
        return registered

    def recover(self) -> int:
        """Requeue tasks interrupted by a previous crash. Returns how many were recovered."""
        count = 0
        for campaign in self.store.campaigns.get_all():
            count += len(self.controller.recover_interrupted(campaign.id))
        if count:
            log.warning(f"Recovered {count} interrupted tasks")
        return count

    def start(self):
        self.connect_servers()
        self.recover()
        self.scheduler.start()

    def stop(self):
        self.scheduler.stop()
        self.close()

    def close(self):
        self.registry.close()

    def __enter__(self) -> "EngineHost":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
