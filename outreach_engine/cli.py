"""
CLI
===
Operate the engine from a terminal.

Usage:
    outreach-engine run                          # Scheduler in the foreground
    outreach-engine tools                        # Connect servers, list the catalog
    outreach-engine status camp-1a2b3c4d         # Reloaded campaign state
    outreach-engine step camp-1a2b3c4d           # Run one execution step
    outreach-engine transition camp-1a2b3c4d active
"""

import argparse
import json
import logging
import sys
import time

from .config import Config
from .errors import EngineError
from .host import EngineHost
from .models import CampaignStatus

# Colors
CYAN = "\033[36m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="outreach-engine",
        description="Deterministic execution engine for outreach campaigns",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--store", "-s", help="Store directory (overrides config)")
    parser.add_argument("--mcp-config", help="Path to mcp.json (overrides config)")
    parser.add_argument("--provider", "-p", help="LLM provider (openai, anthropic, ollama)")
    parser.add_argument("--model", "-m", help="Model name")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logs")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the scheduler until Ctrl+C")
    sub.add_parser("tools", help="Connect tool servers and list their tools")

    status = sub.add_parser("status", help="Show campaign state")
    status.add_argument("campaign_id")

    step = sub.add_parser("step", help="Execute the next task of a campaign once")
    step.add_argument("campaign_id")

    transition = sub.add_parser("transition", help="Change campaign status")
    transition.add_argument("campaign_id")
    transition.add_argument("status", choices=[s.value for s in CampaignStatus])
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=level, format="%(name)s: %(message)s")

    config = Config.load(args.config)
    if args.store:
        config.store_dir = args.store
    if args.mcp_config:
        config.mcp_config = args.mcp_config
    if args.provider:
        config.provider = args.provider
    if args.model:
        config.model = args.model

    try:
        host = EngineHost(config)
    except ValueError as e:
        print(f"{YELLOW}{e}{RESET}", file=sys.stderr)
        return 2

    try:
        return _COMMANDS[args.command](host, args)
    except EngineError as e:
        print(f"{YELLOW}Error: {e}{RESET}", file=sys.stderr)
        return 1


def _run(host: EngineHost, args) -> int:
    host.start()
    print(f"{DIM}Scheduler running every {host.config.polling_interval}s. "
          f"Press Ctrl+C to stop.{RESET}")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print(f"\n{DIM}Stopping...{RESET}")
    finally:
        host.stop()
    return 0


def _tools(host: EngineHost, args) -> int:
    try:
        host.connect_servers()
        for server in host.registry.all():
            print(f"{BOLD}{server.name}{RESET} {DIM}({server.id}){RESET}")
            for tool in server.list_tools():
                required = ", ".join(tool.required_parameters)
                print(f"  {GREEN}{tool.name}{RESET}  {DIM}{required}{RESET}")
                if tool.description:
                    print(f"    {tool.description}")
    finally:
        host.close()
    return 0


def _status(host: EngineHost, args) -> int:
    state = host.controller.reload_state(args.campaign_id)
    campaign = state.campaign
    print(f"{BOLD}{CYAN}{campaign.name}{RESET} {DIM}{campaign.id}{RESET}  [{campaign.status.value}]")
    for task in state.tasks:
        retries = f" retries={task.retry_count}/{task.max_retries}" if task.retry_count else ""
        print(f"  {task.id}  {task.status.value:<12} {task.description}{DIM}{retries}{RESET}")
        if task.error:
            print(f"    {YELLOW}{task.error}{RESET}")
    nxt = host.controller.select_next_task(state)
    print(f"{DIM}Next task: {nxt.id if nxt else 'none'} | "
          f"Artifacts: {len(state.artifacts)} | Leads: {len(state.leads)}{RESET}")
    return 0


def _step(host: EngineHost, args) -> int:
    state = host.controller.reload_state(args.campaign_id)
    task = host.controller.select_next_task(state)
    if task is None:
        print(f"{DIM}Nothing to do for {args.campaign_id}{RESET}")
        return 0
    try:
        host.connect_servers()
        result = host.controller.execute_task(task.id)
    finally:
        host.close()
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.status.value == "done" else 1


def _transition(host: EngineHost, args) -> int:
    campaign = host.controller.transition_campaign_status(
        args.campaign_id, CampaignStatus(args.status)
    )
    print(f"{GREEN}{campaign.id} -> {campaign.status.value}{RESET}")
    return 0


_COMMANDS = {
    "run": _run,
    "tools": _tools,
    "status": _status,
    "step": _step,
    "transition": _transition,
}


if __name__ == "__main__":
    sys.exit(main())
