#!/usr/bin/env python3
"""ollama_agents/main.py

Interactive CLI for the agent router.
Messages are auto-routed unless an agent is pinned with ``/agent <name>``.
"""

from __future__ import annotations

# Standard Library
import asyncio
import dataclasses
import logging
import sys
from typing import NoReturn

# Third-Party Libraries
from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.theme import Theme

# Local Modules
from ollama_agents.agents.manager import RoutingManager, RoutingResult
from ollama_agents.runtime import build_runtime

CLI_CONVERSATION_ID = "cli-session"

custom_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "user": "bold blue",
        "assistant": "green",
    }
)
console = Console(theme=custom_theme)


@dataclasses.dataclass(slots=True)
class ChatSession:
    """CLI state: the pinned agent and the agent that answered last."""

    manager: RoutingManager
    conversation_id: str = CLI_CONVERSATION_ID
    pinned_agent: str | None = None
    last_agent: str | None = None

    async def send(self, message: str) -> RoutingResult:
        result = await self.manager.route_message(
            message, self.conversation_id, self.pinned_agent
        )
        self.last_agent = result.agent_used
        return result

    @property
    def history_agent(self) -> str | None:
        return self.pinned_agent or self.last_agent


def display_help() -> None:
    """Display available commands and usage information."""
    help_text = """
**Available Commands:**

- `/help` - Show this help message
- `/agents` - List the specialised agents
- `/agent <name>` - Send every message to one agent
- `/auto` - Go back to automatic routing
- `/history` - Show the conversation with the current agent
- `/clear` - Clear the conversation with the current agent
- `/quit` or `/exit` - Exit
- Any other text - Chat
    """
    console.print(Panel(Markdown(help_text), title="Help", border_style="cyan"))


def display_agents(manager: RoutingManager) -> None:
    table = Table(title="Agents", border_style="cyan")
    table.add_column("Key", style="bold")
    table.add_column("Name")
    table.add_column("Tools")
    table.add_column("Description")
    for key, info in manager.get_available_agents().items():
        table.add_row(key, info["name"], ", ".join(info["tools"]), info["description"])
    console.print(table)


def display_history(session: ChatSession) -> None:
    agent = session.history_agent
    history = session.manager.get_agent_history(agent, session.conversation_id) if agent else []
    if not history:
        console.print("No history yet.\n", style="info")
        return
    for message in history:
        style = "user" if message.role == "user" else "assistant"
        tools = f" [dim](tools: {', '.join(message.tools_used)})[/dim]" if message.tools_used else ""
        console.print(f"[{style}]{message.role.value}[/{style}]: {message.content}{tools}")
    console.print()


def display_result(result: RoutingResult) -> None:
    routing = result.routing
    subtitle = (
        f"{routing.agent_name} · {routing.confidence:.2f}"
        + (f" · tools: {', '.join(result.tools_used)}" if result.tools_used else "")
    )
    console.print(
        Panel(
            Markdown(result.response),
            title=f"[bold green]{result.agent_used}[/bold green]",
            subtitle=subtitle,
            border_style="red" if result.agent_used == "error" else "green",
        )
    )
    console.print()


def handle_command(session: ChatSession, user_input: str) -> bool:
    """Run a slash command. Returns False if ``user_input`` is not a command."""
    command, _, argument = user_input.partition(" ")
    command = command.lower()
    argument = argument.strip()

    if command in ("/quit", "/exit"):
        console.print("\nGoodbye!\n", style="success")
        sys.exit(0)
    elif command == "/help":
        display_help()
    elif command == "/agents":
        display_agents(session.manager)
    elif command == "/agent":
        if session.manager.get_agent(argument) is None:
            console.print(f"Unknown agent: {argument or '(none)'}\n", style="warning")
        else:
            session.pinned_agent = argument
            console.print(f"Messages now go to the {argument} agent.\n", style="success")
    elif command == "/auto":
        session.pinned_agent = None
        console.print("Automatic routing enabled.\n", style="success")
    elif command == "/history":
        display_history(session)
    elif command == "/clear":
        agent = session.history_agent
        if agent and session.manager.clear_agent_context(agent, session.conversation_id):
            console.print(f"Conversation with {agent} cleared.\n", style="success")
        else:
            console.print("Nothing to clear.\n", style="info")
    else:
        return False
    return True


async def chat_loop(session: ChatSession) -> NoReturn:
    """Read, route and print until the user quits."""
    while True:
        try:
            user_input = (
                await asyncio.to_thread(Prompt.ask, "[bold blue]You[/bold blue]")
            ).strip()
            if not user_input:
                continue
            if user_input.startswith("/") and handle_command(session, user_input):
                continue

            console.print()
            with console.status("[bold green]Thinking...", spinner="dots"):
                result = await session.send(user_input)
            display_result(result)

        except (KeyboardInterrupt, EOFError):
            console.print("\n\nInterrupted. Goodbye!\n", style="warning")
            sys.exit(0)

        except Exception as exc:
            console.print(f"\nError: {exc}\n", style="error")
            console.print("You can continue chatting or type /quit to exit.\n", style="info")


def main() -> NoReturn:
    """Entry point for the ``ollama-agents`` command."""
    load_dotenv()
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        runtime = build_runtime()
    except Exception as exc:
        console.print(f"Failed to initialize: {exc}", style="error")
        sys.exit(1)

    settings = runtime.settings
    console.print(f"Ollama host: {settings.ollama_base_url}", style="info")
    console.print(f"Model: {settings.ollama_model}", style="info")
    console.print(f"Agents: {', '.join(runtime.manager.agents)}\n", style="info")
    console.print("Type [bold]/help[/bold] for commands, or start chatting!\n", style="info")

    asyncio.run(chat_loop(ChatSession(runtime.manager)))


if __name__ == "__main__":
    main()
