"""Interactive CLI for the tool agent sandbox."""

import json
import sys

from agent.config import AgentConfig
from agent.context import ConversationContext
from agent.loop import LoopState, OrchestrationLoop
from agent.models import ChatCompletionsClient
from agent.protocol import LoopEvent
from agent.session_store import SessionStore
from agent.telemetry import Telemetry
from tools.executor import ToolExecutor
from tools.tool_registry import create_default_registry

# ANSI color codes
RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
CYAN = "\033[36m"
GREEN = "\033[32m"
RED = "\033[31m"

_PREVIEW_CHARS = 400


class CLIApp:
    """Interactive REPL with streaming output."""

    def __init__(self, config: AgentConfig, client=None, registry=None, store=None, out=None):
        self.config = config
        self.client = client if client is not None else ChatCompletionsClient.from_config(config)
        self.registry = registry if registry is not None else create_default_registry(config.tool_execution)
        if store is None and config.session.persist:
            store = SessionStore(config.session.storage_path)
        self.store = store
        self.executor = ToolExecutor(self.registry, config.tool_execution, store=store)
        self.out = out or sys.stdout
        self.context = ConversationContext(system_prompt=config.system_prompt)
        self.conversation_id: str | None = None

    async def run(self):
        """Main REPL loop."""
        self._print_banner()

        while True:
            try:
                user_input = input(f"{BOLD}You:{RESET} ").strip()
            except (EOFError, KeyboardInterrupt):
                self._write(f"\n{DIM}Goodbye!{RESET}\n")
                break

            if not user_input:
                continue

            command = user_input.lower()
            if command in ("/exit", "/quit"):
                self._write(f"{DIM}Goodbye!{RESET}\n")
                break
            if command in ("/reset", "/new"):
                self.reset()
                self._write(f"{DIM}[Conversation reset]{RESET}\n")
                continue
            if command == "/tools":
                self._print_tools()
                continue
            if command == "/help":
                self._print_help()
                continue

            await self.send(user_input)

    async def send(self, message: str) -> LoopState:
        """Run one user message through the loop, printing frames as they arrive."""
        if self.store is not None and self.conversation_id is None:
            self.conversation_id = self.store.create_conversation(message)

        telemetry = None
        if self.config.telemetry.enabled:
            telemetry = Telemetry(self.config.telemetry, self.conversation_id or "cli")

        loop = OrchestrationLoop(
            client=self.client,
            executor=self.executor,
            registry=self.registry,
            config=self.config,
            context=self.context,
            store=self.store,
            conversation_id=self.conversation_id,
            telemetry=telemetry,
        )

        self._write(f"\n{BOLD}{GREEN}Agent:{RESET} ")
        async for event in loop.run(message):
            self._render(event)
        self._write("\n\n")
        return loop.state

    def reset(self) -> None:
        self.context = ConversationContext(system_prompt=self.config.system_prompt)
        self.conversation_id = None

    def _render(self, event: LoopEvent) -> None:
        if event.type == "text":
            self._write(event.content)
        elif event.type == "tool_start":
            self._write(f"\n{CYAN}[{event.tool}]{RESET} {DIM}{event.input}{RESET}\n")
        elif event.type == "tool_end":
            output = event.output
            if not isinstance(output, str):
                output = json.dumps(output, default=str)
            failed = isinstance(event.output, dict) and "error_type" in event.output
            color = RED if failed else DIM
            self._write(f"{color}{_preview(output)}{RESET}\n")
        elif event.type == "error":
            self._write(f"\n{RED}[Error: {event.content}]{RESET}")

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    def _print_banner(self):
        self._write(f"""
{BOLD}{CYAN}Tool Agent Sandbox{RESET}
{DIM}Model: {self.config.chat_model.model_name}
Endpoint: {self.config.chat_model.base_url}
Workspace: {self.config.tool_execution.workspace_dir}{RESET}
Type {CYAN}/help{RESET} for commands.

""")

    def _print_tools(self):
        self._write(f"\n{BOLD}Tools:{RESET}\n")
        for name in self.registry.tool_names:
            definition = self.registry.definition(name)
            params = ", ".join(
                f"{p}{'*' if param.required else ''}: {param.type}"
                for p, param in definition.parameters.items()
            )
            self._write(f"  {CYAN}{name}{RESET}({params})  {DIM}{definition.description}{RESET}\n")
        self._write("\n")

    def _print_help(self):
        self._write(f"""
{BOLD}Commands:{RESET}
  {CYAN}/tools{RESET}  List available tools
  {CYAN}/reset{RESET}  Start a new conversation
  {CYAN}/help{RESET}   Show this help
  {CYAN}/exit{RESET}   Quit

""")


def _preview(text: str) -> str:
    if len(text) <= _PREVIEW_CHARS:
        return text
    return text[:_PREVIEW_CHARS] + f"... ({len(text) - _PREVIEW_CHARS} more chars)"
