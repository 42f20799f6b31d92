from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .config import AVAILABLE_LLM_MODELS, CONFIG_PATH, SORT_POLICIES, load_config, save_config
from .models import Config


def _choose(console: Console, title: str, options: tuple[str, ...], current: str) -> str:
    console.print(title)
    for number, option in enumerate(options, start=1):
        marker = " (current)" if option == current else ""
        console.print(f"  {number}. {option}{marker}")
    console.print()
    default = str(options.index(current) + 1) if current in options else "1"
    choice = Prompt.ask(
        "Select option",
        choices=[str(n) for n in range(1, len(options) + 1)],
        default=default,
        console=console,
    )
    return options[int(choice) - 1]


def run_onboarding(console: Console | None = None) -> Config:
    console = console or Console()

    console.clear()

    welcome_text = Text()
    welcome_text.append("🎙  Welcome to verbalist!\n\n", style="bold cyan")
    welcome_text.append("Say what you need to do, get a task list back.\n", style="dim")

    console.print(Panel(welcome_text, border_style="cyan", expand=False))
    console.print()

    config = load_config(apply_env=False)

    console.print("[bold]Speech Service[/bold]")
    console.print()
    console.print("Enter your Groq API key:")
    console.print("(Get one at https://console.groq.com/keys)")
    api_key = Prompt.ask("API Key", password=True, default=config.groq_api_key or "", console=console)
    if api_key:
        config.groq_api_key = api_key

    console.print()
    config.llm_model = _choose(console, "Choose the task extraction model:", AVAILABLE_LLM_MODELS, config.llm_model)

    console.print()
    console.print("[bold]Task List[/bold]")
    console.print()
    config.sort_policy = _choose(console, "How should open tasks be ordered?", SORT_POLICIES, config.sort_policy)

    console.print()
    console.print("Task server URL (leave empty to keep tasks in a local database):")
    server_url = Prompt.ask("Server URL", default=config.server_url or "", console=console)
    config.server_url = server_url or None

    console.print()
    console.print("[bold green]✓ Setup Complete![/bold green]")
    console.print()

    summary = Table(show_header=False, box=None, padding=(0, 2))
    summary.add_column(style="cyan")
    summary.add_column()

    summary.add_row("API key:", "set" if config.groq_api_key else "missing")
    summary.add_row("Model:", config.llm_model)
    summary.add_row("Sort order:", config.sort_policy)
    summary.add_row("Task store:", config.server_url or "local")

    console.print(Panel(summary, title="Your Configuration", border_style="green"))
    console.print()

    if Confirm.ask("Save this configuration?", default=True, console=console):
        save_config(config)
        console.print("[green]Configuration saved to[/green]", CONFIG_PATH)
        console.print()
        console.print("[bold]To capture tasks by voice, run:[/bold]")
        console.print("  [cyan]verbalist capture[/cyan]")
        console.print()
        return config
    else:
        console.print("[yellow]Configuration not saved. Run 'verbalist setup' to try again.[/yellow]")
        return config
