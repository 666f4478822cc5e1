"""Command-line interface for Supervision Helper."""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import CREDENTIAL_ENV_VARS, Config, setup_logging
from .export import (
    compose_card,
    export_feedback,
    export_record,
    prompt_sheet,
    save_card_image,
)
from .models.schemas import PipelineStage
from .orchestrator import PipelineOrchestrator
from .styles import STYLE_LABELS, StyleKey

app = typer.Typer(
    name="supervision-helper",
    help="Turn supervision notes into a formal record and an affirming feedback card",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

SERVICE_URLS = {
    "gemini": "https://generativelanguage.googleapis.com",
    "openai": "https://api.openai.com/v1/models",
}


def _read_notes(notes: str) -> str:
    """Read notes from a file path, or stdin when the argument is '-'."""
    if notes == "-":
        return sys.stdin.read()
    path = Path(notes)
    if not path.exists():
        raise FileNotFoundError(f"Notes file not found: {path}")
    return path.read_text(encoding="utf-8")


@app.command()
def run(
    notes: str = typer.Argument(..., help="Path to a notes/transcript file, or '-' for stdin"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Output directory for generated files"
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file"
    ),
    style: Optional[str] = typer.Option(
        None, "--style", "-s", help="Illustration style key (see 'styles')"
    ),
    api_key: Optional[str] = typer.Option(
        None, "--api-key", help="API key for this session (overrides config and env)"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    no_interactive: bool = typer.Option(
        False,
        "--no-interactive",
        help="Skip the refinement prompts between stages"
    ),
):
    """Run the full pipeline: record, feedback card and illustration.

    Between stages you can type refinement instructions (for example
    "口吻再專業一點"); press Enter on an empty line to continue.

    Examples:
        supervision-helper run notes.txt
        supervision-helper run notes.txt --style ghibli_fresh --no-interactive
        cat notes.txt | supervision-helper run -
    """
    try:
        cfg = Config.load(config)
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("Run 'supervision-helper init' to create a configuration file.")
        raise typer.Exit(1)

    if style:
        try:
            cfg.pipeline.default_style = StyleKey(style).value
        except ValueError:
            console.print(f"[red]Unknown style: {style}[/red]. Run 'supervision-helper styles'.")
            raise typer.Exit(1)

    try:
        raw_input = _read_notes(notes)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if output is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output = Path(cfg.pipeline.output_dir) / timestamp
    output = Path(output)
    output.mkdir(parents=True, exist_ok=True)

    if verbose:
        cfg.logging.level = "DEBUG"
    log_file = output / "pipeline.log"
    setup_logging(cfg, log_file=log_file)

    interactive = not no_interactive
    console.print(Panel(f"[bold]Supervision Helper v{__version__}[/bold]"))
    console.print(f"Notes: {len(raw_input)} chars")
    console.print(f"Backend: {cfg.llm.backend}")
    console.print(f"Style: {cfg.pipeline.default_style} ({STYLE_LABELS[StyleKey(cfg.pipeline.default_style)]})")
    console.print(f"Interactive: {'Yes' if interactive else 'No'}")
    console.print(f"Log file: {log_file}")
    console.print()

    try:
        orchestrator = PipelineOrchestrator(cfg, credential=api_key)
        ok = asyncio.run(_run_pipeline(orchestrator, cfg, raw_input, output, interactive))
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        raise typer.Exit(1)

    raise typer.Exit(0 if ok else 1)


def _report_failure(orchestrator: PipelineOrchestrator) -> None:
    state = orchestrator.state
    console.print(f"[red]{state.error or 'Operation failed'}[/red]")
    if state.needs_credential:
        names = " or ".join(sorted(set(CREDENTIAL_ENV_VARS.values())))
        console.print(f"[yellow]Reconnect your API key: set {names} or pass --api-key.[/yellow]")


async def _refinement_loop(orchestrator: PipelineOrchestrator) -> None:
    """Prompt for refinement instructions until an empty line is entered."""
    while True:
        instruction = typer.prompt(
            "  Refinement instruction (Enter to continue)",
            default="",
            show_default=False,
        )
        if not instruction.strip():
            return

        console.print("  [dim]Refining...[/dim]")
        state = await orchestrator.refine(instruction)
        if state.error:
            _report_failure(orchestrator)
            continue

        if state.stage == PipelineStage.RECORD:
            console.print(Panel(Markdown(state.formal_record), title="Record"))
        elif state.feedback is not None:
            console.print(Panel(state.feedback.full_text, title="Feedback card"))


async def _image_refinement_loop(orchestrator: PipelineOrchestrator) -> None:
    while True:
        instruction = typer.prompt(
            "  Image refinement instruction (Enter to finish)",
            default="",
            show_default=False,
        )
        if not instruction.strip():
            return

        console.print("  [dim]Refining prompt and regenerating image...[/dim]")
        state = await orchestrator.refine_image(instruction)
        if state.error:
            _report_failure(orchestrator)
        console.print(Panel(state.image_prompt or "", title="Image prompt"))
        if state.card_image is None:
            console.print("  [yellow]No image was returned for this prompt.[/yellow]")


async def _run_pipeline(
    orchestrator: PipelineOrchestrator,
    cfg: Config,
    raw_input: str,
    output: Path,
    interactive: bool,
) -> bool:
    """Drive the wizard stage by stage and write the artifacts.

    Returns:
        True when every stage completed
    """
    # Step 1: Formal record
    console.print("[bold blue]Step 1: Writing formal record...[/bold blue]")
    state = await orchestrator.generate_record(raw_input)
    if state.stage != PipelineStage.RECORD:
        if not raw_input.strip():
            console.print("[red]The notes are empty.[/red]")
        else:
            _report_failure(orchestrator)
        return False

    console.print(Panel(Markdown(state.formal_record), title="Record"))
    if interactive:
        await _refinement_loop(orchestrator)

    (output / "record.md").write_text(state.formal_record, encoding="utf-8")
    export_record(state.formal_record, output / cfg.pipeline.record_filename)

    # Step 2: Feedback card
    console.print("[bold blue]Step 2: Writing feedback card...[/bold blue]")
    state = await orchestrator.generate_feedback()
    if state.stage != PipelineStage.FEEDBACK:
        _report_failure(orchestrator)
        return False

    if state.feedback.is_empty:
        console.print("[yellow]The feedback came back empty; you can refine or rewrite it.[/yellow]")
    console.print(Panel(state.feedback.full_text, title=f"Feedback card (theme: {state.feedback.theme})"))
    if interactive:
        await _refinement_loop(orchestrator)

    export_feedback(state.feedback, output / "feedback.json")

    # Step 3: Illustration
    console.print("[bold blue]Step 3: Generating card illustration...[/bold blue]")
    state = await orchestrator.generate_visual()
    if state.stage != PipelineStage.VISUAL:
        _report_failure(orchestrator)
        return False

    console.print(Panel(state.image_prompt or "", title="Image prompt"))
    if state.card_image is None:
        console.print("[yellow]No image was returned.[/yellow]")
    if interactive:
        await _image_refinement_loop(orchestrator)

    state = orchestrator.state
    (output / "prompt.txt").write_text(
        prompt_sheet(state.image_prompt, state.feedback.full_text), encoding="utf-8"
    )
    if state.card_image:
        save_card_image(state.card_image, output / "card.png")
    card = compose_card(state.card_image, state.feedback, cfg.pipeline.card_fonts)
    card.save(str(output / "card_composed.png"), "PNG")

    console.print("\n" + "=" * 50)
    console.print("[bold green]Done![/bold green]")
    console.print(f"Output directory: {output}")
    console.print("=" * 50)
    return True


@app.command()
def styles():
    """List the available illustration styles."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Key")
    table.add_column("Label")

    for key in StyleKey:
        table.add_row(key.value, STYLE_LABELS[key])

    console.print(table)


@app.command()
def init(
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite existing config file"
    ),
):
    """Write a starter config.yaml into the current directory."""
    config_path = Path("config.yaml")

    if config_path.exists() and not force:
        console.print(f"[yellow]Config file already exists: {config_path}[/yellow]")
        console.print("Use --force to overwrite.")
        raise typer.Exit(1)

    config_content = """# Supervision Helper Configuration

llm:
  backend: "gemini"
  gemini:
    text_model: "gemini-3.1-pro-preview"
    image_model: "gemini-3-pro-image-preview"
  openai:
    model: "gpt-4o"
    image_model: "gpt-image-1"

retry:
  max_attempts: 3
  backoff_base: 2.0
  jitter: 1.0

pipeline:
  default_style: "auto"
  output_dir: "./outputs"
  card_fonts:
    rounded: null
    serif: null
    handwritten: null

logging:
  level: "INFO"
"""
    config_path.write_text(config_content, encoding="utf-8")

    console.print(f"[green]Created config file: {config_path}[/green]")
    console.print("\nNext steps:")
    console.print("1. Set GEMINI_API_KEY (or switch to openai and set OPENAI_API_KEY)")
    console.print("2. Optionally point card_fonts at CJK font files for the composed card")
    console.print("3. Run: supervision-helper run notes.txt")


@app.command()
def doctor():
    """Check config, API key, service reachability and optional libraries."""
    console.print(Panel("[bold]Supervision Helper Doctor[/bold]"))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")

    all_ok = True

    # Check config file
    config_path = Config.find_config()
    cfg = None
    if config_path:
        try:
            cfg = Config.from_yaml(config_path)
            table.add_row("Config file", "[green]OK[/green]", str(config_path))
        except (ValueError, yaml.YAMLError) as e:
            table.add_row("Config valid", "[red]FAIL[/red]", str(e)[:50])
            all_ok = False
    else:
        cfg = Config()
        table.add_row("Config file", "[yellow]DEFAULTS[/yellow]", "Run 'supervision-helper init'")

    # Check credential
    if cfg:
        env_var = CREDENTIAL_ENV_VARS[cfg.llm.backend]
        api_key = cfg.llm.default_credential()
        if api_key:
            masked = api_key[:8] + "..." + api_key[-4:]
            table.add_row("API Key", "[green]OK[/green]", masked)
        else:
            table.add_row("API Key", "[red]MISSING[/red]", f"Set {env_var}")
            all_ok = False

    # Check the generation service is reachable
    if cfg:
        import httpx
        url = SERVICE_URLS[cfg.llm.backend]
        try:
            resp = httpx.get(url, timeout=5)
            if resp.status_code < 500:
                table.add_row("Service", "[green]OK[/green]", url)
            else:
                table.add_row("Service", "[red]FAIL[/red]", f"Status: {resp.status_code}")
                all_ok = False
        except httpx.HTTPError:
            table.add_row("Service", "[red]FAIL[/red]", "Not reachable")
            all_ok = False

    # Check Python dependencies
    try:
        from google import genai
        table.add_row("google-genai", "[green]OK[/green]", getattr(genai, "__version__", "installed"))
    except ImportError:
        table.add_row("google-genai", "[red]MISSING[/red]", "pip install google-genai")
        all_ok = False

    try:
        import PIL
        table.add_row("Pillow", "[green]OK[/green]", PIL.__version__)
    except ImportError:
        table.add_row("Pillow", "[red]MISSING[/red]", "pip install pillow")
        all_ok = False

    try:
        import docx  # noqa: F401
        table.add_row("python-docx", "[green]OK[/green]", "installed")
    except ImportError:
        table.add_row("python-docx", "[red]MISSING[/red]", "pip install python-docx")
        all_ok = False

    console.print(table)

    if all_ok:
        console.print("\n[bold green]All checks passed![/bold green]")
        raise typer.Exit(0)
    else:
        console.print("\n[bold red]Some checks failed. Please fix the issues above.[/bold red]")
        raise typer.Exit(1)


@app.command()
def version():
    """Show version information."""
    console.print(f"Supervision Helper v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
