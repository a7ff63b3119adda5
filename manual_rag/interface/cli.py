# manual_rag/interface/cli.py

from typing import List
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich import box
from rich.text import Text

from manual_rag.domain.models import DuplicateCheckResult, SearchHit, StoreStats


console = Console()

# A keyword match plus two query words, or a single keyword match.
KEYWORD_STRONG_SCORE = 20
KEYWORD_FAIR_SCORE = 10


def display_welcome_banner(model_name: str) -> None:
    console.print(Panel.fit(
        "[bold cyan]📚 Manual Library Search[/bold cyan]\n"
        f"[dim]Embeddings: {model_name} · keyword fallback when offline[/dim]",
        box=box.DOUBLE,
        border_style="cyan",
    ))


def display_ingested(file_name: str, chunk_count: int) -> None:
    console.print(f"[green]✓[/green] Imported [bold]{file_name}[/bold] ({chunk_count} chunks)")


def display_duplicate_warning(file_name: str, result: DuplicateCheckResult) -> None:
    lines = "\n".join(f"• {line}" for line in result.recommendations)
    console.print(Panel(
        f"[bold]{file_name}[/bold] looks like [italic]{result.duplicate_type}[/italic] "
        f"({result.similarity}%)\n\n{lines}",
        title="[bold yellow]⚠ Possible duplicate[/bold yellow]",
        border_style="yellow",
        box=box.ROUNDED,
    ))


def display_indexing_status(stats: StoreStats) -> None:
    console.print(
        f"\n[green]✓[/green] Library ready — [bold]{stats.documents}[/bold] documents, "
        f"[bold]{stats.chunks}[/bold] chunks, {stats.keywords} keywords.\n"
    )


def prompt_for_query() -> str:
    return Prompt.ask("\n[bold yellow]❓ Your question[/bold yellow]")


def display_results(query: str, hits: List[SearchHit]) -> None:
    console.print(f"\n[bold]Results for:[/bold] [italic]\"{query}\"[/italic]\n")

    if not hits:
        console.print("[dim]No relevant content found in manual library.[/dim]")
        return

    for rank, hit in enumerate(hits, start=1):
        score_color = _score_to_color(hit.score)
        score_display = f"[{score_color}]{hit.score:.4f}[/{score_color}]"

        panel_content = Text()
        panel_content.append("📄 Source: ", style="dim")
        panel_content.append(hit.chunk.document_title, style="bold white")
        panel_content.append(f"  (page {hit.chunk.page_number}, {hit.chunk.content_type})", style="dim")
        panel_content.append("\n🎯 Score: ")
        panel_content.append_text(Text.from_markup(score_display))
        panel_content.append(f"\n\n{hit.chunk.content}")

        console.print(Panel(
            panel_content,
            title=f"[bold]#{rank}[/bold]",
            border_style=score_color,
            box=box.ROUNDED,
            padding=(1, 2),
        ))


def display_error(message: str) -> None:
    console.print(f"\n[bold red]✗ Error:[/bold red] {message}\n")


def ask_continue() -> bool:
    answer = Prompt.ask(
        "\n[dim]Search again?[/dim]",
        choices=["y", "n"],
        default="y",
    )
    return answer.lower() == "y"


def _score_to_color(score: float) -> str:
    # Cosine scores stay within [-1, 1]; keyword scores start at 5.
    if score > 1.0:
        return _keyword_score_to_color(score)
    if score >= 0.75:
        return "green"
    elif score >= 0.50:
        return "yellow"
    else:
        return "red"


def _keyword_score_to_color(score: float) -> str:
    if score >= KEYWORD_STRONG_SCORE:
        return "green"
    elif score >= KEYWORD_FAIR_SCORE:
        return "yellow"
    else:
        return "red"
