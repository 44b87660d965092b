"""
EchoVault CLI - Typer entry point

Commands: add, ask, maintain, status
"""

import asyncio
import sys
from typing import Optional

import typer

from echovault._core import EchoVault
from echovault.errors import EchoVaultError
from echovault.health import check_database, check_llm_config
from echovault.services.pipeline import SubmitOutcome, SubmitStatus
from echovault.services.safety import CRISIS_RESOURCES, GateResolution

app = typer.Typer(help="EchoVault journaling core")


def _fail(message: str) -> None:
    typer.echo(f"error: {message}", err=True)
    sys.exit(1)


@app.command()
def status() -> None:
    """Check database reachability and LLM configuration."""
    typer.echo("database: ok" if check_database() else "database: fail")
    typer.echo("llm: ok" if check_llm_config() else "llm: fail")


async def _resolve(ev: EchoVault, outcome: SubmitOutcome) -> SubmitOutcome:
    while outcome.pending is not None:
        pending = outcome.pending
        if outcome.status is SubmitStatus.GATE_BLOCKED:
            typer.echo("It sounds like you're going through something really hard.")
            for resource in CRISIS_RESOURCES:
                typer.echo(f"  {resource['name']}: {resource['phone']}")
            answer = typer.prompt(
                "How are you doing? [okay/support/crisis]", default="support"
            ).strip().lower()
            try:
                resolution = GateResolution(answer)
            except ValueError:
                outcome = await ev.cancel(pending)
                continue
            outcome = await ev.resolve_gate(pending, resolution)
        else:
            detected = pending.temporal.effective_date.date().isoformat()
            use_detected = typer.confirm(f"Date this entry {detected} instead of today?")
            outcome = await ev.confirm_temporal(pending, use_detected)
    return outcome


async def _add(text: str, category: str, reply: Optional[str]) -> SubmitOutcome:
    async with EchoVault.from_env() as ev:
        outcome = await ev.submit(text, reply_context=reply, category=category)
        outcome = await _resolve(ev, outcome)
        await ev.wait_idle()
        return outcome


@app.command()
def add(
    text: str,
    category: str = typer.Option("personal", "--category", "-c"),
    reply: Optional[str] = typer.Option(None, "--reply", "-r", help="Quoted context being replied to"),
) -> None:
    """Add a journal entry and wait for its enrichment."""
    try:
        outcome = asyncio.run(_add(text, category, reply))
    except (EchoVaultError, ValueError) as e:
        _fail(str(e))
        return
    if outcome.status is SubmitStatus.DISCARDED:
        typer.echo("entry not saved")
        return
    typer.echo(outcome.entry_id)


async def _ask(question: str) -> str:
    async with EchoVault.from_env() as ev:
        answer = await ev.ask(question)
        return answer.text


@app.command()
def ask(question: str) -> None:
    """Ask a question about your journal."""
    try:
        typer.echo(asyncio.run(_ask(question)))
    except (EchoVaultError, ValueError) as e:
        _fail(str(e))


async def _maintain() -> tuple[int, int, int, int]:
    def progress(processed: int, total: int) -> None:
        typer.echo(f"retrofit {processed}/{total}")

    async with EchoVault.from_env(on_progress=progress) as ev:
        filled, retrofit = await ev.maintenance.run(ev.entries)
        return ev.maintenance.recovery.recovered, filled, retrofit.processed, retrofit.total


@app.command()
def maintain() -> None:
    """Recover stuck entries, backfill embeddings and retrofit the schema once."""
    try:
        recovered, filled, processed, total = asyncio.run(_maintain())
    except (EchoVaultError, ValueError) as e:
        _fail(str(e))
        return
    typer.echo(f"pending entries recovered: {recovered}")
    typer.echo(f"embeddings backfilled: {filled}")
    typer.echo(f"entries retrofitted: {processed}/{total}")


if __name__ == "__main__":
    app()
