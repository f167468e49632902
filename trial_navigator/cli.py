"""Terminal front end for the trial navigator."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any

import typer
from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from trial_navigator.agents.orchestrator import TrialAgent, create_agent
from trial_navigator.agents.projection import format_trials_for_display
from trial_navigator.config import settings
from trial_navigator.errors import MissingCredentialsError, ModelEndpointError, SourceError
from trial_navigator.models.patient import PatientProfile
from trial_navigator.session import SessionManager
from trial_navigator.sources.scri import ScriClient

logger = logging.getLogger(__name__)

app = typer.Typer(help="Find SCRI clinical trials by talking to an agent.")

HELP_TEXT = """\
Commands:
  /reset                 Start a new conversation
  /profile key=value ... Set patient profile fields (e.g. /profile zipCode=37203 age=54)
  /profile               Show the current profile
  /help                  Show this help
  /quit                  Exit

Examples:
  "What breast cancer trials are available?"
  "Tell me about trial BRE 451"
  "What cancer types can I search for?"
"""

_LIST_FIELDS = {
    name for name, field in PatientProfile.model_fields.items() if field.default_factory is list
}


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else settings.log_level.upper()
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def parse_profile_args(current: PatientProfile | None, pairs: list[str]) -> PatientProfile:
    """Apply ``key=value`` pairs on top of the current profile and return a new snapshot.

    Keys may be camelCase or snake_case; list fields take comma-separated values.
    """
    data: dict[str, Any] = current.model_dump() if current else {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected key=value, got {pair!r}")
        name = to_snake(key.strip())
        if name not in PatientProfile.model_fields:
            raise ValueError(f"Unknown profile field: {key}")
        value = value.strip()
        if name in _LIST_FIELDS:
            data[name] = [v.strip() for v in value.split(",") if v.strip()]
        else:
            data[name] = value or None
    return PatientProfile.model_validate(data)


def _print_profile(profile: PatientProfile | None) -> None:
    lines = profile.context_lines() if profile else []
    if not lines:
        typer.secho("No profile set.", fg=typer.colors.YELLOW)
        return
    typer.echo("\n".join(lines))


async def _repl(agent: TrialAgent, session_mgr: SessionManager | None, session_id: str | None) -> None:
    typer.secho("SCRI Clinical Trial Agent", fg=typer.colors.CYAN, bold=True)
    typer.secho(HELP_TEXT, dim=True)

    while True:
        try:
            line = await asyncio.to_thread(typer.prompt, "You", prompt_suffix=": ")
        except typer.Abort:
            break
        line = line.strip()
        if not line:
            continue

        if line.startswith("/"):
            command, *rest = line.split()
            command = command.lower()
            if command in ("/quit", "/exit", "/q"):
                break
            if command in ("/reset", "/clear"):
                agent.reset_conversation()
                typer.secho("Conversation reset.", fg=typer.colors.YELLOW)
            elif command in ("/help", "/?"):
                typer.echo(HELP_TEXT)
            elif command == "/profile":
                if not rest:
                    _print_profile(agent.profile)
                    continue
                try:
                    profile = parse_profile_args(agent.profile, rest)
                except (ValueError, ValidationError) as exc:
                    typer.secho(f"Invalid profile: {exc}", fg=typer.colors.RED)
                    continue
                agent.set_patient_profile(profile)
                if session_mgr is not None and session_id is not None:
                    session_mgr.save_profile(session_id, profile)
                typer.secho("Profile updated.", fg=typer.colors.YELLOW)
                _print_profile(profile)
            else:
                typer.secho(f"Unknown command: {command}", fg=typer.colors.RED)
            continue

        typer.secho("Thinking...", dim=True)
        try:
            reply = await agent.chat(line)
        except ModelEndpointError as exc:
            typer.secho(f"Error: {exc}", fg=typer.colors.RED)
            continue

        typer.secho("\nAgent: ", fg=typer.colors.CYAN, nl=False)
        typer.echo(reply.text)
        if reply.trials:
            typer.echo("")
            typer.echo(format_trials_for_display(reply.trials))
        if reply.incomplete:
            typer.secho("(The answer may be incomplete.)", fg=typer.colors.YELLOW)
        typer.echo("")

    typer.secho("Goodbye!", fg=typer.colors.CYAN)


@app.command()
def chat(
    zip_code: str = typer.Option(None, "--zip", help="Patient ZIP code."),
    cancer_type: str = typer.Option(None, "--cancer-type", help="Cancer type, e.g. Breast."),
    session: str = typer.Option(None, "--session", help="Session id to resume or create."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    """Start an interactive conversation."""
    _configure_logging(verbose)

    session_mgr = None
    if session:
        session_mgr = SessionManager()
        session_mgr.create_session(session)

    try:
        agent = create_agent(session, session_mgr)
    except MissingCredentialsError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if zip_code or cancer_type:
        profile = agent.profile or PatientProfile()
        profile = profile.model_copy(
            update={k: v for k, v in {"zip_code": zip_code, "cancer_type": cancer_type}.items() if v}
        )
        agent.set_patient_profile(profile)
        if session_mgr is not None:
            session_mgr.save_profile(session, profile)

    asyncio.run(_repl(agent, session_mgr, session))


@app.command("cancer-types")
def cancer_types():
    """List the cancer types that can be searched."""
    _configure_logging(False)
    try:
        types = asyncio.run(ScriClient().list_cancer_types())
    except SourceError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    for name in types:
        typer.echo(name)


@app.command()
def coverage(cancer_type: str = typer.Argument(..., help="Cancer type to scan.")):
    """Show which states have trial sites for a cancer type."""
    _configure_logging(False)
    try:
        trials = asyncio.run(ScriClient().search_all_trials(cancer_type))
    except SourceError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    states: Counter[str] = Counter()
    for trial in trials:
        for state in {site.state for site in trial.locations if site.state}:
            states[state] += 1

    typer.echo(f"{len(trials)} {cancer_type} trials across {len(states)} states")
    for state, count in sorted(states.items()):
        typer.echo(f"  {state}: {count} trial(s)")


if __name__ == "__main__":
    app()
