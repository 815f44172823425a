"""
Call Decision Engine - CLI Entry Point

Command-line interface for classifying call transcripts and managing the
taxonomy.
"""

import asyncio
import json
import sys
from pathlib import Path

import click

from .core.config import get_config
from .core.exceptions import CallDecisionException, MalformedTranscriptError, TaxonomyLoadError
from .core.logging_config import get_logger, setup_logging
from .engine.decision_engine import DecisionEngine
from .jobs.batch import BatchClassifier, load_call_file
from .taxonomy.store import get_taxonomy_store, load_taxonomy


logger = get_logger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--log-file", type=str, help="Log file path")
@click.pass_context
def cli(ctx, verbose, log_file):
    """Call Decision Engine CLI.

    Classifies insurance customer-service calls into ticket incidents.
    """
    ctx.ensure_object(dict)

    config = get_config()
    log_level = "DEBUG" if verbose else config.engine.log_level
    setup_logging(log_level=log_level, log_file=log_file or config.engine.log_file)

    ctx.obj["verbose"] = verbose
    ctx.obj["log_file"] = log_file


def _build_engine() -> DecisionEngine:
    config = get_config()
    return DecisionEngine.from_config(config, taxonomy_store=get_taxonomy_store(config.engine.taxonomy_path))


def _dump(data, pretty: bool = True) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2 if pretty else None)


# ============================================================================
# CLASSIFICATION
# ============================================================================


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--call-id", type=str, help="Call id (default: from the file, else the file name)")
@click.option("--no-oracle", is_flag=True, help="Classify with rules only")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the decision to this file")
@click.option("--pretty/--compact", default=True, help="Indent the JSON output")
@click.option("--signals", is_flag=True, help="Include the detected signals in the output")
def classify(file, call_id, no_oracle, output, pretty, signals):
    """Classify one call transcript (JSON).

    FILE is either a list of turns or an object with a "transcript" list and
    an optional "call_id" / "conversation_id".

    Examples:
        python -m call_decision.main classify call.json
        python -m call_decision.main classify call.json --no-oracle -o decision.json
    """
    try:
        call = load_call_file(file, call_id=call_id)
        decision = _build_engine().classify_sync(call.raw_turns, call.call_id, use_oracle=False if no_oracle else None)
    except MalformedTranscriptError as e:
        click.echo(f"❌ Malformed transcript: {e}", err=True)
        sys.exit(1)
    except CallDecisionException as e:
        click.echo(f"❌ Classification failed: {e}", err=True)
        sys.exit(1)

    text = _dump(decision.to_dict(include_signals=signals), pretty)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        click.echo(f"✅ {decision.primary_incident.tipo} / {decision.primary_incident.motivo} -> {output}", err=True)
    else:
        click.echo(text)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--no-oracle", is_flag=True, help="Classify with rules only")
@click.option("--output-dir", type=click.Path(file_okay=False), help="Write one <call_id>.decision.json per call")
def batch(directory, no_oracle, output_dir):
    """Classify every *.json transcript in a directory concurrently.

    Example:
        python -m call_decision.main batch calls/ --output-dir decisions/
    """
    config = get_config()
    classifier = BatchClassifier(_build_engine(), max_concurrent=config.engine.max_concurrent_calls)

    calls = classifier.load_directory(directory)

    if not calls:
        click.echo(f"⚠️  No *.json files found in {directory}", err=True)
        sys.exit(0)

    results = asyncio.run(classifier.classify_all(calls, use_oracle=False if no_oracle else None))

    if output_dir:
        Path(output_dir).mkdir(parents=True, exist_ok=True)

    failures = 0
    for result in results:
        if result["success"]:
            click.echo(f"✅ {result['call_id']}: {result['message']}")
            if output_dir:
                target = Path(output_dir) / f"{result['call_id']}.decision.json"
                target.write_text(_dump(result["data"]) + "\n", encoding="utf-8")
        else:
            failures += 1
            click.echo(f"❌ {result['call_id']}: {result['message']}")

    click.echo(f"\n{len(results) - failures}/{len(results)} calls classified")
    sys.exit(1 if failures else 0)


# ============================================================================
# TAXONOMY
# ============================================================================


@cli.group()
def taxonomy():
    """Inspect and reload the incident taxonomy."""
    pass


@taxonomy.command("list")
@click.option("--tipo", type=str, help="Only entries of this incident type")
def taxonomy_list(tipo):
    """List taxonomy entries.

    Example:
        python -m call_decision.main taxonomy list --tipo "Solicitud duplicado póliza"
    """
    config = get_config()
    snapshot = get_taxonomy_store(config.engine.taxonomy_path).snapshot()
    entries = snapshot.by_tipo(tipo) if tipo else list(snapshot.entries())

    click.echo(f"\n📋 Taxonomy ({len(entries)} entries, source: {snapshot.source})")
    click.echo("=" * 80)
    for entry in entries:
        flags = []
        if entry.human_only:
            flags.append("human")
        if entry.requires_branch:
            flags.append("ramo")
        if entry.ai_exclusive:
            flags.append("IA")
        flag_text = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"  T{entry.priority_tier} {entry.tipo} / {entry.motivo}{flag_text}")
    click.echo("")


@taxonomy.command("validate")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def taxonomy_validate(file):
    """Check that a taxonomy YAML file loads.

    Example:
        python -m call_decision.main taxonomy validate taxonomy.yaml
    """
    try:
        snapshot = load_taxonomy(file)
    except TaxonomyLoadError as e:
        click.echo(f"❌ Invalid taxonomy: {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Taxonomy is valid ({len(snapshot)} entries)")


@taxonomy.command("reload")
@click.option("--path", type=click.Path(dir_okay=False), help="Load from this file instead")
def taxonomy_reload(path):
    """Reload the taxonomy snapshot (the current one is kept on error)."""
    config = get_config()
    store = get_taxonomy_store(config.engine.taxonomy_path)
    try:
        snapshot = store.reload(path)
    except TaxonomyLoadError as e:
        click.echo(f"❌ Reload failed, keeping current taxonomy: {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Taxonomy reloaded ({len(snapshot)} entries from {snapshot.source})")


# ============================================================================
# CONFIGURATION & SERVER
# ============================================================================


@cli.command("config-check")
@click.option("--ping", is_flag=True, help="Also send a minimal request to each configured oracle backend")
def config_check(ping):
    """Show and validate configuration.

    Example:
        python -m call_decision.main config-check --ping
    """
    cfg = get_config()

    click.echo("\n⚙️  Current Configuration")
    click.echo("=" * 80)
    click.echo("\n📊 Engine Settings (config.yaml):")
    click.echo(f"  Oracle: {'Enabled' if cfg.engine.use_oracle else 'Disabled'}")
    click.echo(f"  Oracle Timeout: {cfg.engine.oracle_timeout_seconds}s ({cfg.engine.oracle_max_retries} retries)")
    click.echo(f"  Timestamp Tolerance: {cfg.engine.timestamp_tolerance_seconds}s")
    click.echo(f"  Taxonomy: {cfg.engine.taxonomy_path or 'packaged default'}")
    click.echo(f"  Max Concurrent Calls: {cfg.engine.max_concurrent_calls}")
    click.echo(f"  Max Secondary Incidents: {cfg.engine.max_secondary_incidents}")

    click.echo("\n🔐 Credentials Status (.env):")
    click.echo(f"  Gemini API: {'Configured' if cfg.gemini.is_configured() else 'Not set'} ({cfg.gemini.model})")
    click.echo(f"  Claude API: {'Configured' if cfg.claude.is_configured() else 'Not set'} ({cfg.claude.model})")

    errors = cfg.validate()

    if ping:
        from .ai.oracle import CallOracle

        oracle = CallOracle.from_config(cfg)
        for name, client in (("Gemini", oracle.gemini_client), ("Claude", oracle.claude_client)):
            if client is None:
                continue
            try:
                client.test_connection()
                click.echo(f"   ✅ {name} API: Connected")
            except CallDecisionException as e:
                click.echo(f"   ❌ {name} API: Failed ({e})")
                errors.append(f"{name} API connection failed")

    if not errors:
        click.echo("\n✅ Configuration is valid\n")
        sys.exit(0)

    click.echo("\n❌ Configuration has errors:")
    for error in errors:
        click.echo(f"   • {error}")
    click.echo("")
    sys.exit(1)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Web server host")
@click.option("--port", default=8000, type=int, help="Web server port")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
@click.pass_context
def serve(ctx, host, port, reload):
    """Start the HTTP API.

    Example:
        python -m call_decision.main serve --port 8000
    """
    from .web.app import run_server

    click.echo(f"🌐 Starting API server on {host}:{port}")
    run_server(host=host, port=port, reload=reload, log_file=ctx.obj.get("log_file"))


if __name__ == "__main__":
    cli()
