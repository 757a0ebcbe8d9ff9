"""CLI entry point for baton-llm diagnostics."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click

from baton_llm.adapter import ProviderAdapter
from baton_llm.config import AdapterConfig, provider_from_env
from baton_llm.errors import ConfigurationError, SDKError
from baton_llm.handoff import HandoffDetector
from baton_llm.normalize import FormatNormalizer, canonicalize
from baton_llm.stream import decode_all
from baton_llm.types import StreamEvent, StreamEventType


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Baton: provider adaptation and handoff diagnostics."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@main.command()
@click.argument("text")
@click.option("--agent", "-a", "agents", multiple=True, help="Valid handoff target (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Print the detection as JSON")
def detect(text: str, agents: tuple[str, ...], as_json: bool):
    """Detect a handoff directive in TEXT."""
    roster = list(agents)
    if not roster:
        try:
            roster = list(AdapterConfig.from_env().roster)
        except ConfigurationError as e:
            click.echo(f"Configuration error: {e}", err=True)
            sys.exit(1)
    if not roster:
        click.echo("No agents given. Use --agent or set BATON_AGENTS.", err=True)
        sys.exit(1)

    detection = HandoffDetector(roster).detect(text)
    if as_json:
        click.echo(json.dumps({
            "target": detection.target,
            "confidence": detection.confidence,
            "method": detection.method,
            "pattern_index": detection.pattern_index,
            "pattern_style": detection.pattern_style,
        }))
        return

    if detection.target is None:
        click.echo("No handoff detected")
        return
    click.echo(f"Handoff to {detection.target} (confidence {detection.confidence:.2f})")
    click.echo(f"Method: {detection.method}, pattern {detection.pattern_index} ({detection.pattern_style})")


def _event_dict(event: StreamEvent) -> dict:
    result: dict = {"type": event.type.value}
    if event.output_index is not None:
        result["output_index"] = event.output_index
    if event.sequence_number is not None:
        result["sequence_number"] = event.sequence_number
    if event.output_item is not None:
        result["item"] = event.output_item.to_dict()
    if event.final_response is not None:
        result["response"] = event.final_response.to_dict()
    if event.type == StreamEventType.UNKNOWN:
        result["raw"] = event.raw
    return result


@main.command("decode-sse")
@click.argument("ssefile", type=click.Path(exists=True))
def decode_sse(ssefile: str):
    """Decode a captured SSE stream into one JSON line per event."""
    with open(ssefile, "rb") as f:
        data = f.read()

    for event in decode_all([data]):
        click.echo(json.dumps(_event_dict(event)))


@main.command()
@click.argument("jsonfile", type=click.Path(exists=True))
@click.option(
    "--to",
    "target",
    type=click.Choice(["canonical", "chat", "responses"]),
    default="canonical",
    help="Output shape",
)
def normalize(jsonfile: str, target: str):
    """Normalize a saved completion reply (either wire shape)."""
    with open(jsonfile) as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as e:
            click.echo(f"Invalid JSON: {e}", err=True)
            sys.exit(1)

    payload = canonicalize(payload)
    if not isinstance(payload, dict):
        click.echo("Expected a JSON object", err=True)
        sys.exit(1)

    normalizer = FormatNormalizer()
    resp = normalizer.normalize(payload)
    if target == "chat":
        output = normalizer.to_chat_completion(resp)
    elif target == "responses":
        output = normalizer.to_responses(resp)
    else:
        output = resp.to_dict()
    click.echo(json.dumps(output, indent=2))


async def _report(live_probe: bool) -> dict:
    config = AdapterConfig.from_env()
    config.live_function_probe = live_probe
    provider = provider_from_env()
    async with ProviderAdapter(provider, config=config) as adapter:
        report = await adapter.capability_report()
    return report.to_dict()


@main.command()
@click.option("--no-probe", is_flag=True, help="Skip the live function-calling probe")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def report(no_probe: bool, as_json: bool):
    """Report the capabilities of the environment-configured provider."""
    try:
        data = asyncio.run(_report(not no_probe))
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    except SDKError as e:
        click.echo(f"Provider error: {e}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(f"Provider: {data['provider']}")
    for cap in data["capabilities"]:
        mark = "yes" if cap["supported"] else "no"
        click.echo(f"  {cap['name']:<22} {mark}")
    click.echo(f"Handoff support: {data['handoff_support']}")
    click.echo(f"Optimal usage: {data['optimal_usage']}")
    for rec in data["recommendations"]:
        click.echo(f"  [{rec['level']}] {rec['message']}")


if __name__ == "__main__":
    main()
