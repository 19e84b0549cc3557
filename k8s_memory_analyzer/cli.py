# cli.py
import argparse
import logging
import sys

import urllib3
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from k8s_memory_analyzer import __version__
from k8s_memory_analyzer.api import analyze_data_file
from k8s_memory_analyzer.api import import_to_file
from k8s_memory_analyzer.config.settings import load_settings
from k8s_memory_analyzer.models.recommendation import AnalysisResults
from k8s_memory_analyzer.utils.conversions import convert_dt_to_epoch
from k8s_memory_analyzer.utils.logging import setup_logging

console = Console()


def _print_report(results: AnalysisResults) -> None:
    summary = Table(title="Analysis Summary", show_header=False, box=None)
    summary.add_column("Metric", style="cyan bold")
    summary.add_column("Value", style="green")
    summary.add_row("Total request size", f"{results.peak_total_request} MB")
    summary.add_row("Calibrated percentile", f"p{results.percentile}")
    summary.add_row(
        "Under-request risk",
        f"{results.risk:.2%} (tolerance [yellow]{results.risk_tolerance:.2%}[/])",
    )
    summary.add_row("Containers", str(results.num_containers))
    summary.add_row("Timestamps", str(results.num_timestamps))
    console.print(Panel(summary, expand=False, border_style="green"))

    table = Table(
        title="Recommended Memory Requests",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Namespace", style="cyan")
    table.add_column("Controller")
    table.add_column("Kind", style="dim")
    table.add_column("Container")
    table.add_column("Request", justify="right", style="green")
    for container_id, request in results.sorted_recommendations():
        table.add_row(
            container_id.namespace,
            container_id.controller_id,
            container_id.controller_type.value,
            container_id.container,
            f"{request}Mi",
        )
    console.print(table)


def _run_analyze(args, settings) -> None:
    risk_tolerance = (
        args.risk_tolerance
        if args.risk_tolerance is not None
        else settings.risk_tolerance
    )
    console.rule(f"[bold magenta]Analyzing {args.data}[/]")
    with console.status("[bold green]Calculating requests..."):
        results = analyze_data_file(args.data, risk_tolerance, settings=settings)
    _print_report(results)


def _run_import_prometheus(args, settings) -> None:
    settings = settings.with_overrides(step_seconds=args.step)
    if args.insecure:
        urllib3.disable_warnings()
        settings = settings.with_overrides(verify_ssl=False)
    url = args.url or settings.prometheus_url
    if not url:
        raise ValueError("A Prometheus URL is required (--url or prometheus_url in config)")

    start = convert_dt_to_epoch(args.start_date)
    end = convert_dt_to_epoch(args.end_date)
    console.rule(f"[bold magenta]Importing from {url}[/]")
    with console.status("[bold green]Fetching metrics..."):
        dataset = import_to_file(
            url=url,
            start=start,
            end=end,
            output_path=args.output,
            user=args.user,
            password=args.password,
            append=args.append,
            settings=settings,
        )
    console.print(
        f"[bold cyan]Saved {len(dataset.entity_histograms)} containers over "
        f"{len(dataset.aggregate_series)} timestamps to {args.output}[/]"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="k8s-memory-analyzer",
        description="Kubernetes memory requests from historical usage",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--config", type=str, help="YAML configuration file")
    subcommands = parser.add_subparsers(dest="command")

    import_parser = subcommands.add_parser(
        "import", help="Imports data for analysis"
    )
    sources = import_parser.add_subparsers(dest="source")
    prometheus = sources.add_parser("prometheus", help="Import from Prometheus")
    prometheus.add_argument(
        "--url",
        type=str,
        help="Prometheus API URL (e.g. http://prometheus.example.com/api/)",
    )
    prometheus.add_argument("-u", "--user", type=str, help="Basic Auth username")
    prometheus.add_argument("-p", "--password", type=str, help="Basic Auth password")
    prometheus.add_argument(
        "--start-date",
        type=str,
        required=True,
        help="Start date for analysis, in ISO8601 format (e.g. 2020-04-19T19:00:00Z)",
    )
    prometheus.add_argument(
        "--end-date",
        type=str,
        required=True,
        help="End date for analysis, in ISO8601 format (e.g. 2020-04-19T21:00:00Z)",
    )
    prometheus.add_argument(
        "-o",
        "--output",
        type=str,
        required=True,
        help="Directory where to save the data (local path or s3://bucket/path)",
    )
    prometheus.add_argument(
        "--step", type=int, help="Query resolution in seconds (default 15)"
    )
    prometheus.add_argument(
        "--append",
        action="store_true",
        help="Merge into the dataset already saved at --output",
    )
    prometheus.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS certificate verification",
    )

    analyze_parser = subcommands.add_parser(
        "analyze", help="Analyzes imported data and offers requests suggestions"
    )
    analyze_parser.add_argument(
        "-d", "--data", type=str, required=True, help="Directory with the imported data"
    )
    analyze_parser.add_argument(
        "-r",
        "--risk-tolerance",
        type=float,
        help="The amount of OOM risk you want to take. This is a value between 0 and 1, "
        "where 0 means you want to avoid OOM at all costs (which will set the requests "
        "to the highest observed value for each pod). Defaults to 0.05.",
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "password", None) and not getattr(args, "user", None):
        parser.error("-p/--password requires -u/--user")
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "import" and args.source == "prometheus":
        runner = _run_import_prometheus
    elif args.command == "analyze":
        runner = _run_analyze
    else:
        parser.print_help()
        sys.exit(1)

    try:
        settings = load_settings(args.config)
        runner(args, settings)
    except Exception as e:
        from rich.markup import escape

        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}", style="red")
        if not isinstance(e, ValueError):
            raise e
        sys.exit(1)


if __name__ == "__main__":
    main()
