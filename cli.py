import argparse
import asyncio
import random
import sys

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from feedcore.config import load_settings, save_config
from feedcore.content_cache import ContentCache, DurableTier, MemoryTier
from feedcore.experiments import DEFAULT_VARIANTS
from feedcore.logging_config import configure_logging
from feedcore.scoring import calculate_quality_score_with_variant
from feedcore.service import FeedService
from feedcore.storage import JsonFileStore, MemoryStore

console = Console()


class SimClock:
    """Manually advanced clock so simulations are reproducible."""

    def __init__(self, start: float = 1_767_225_600.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def run_simulation(
    users: int, interactions: int, seed: int, like_bias: float = 0.6
) -> FeedService:
    rng = random.Random(seed)
    clock = SimClock()
    cache = ContentCache(
        memory=MemoryTier(clock=clock),
        durable=DurableTier(MemoryStore(clock), clock=clock),
        rng=random.Random(seed),
        clock=clock,
    )
    service = FeedService(cache=cache, clock=clock, rng=random.Random(seed))

    interests = ["ai", "programming", "health", "finance", "learning", "travel"]
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("[cyan]Simulating users...", total=users)
        for n in range(users):
            user_id = f"sim_user_{n}"
            service.update_preferences(user_id, rng.sample(interests, 2))
            service.events.start_session(user_id)
            result = await service.request_generation(user_id, count=3)
            feed = [c["id"] for c in result["contents"]]
            for _ in range(interactions):
                content_id = rng.choice(feed)
                service.record_interaction(user_id, content_id, "view")
                action = "like" if rng.random() < like_bias else "dislike"
                dwell = rng.choice([None, 1500, 4000, 8000])
                service.record_interaction(user_id, content_id, action, dwell_time_ms=dwell)
                clock.advance(rng.uniform(5, 120))
            progress.advance(task)
    return service


def print_simulation(service: FeedService) -> None:
    stats = service.events.get_ab_test_stats()
    assignments = service.assignor.get_stats()

    table = Table(title="Variant results")
    for col in ("Variant", "Users", "Views", "Likes", "Dislikes", "Conversion %", "Satisfaction %"):
        table.add_column(col, justify="right" if col != "Variant" else "left")
    for variant, row in stats["variants"].items():
        table.add_row(
            variant,
            str(assignments["variant_distribution"].get(variant, 0)),
            str(row["content_views"]),
            str(row["likes"]),
            str(row["dislikes"]),
            row["conversion_rate"],
            row["satisfaction_rate"],
        )
    console.print(table)
    console.print(
        f"[dim]{stats['overall']['total_events']} events, "
        f"{assignments['total_interactions']} interactions, "
        f"{assignments['avg_interactions_per_user']} per user[/]"
    )


def cmd_simulate(args: argparse.Namespace) -> int:
    service = asyncio.run(run_simulation(args.users, args.interactions, args.seed))
    print_simulation(service)
    return 0


def cmd_score(args: argparse.Namespace) -> int:
    configs = {c.variant: c for c in DEFAULT_VARIANTS}
    config = configs[args.variant]
    result = calculate_quality_score_with_variant(
        args.action,
        args.current,
        args.age,
        args.positive_rate,
        args.recent_likes,
        config,
        args.dwell,
    )
    console.print(
        f"[bold]{args.current}[/] -> [bold green]{result.new_score}[/] "
        f"(variant {config.variant}, weight {result.weight:.2f}, delta {result.delta:+.2f})"
    )
    console.print(f"   [dim italic]{result.reason}[/]")
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    settings = load_settings()
    durable = DurableTier(
        JsonFileStore(args.cache_dir or settings.durable_cache_dir),
        ttl=settings.durable_cache_ttl,
    )
    removed = durable.cleanup()
    console.print(f"[green]Removed {removed} expired cache entries.[/]")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("feedcore.main:app", host=args.host, port=args.port)
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    save_config(args.key, args.value)
    console.print(f"[green]Saved {args.key}.[/]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Feed scoring and experiment tools")
    parser.add_argument("--log-level", default=None, help="Logging level (default: from config)")
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Run a seeded experiment simulation")
    sim.add_argument("--users", type=int, default=40, help="Simulated users (default: 40)")
    sim.add_argument(
        "--interactions", type=int, default=10, help="Interactions per user (default: 10)"
    )
    sim.add_argument("--seed", type=int, default=7, help="Random seed (default: 7)")
    sim.set_defaults(func=cmd_simulate)

    score = sub.add_parser("score", help="Score a single interaction")
    score.add_argument("action", choices=["like", "dislike"])
    score.add_argument("--variant", choices=[c.variant for c in DEFAULT_VARIANTS], default="A")
    score.add_argument("--current", type=float, default=50, help="Current score (default: 50)")
    score.add_argument("--age", type=float, default=0, help="User age in days")
    score.add_argument("--positive-rate", type=float, default=0.5)
    score.add_argument("--recent-likes", type=int, default=0)
    score.add_argument("--dwell", type=float, default=None, help="Dwell time in ms")
    score.set_defaults(func=cmd_score)

    cleanup = sub.add_parser("cleanup", help="Sweep expired durable cache entries")
    cleanup.add_argument("--cache-dir", default=None)
    cleanup.set_defaults(func=cmd_cleanup)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=cmd_serve)

    config = sub.add_parser("config", help="Persist a setting to the config file")
    config.add_argument("key")
    config.add_argument("value")
    config.set_defaults(func=cmd_config)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or load_settings().log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
