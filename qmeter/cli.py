from __future__ import annotations

import logging
import time
from dataclasses import asdict

import typer
from rich.console import Console, Group
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

import qmeter.core.user_config as user_config
from qmeter.core.audio import default_input_device_index, list_input_devices
from qmeter.core.classifier import NoiseCategory, ThresholdSet, category_label, classify
from qmeter.core.config import Config
from qmeter.core.errors import AcquisitionError
from qmeter.core.estimator import LevelEstimator
from qmeter.core.sampler import SignalSampler
from qmeter.core.scheduler import CooperativeScheduler
from qmeter.core.session import SessionController, SessionSnapshot, log_diagnostics
from qmeter.core.smoothing import SmoothingFilter
from qmeter.core.timer import CountdownTimer

app = typer.Typer(help="QuietMeter: classroom noise meter.")
console = Console()

# Config subcommands (open/show/init user configuration)
config_app = typer.Typer(help="Config utilities (open/show/init user configuration)")
app.add_typer(config_app, name="config")

CATEGORY_STYLES: dict[NoiseCategory, str] = {
    NoiseCategory.SILENT: "grey50",
    NoiseCategory.QUIET: "green",
    NoiseCategory.MODERATE: "yellow",
    NoiseCategory.LOUD: "dark_orange",
    NoiseCategory.EXCESSIVE: "bold red",
}


def _load_config(log_level: str) -> Config:
    """Load the effective configuration; exit with a message when it is invalid."""
    try:
        return Config.load(log_level=log_level)
    except ValueError as e:
        logging.error("Invalid configuration: %s", e)
        typer.secho(f"Error: invalid configuration: {e}", fg=typer.colors.RED)
        typer.secho(
            f"Fix or remove {user_config.get_user_config_path()} and try again.",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@config_app.command("open")
def config_open() -> None:
    """
    Open the user configuration directory in the platform's file manager.
    """
    path = user_config.get_user_config_dir()
    if not path.exists():
        console.print(f"[yellow]User config directory does not exist:[/yellow] {path}")
        console.print("Run `qmeter config init` to create it.")
        return
    try:
        typer.launch(str(path))
        console.print(f"Opened config directory: {path}")
    except Exception as e:
        console.print(f"[red]Failed to open config directory with system handler:[/red] {e}")
        console.print(f"Please open it manually: {path}")


@config_app.command("show")
def config_show(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level."),
) -> None:
    """
    Display the effective configuration.
    """
    cfg = _load_config(log_level)
    path = cfg.user_config_file
    console.print("[bold underline]QuietMeter - Configuration (effective)[/bold underline]")
    console.print(f"[cyan]User config file:[/cyan] {path} (exists={path.exists()})")
    console.print()
    for title, section in (
        ("defaults", asdict(cfg.defaults)),
        ("audio", asdict(cfg.audio)),
        ("estimator", asdict(cfg.estimator)),
        ("smoothing", asdict(cfg.smoothing)),
        ("thresholds", asdict(cfg.thresholds)),
    ):
        console.print(f"[bold]{title}[/bold]")
        for key, value in section.items():
            console.print(f"  {key}: {value}")


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing file"),
) -> None:
    """
    Write an example config.toml. Does not overwrite an existing file unless --force is given.
    """
    path = user_config.init_user_config(force=force)
    console.print(f"Ensured user config: {path}")


@app.command()
def devices() -> None:
    """
    List audio input devices (the default one is marked with *).
    """
    try:
        entries = list_input_devices()
        default_idx = default_input_device_index()
    except AcquisitionError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    table = Table(title="Input devices")
    table.add_column("")
    table.add_column("Index", justify="right")
    table.add_column("Name")
    table.add_column("Channels", justify="right")
    table.add_column("Rate (Hz)", justify="right")
    for dev in entries:
        table.add_row(
            "*" if dev["index"] == default_idx else "",
            str(dev["index"]),
            str(dev["name"]),
            str(dev["max_input_channels"]),
            f"{dev['default_samplerate'] or 0:.0f}",
        )
    console.print(table)


@app.command()
def gui(
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """
    Launch the noise monitor window.
    """
    cfg = _load_config(log_level)
    from qmeter.ui.qt_app import run_gui

    run_gui(cfg=cfg)


def render_meter(
    snap: SessionSnapshot, thresholds: ThresholdSet, timer: CountdownTimer | None = None
) -> Panel:
    """Rich renderable for the console meter."""
    category = classify(snap.level, thresholds)
    style = CATEGORY_STYLES[category]
    headline = Text.assemble(
        (f"{category_label(category)} ", style), (f"{round(snap.level):>3d}", "bold")
    )
    bar = ProgressBar(total=100, completed=snap.level, complete_style=style, width=50)
    parts: list = [headline, bar]
    status = "listening" if snap.listening else f"not listening ({snap.state.value})"
    parts.append(Text(f"{status} | permission: {snap.permission_state.value}", style="dim"))
    if timer is not None:
        parts.append(Text(f"Quiet timer {timer.format()}", style="cyan"))
    return Panel(Group(*parts), title="QuietMeter", expand=False)


@app.command("console")
def console_meter(
    minutes: int | None = typer.Option(
        None, "--minutes", "-m", help="Also run a quiet-time countdown of this many minutes."
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level."),
) -> None:
    """
    Show the live noise meter in the terminal. Press Ctrl-C to stop.
    """
    from rich.live import Live

    cfg = _load_config(log_level)
    scheduler = CooperativeScheduler()
    controller = SessionController(
        sampler=SignalSampler(cfg.audio),
        scheduler=scheduler,
        estimator=LevelEstimator(cfg.estimator),
        smoothing=SmoothingFilter(cfg.smoothing),
        diagnostics=log_diagnostics,
    )
    timer = CountdownTimer(minutes) if minutes else None
    frame_interval = 1.0 / cfg.defaults.fps

    with controller:
        controller.start()
        if not controller.listening:
            error = controller.last_error
            message = error.user_message if error else "Could not start listening."
            typer.secho(f"Error: {message}", fg=typer.colors.RED)
            if error is not None:
                logging.debug("Acquisition failure detail: %s", error.detail)
            raise typer.Exit(code=1)

        if timer is not None:
            timer.start()
        next_second = time.monotonic() + 1.0
        try:
            with Live(
                render_meter(controller.snapshot(), cfg.thresholds, timer),
                console=console,
                refresh_per_second=min(cfg.defaults.fps, 30),
            ) as live:
                while controller.listening:
                    scheduler.run_pending()
                    if timer is not None and time.monotonic() >= next_second:
                        next_second += 1.0
                        if timer.tick():
                            live.console.bell()
                            live.console.print("[bold cyan]Timer complete![/bold cyan]")
                    live.update(render_meter(controller.snapshot(), cfg.thresholds, timer))
                    time.sleep(frame_interval)
        except KeyboardInterrupt:
            pass
    console.print("Monitoring stopped.")


if __name__ == "__main__":
    app()
