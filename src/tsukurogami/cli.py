from pathlib import Path
from typing import Any, Dict, Optional

import typer
import uvicorn

from .config import BridgeConfig, ConfigError, load_config
from .errors import BridgeError
from .integrations.xcode import BotRegistryClient
from .matching import describe_role
from .server import create_app

app = typer.Typer(add_completion=False)

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    help="YAML or JSON config file; flags given alongside it take precedence",
)


def _require_config(
    ctx: typer.Context,
    config_path: Optional[Path],
    overrides: Dict[str, Dict[str, Any]],
) -> BridgeConfig:
    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    missing = config.missing_required()
    if missing:
        typer.echo(f"Missing required settings: {', '.join(missing)}", err=True)
        typer.echo(ctx.get_help(), err=True)
        raise typer.Exit(code=2)
    return config


@app.command()
def serve(
    ctx: typer.Context,
    config_path: Optional[Path] = CONFIG_OPTION,
    xcode_url: Optional[str] = typer.Option(
        None, "--xcode-url", help="The url of your xcode server"
    ),
    bitbucket_url: Optional[str] = typer.Option(
        None, "--bitbucket-url", help="The url of your bitbucket server"
    ),
    xcode_credentials: Optional[str] = typer.Option(
        None, "--xcode-credentials", help="username:password for the xcode server"
    ),
    bitbucket_credentials: Optional[str] = typer.Option(
        None,
        "--bitbucket-credentials",
        help="username:password for the bitbucket server",
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on"),
    skip_verify: Optional[bool] = typer.Option(
        None,
        "--skip-verify/--verify",
        help="Skip certificate verification on both servers (default: skip)",
    ),
    trunk_branch: Optional[str] = typer.Option(
        None, "--trunk-branch", help="Branch merged into pull requests before building"
    ),
    template_pattern: Optional[str] = typer.Option(
        None,
        "--template-pattern",
        help="Treat bots named like this as templates, e.g. '{repo}-template'",
    ),
    callback_host: Optional[str] = typer.Option(
        None,
        "--callback-host",
        help="Address xcode bots use to reach this server (default: auto-detect)",
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Also write logs to this rotating file"
    ),
):
    """Listen for pull request events and relay integration results."""
    config = _require_config(
        ctx,
        config_path,
        {
            "xcode": {
                "url": xcode_url,
                "credentials": xcode_credentials,
                "trunk_branch": trunk_branch,
                "template_name_pattern": template_pattern,
            },
            "bitbucket": {
                "url": bitbucket_url,
                "credentials": bitbucket_credentials,
            },
            "server": {"host": host, "port": port, "callback_host": callback_host},
            "tls": {"skip_verify": skip_verify},
            "log": {"path": str(log_file) if log_file else None},
        },
    )
    app_instance = create_app(config)
    typer.echo(f"Serving on http://{config.server_host}:{config.server_port}")
    uvicorn.run(
        app_instance,
        host=config.server_host,
        port=config.server_port,
        log_level="warning",
    )


@app.command()
def bots(
    ctx: typer.Context,
    config_path: Optional[Path] = CONFIG_OPTION,
    xcode_url: Optional[str] = typer.Option(None, "--xcode-url"),
    xcode_credentials: Optional[str] = typer.Option(None, "--xcode-credentials"),
    skip_verify: Optional[bool] = typer.Option(None, "--skip-verify/--verify"),
):
    """List the bots on the xcode server and the role tsukurogami sees for each."""
    try:
        config = load_config(
            config_path,
            overrides={
                "xcode": {"url": xcode_url, "credentials": xcode_credentials},
                "tls": {"skip_verify": skip_verify},
            },
        )
    except ConfigError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    if not config.xcode_url or not config.xcode_credentials:
        typer.echo("Missing required settings: xcode.url, xcode.credentials", err=True)
        typer.echo(ctx.get_help(), err=True)
        raise typer.Exit(code=2)

    with BotRegistryClient(
        config.xcode_url, config.xcode_credentials, verify=config.verify_tls
    ) as registry:
        try:
            listed = registry.list_bots()
        except BridgeError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=1)
    for bot in listed:
        typer.echo(f"{bot.id}\t{bot.name}\t{describe_role(bot)}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
