import typer
import rich_click  # noqa: F401
from .run import dev, wasm_build, wasm_check, wasm_deploy, wasm_release
from .stages import stages
from bevyship import __version__

app = typer.Typer(
    name="bevyship",
    help="Build, check and publish the game for desktop and the web",
    no_args_is_help=True,
)

@app.command("version")
def version() -> None:
    """Show the bevyship version."""
    typer.echo(f"bevyship v{__version__}")

app.command("dev")(dev)
app.command("wasm-build")(wasm_build)
app.command("wasm-check")(wasm_check)
app.command("wasm-deploy")(wasm_deploy)
app.command("wasm-release")(wasm_release)
app.command("stages")(stages)
