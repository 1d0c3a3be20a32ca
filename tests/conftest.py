from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from bevyship.core.invoker import InvocationResult  # noqa: E402

BUNDLE_DIR = Path("target") / "bevy_web" / "web" / "my_favorite_nightmare"


@dataclass(frozen=True)
class Call:
    command: str
    args: list[str]
    working_directory: Path
    env: dict[str, str]

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


class FakeInvoker:
    """Scripted stand-in for ToolInvoker, keyed by executable name.

    A script entry is an InvocationResult, an exception to raise, or a callable taking
    the working directory and returning either of those.
    """

    def __init__(self, script: Mapping[str, Any] | None = None):
        self.script = dict(script or {})
        self.calls: list[Call] = []

    def invoke(
        self,
        command: str,
        args: Sequence[str],
        working_directory: Path,
        env: Mapping[str, str],
    ) -> InvocationResult:
        self.calls.append(Call(command, list(args), Path(working_directory), dict(env)))
        action = self.script.get(command, InvocationResult(exit_code=0))
        if callable(action) and not isinstance(action, InvocationResult):
            action = action(Path(working_directory))
        if isinstance(action, BaseException):
            raise action
        return action


def produces_bundle(stdout: str = "bundle ready\n") -> Callable[[Path], InvocationResult]:
    def _build(working_directory: Path) -> InvocationResult:
        bundle = working_directory / BUNDLE_DIR
        bundle.mkdir(parents=True, exist_ok=True)
        (bundle / "index.html").write_text("<html></html>\n", encoding="utf-8")
        (bundle / "game_bg.wasm").write_bytes(b"\0asm\x01\0\0\0")
        return InvocationResult(exit_code=0, stdout=stdout)

    return _build


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def game_project(tmp_path: Path) -> Path:
    project_dir = tmp_path / "game"
    (project_dir / "src").mkdir(parents=True)
    (project_dir / "Cargo.toml").write_text(
        """
[package]
name = "my_favorite_nightmare"
version = "0.1.0"
edition = "2024"
""".strip()
        + "\n",
        encoding="utf-8",
    )
    (project_dir / "src" / "main.rs").write_text("fn main() {}\n", encoding="utf-8")
    return project_dir


@pytest.fixture
def built_bundle(game_project: Path) -> Path:
    produces_bundle()(game_project)
    return game_project / BUNDLE_DIR


@pytest.fixture
def base_env() -> dict[str, str]:
    return {"PATH": "/usr/bin:/bin", "HOME": "/tmp"}


@pytest.fixture
def deploy_env(base_env: dict[str, str]) -> dict[str, str]:
    return {**base_env, "ITCH_IO_PROJECT_ID": "abc123"}
