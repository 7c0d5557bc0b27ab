from pathlib import Path

from _pytest.monkeypatch import MonkeyPatch
import pytest

pytest_plugins = [
    "tests._plugins.pytest_ruthless",
]

# Variables that change how q resolves config or providers
_Q_ENV_VARS = (
    "Q_PROVIDER",
    "Q_MODEL",
    "Q_COPY",
    "OPENAI_API_KEY",
    "GITHUB_TOKEN",
    "MCP_TOKEN",
    "TERM_PROGRAM",
    "WT_SESSION",
)


@pytest.fixture(scope="session", autouse=True)
def _session_env(tmp_path_factory: pytest.TempPathFactory) -> None:
    """
    Session-level hermetic env that does not depend on the function-scoped
    `monkeypatch` fixture (avoids ScopeMismatch).
    """
    home = tmp_path_factory.mktemp("home")
    mp = MonkeyPatch()
    mp.setenv("HOME", str(home))
    try:
        yield
    finally:
        mp.undo()


@pytest.fixture(autouse=True)
def hermetic_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Autouse: each test runs in its own tmp cwd, config lookups stay inside tmp,
    and no ambient Q_* or API key variables leak in.
    """
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / ".config"))
    for name in _Q_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def write_config(hermetic_env: Path):
    """Write TOML into the user config location and return its path."""

    def _write(text: str, path: Path | None = None) -> Path:
        target = path or hermetic_env / ".config" / "q" / "config.toml"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)
        return target

    return _write
