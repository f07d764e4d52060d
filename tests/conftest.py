"""
Shared test fixtures and configuration.

Every test runs against a fake system root under ``tmp_path`` and a
MockCommandRunner; nothing touches the real machine.
"""

import hashlib
from pathlib import Path

import pytest

from hwfix.adapters.mock import MockCommandRunner
from hwfix.core.config.loader import RetrySettings, Settings
from hwfix.core.use_cases.orchestrate import Orchestrator

KERNEL = "6.8.0-test"

UBUNTU_OS_RELEASE = 'ID=ubuntu\nID_LIKE=debian\nVERSION_ID="24.04"\n'


def write(root: Path, system_path: str, content: str = "") -> Path:
    """Create ``system_path`` under ``root`` with ``content``."""
    target = root / system_path.lstrip("/")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    return target


def tree_hashes(root: Path) -> dict[str, str]:
    """Relative path -> sha256 for every file below ``root``."""
    return {
        str(p.relative_to(root)): hashlib.sha256(p.read_bytes()).hexdigest()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def system_root(tmp_path: Path) -> Path:
    """A minimal Ubuntu-like system tree."""
    root = tmp_path / "root"
    write(root, "/etc/os-release", UBUNTU_OS_RELEASE)
    write(root, "/proc/sys/kernel/osrelease", KERNEL + "\n")
    write(root, "/proc/modules", "snd_hda_intel 61440 3 - Live 0x0\n")
    write(root, "/sys/class/dmi/id/sys_vendor", "SAMSUNG ELECTRONICS CO., LTD.\n")
    write(root, "/sys/class/dmi/id/product_name", "960XGL\n")
    (root / "etc/modprobe.d").mkdir(parents=True)
    return root


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def settings(system_root: Path, state_dir: Path) -> Settings:
    return Settings(
        state_dir=state_dir,
        root=system_root,
        retry=RetrySettings(max_attempts=3, base_delay=0.0, max_delay=0.0),
        service_wait_timeout=0.0,
        poll_interval=0.0,
    )


@pytest.fixture
def runner() -> MockCommandRunner:
    return MockCommandRunner()


@pytest.fixture
def orchestrator(settings: Settings, runner: MockCommandRunner) -> Orchestrator:
    return Orchestrator(settings, runner=runner, sleep=lambda _: None)


@pytest.fixture
def ctx(orchestrator: Orchestrator):
    """A RunContext for a fix named ``test``."""
    return orchestrator.build_context("test", "run-1")


@pytest.fixture
def put(system_root: Path):
    """``put("/etc/foo", "text")`` writes a file into the fake root."""
    def _put(system_path: str, content: str = "") -> Path:
        return write(system_root, system_path, content)
    return _put


@pytest.fixture
def hash_tree():
    return tree_hashes
