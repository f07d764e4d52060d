"""
Reusable step kinds.

Fix modules compose these into their step lists; each kind maps one
recurring install-script pattern (write a config file, load modules,
install packages, enable a service, build a DKMS module, ...) onto
the Step contract.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from hwfix.core.context import RunContext
from hwfix.core.errors import PermanentFailure, TransientFailure, Unsupported
from hwfix.core.models.package import DistroFamily
from hwfix.core.models.service import ServiceHandle
from hwfix.core.models.step import Step

logger = logging.getLogger(__name__)

PathSpec = str | Callable[[RunContext], str | None]
ContentSpec = str | Callable[[RunContext], str]


def write_text_atomic(path: Path, content: str, mode: int = 0o644) -> None:
    """Write via temp file + rename so readers never see half a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp, mode)
        Path(tmp).replace(path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def _restore_or_remove(ctx: RunContext, target: Path) -> None:
    """Put back the pre-apply content, or remove what apply created."""
    if ctx.backups.restore_path(target):
        return
    if target.is_dir() and not target.is_symlink():
        shutil.rmtree(target)
    else:
        target.unlink(missing_ok=True)


# ── Files ───────────────────────────────────────────────────────


class WriteFileStep(Step):
    """Ensure a file holds exactly ``content``."""

    def __init__(
        self,
        id: str,
        path: PathSpec,
        content: ContentSpec,
        mode: int = 0o644,
        **kwargs,
    ):
        super().__init__(id, **kwargs)
        self._path = path
        self._content = content
        self.mode = mode
        if not self.description:
            self.description = f"Write {path}" if isinstance(path, str) else "Write file"

    def system_path(self, ctx: RunContext) -> str | None:
        return self._path(ctx) if callable(self._path) else self._path

    def target(self, ctx: RunContext) -> Path | None:
        system_path = self.system_path(ctx)
        return ctx.path(system_path) if system_path else None

    def content(self, ctx: RunContext) -> str:
        return self._content(ctx) if callable(self._content) else self._content

    def precondition(self, ctx: RunContext) -> bool:
        return self.target(ctx) is not None

    def paths(self, ctx: RunContext) -> list[Path]:
        target = self.target(ctx)
        return [target] if target else []

    def is_applied(self, ctx: RunContext) -> bool:
        target = self.target(ctx)
        if target is None or not target.is_file():
            return False
        return target.read_text(encoding="utf-8", errors="replace") == self.content(ctx)

    def apply(self, ctx: RunContext) -> None:
        target = self.target(ctx)
        if target is None:
            raise PermanentFailure(f"{self.id}: no target path on this system")
        write_text_atomic(target, self.content(ctx), self.mode)
        logger.info("Wrote %s", target)

    def revert(self, ctx: RunContext) -> None:
        target = self.target(ctx)
        if target is not None:
            _restore_or_remove(ctx, target)


class ModuleOptionsStep(WriteFileStep):
    """Write a modprobe.d options file and reload the module."""

    def __init__(self, id: str, module: str, path: str, content: str, **kwargs):
        super().__init__(id, path, content, **kwargs)
        self.module = module

    def apply(self, ctx: RunContext) -> None:
        super().apply(ctx)
        self._reload(ctx)

    def revert(self, ctx: RunContext) -> None:
        super().revert(ctx)
        self._reload(ctx)

    def _reload(self, ctx: RunContext) -> None:
        result = ctx.kernel.reload(self.module)
        if not result.ok:
            ctx.warn(f"WARN: could not reload {self.module} ({result.error}). Reboot to apply.")


class RemoveMatchingLinesStep(Step):
    """Strip lines matching ``pattern`` from config files in a directory.

    Files touched are snapshotted; revert restores them.
    """

    def __init__(
        self,
        id: str,
        directory: str,
        pattern: str,
        glob: str = "*.conf",
        exclude: Sequence[str] = (),
        **kwargs,
    ):
        super().__init__(id, **kwargs)
        self.directory = directory
        self.pattern = re.compile(pattern)
        self.glob = glob
        self.exclude = tuple(exclude)
        if not self.description:
            self.description = f"Remove conflicting '{pattern}' lines from {directory}"

    def _excluded(self, ctx: RunContext) -> set[Path]:
        return {ctx.path(p) for p in self.exclude}

    def _candidates(self, ctx: RunContext) -> list[Path]:
        directory = ctx.path(self.directory)
        if not directory.is_dir():
            return []
        excluded = self._excluded(ctx)
        return [p for p in sorted(directory.glob(self.glob)) if p.is_file() and p not in excluded]

    def paths(self, ctx: RunContext) -> list[Path]:
        return [
            p for p in self._candidates(ctx)
            if any(self.pattern.search(line) for line in p.read_text(encoding="utf-8").splitlines())
        ]

    def is_applied(self, ctx: RunContext) -> bool:
        return not self.paths(ctx)

    def apply(self, ctx: RunContext) -> None:
        for path in self.paths(ctx):
            lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
            kept = [line for line in lines if not self.pattern.search(line)]
            write_text_atomic(path, "".join(kept), path.stat().st_mode & 0o777)
            logger.info("Removed %d line(s) from %s", len(lines) - len(kept), path)

    def revert(self, ctx: RunContext) -> None:
        directory = ctx.path(self.directory)
        excluded = {str(p) for p in self._excluded(ctx)}
        sources = [Path(b.source) for b in ctx.backups.outstanding()]
        # Rolling back: only what this run changed
        touched = set(ctx.backups.touched())
        if touched:
            sources = [s for s in sources if s in touched]
        for source in reversed(sources):
            if source.parent == directory and str(source) not in excluded:
                ctx.backups.restore_path(source)


class InstallFilesStep(Step):
    """Copy payload files from the fix's source directory into place."""

    def __init__(self, id: str, files: Sequence[tuple[str, str, int]], **kwargs):
        super().__init__(id, **kwargs)
        # (path relative to source dir, absolute destination, mode)
        self.files = tuple(files)

    def _source(self, ctx: RunContext) -> Path:
        source = ctx.source_dir()
        if source is None or not source.is_dir():
            raise PermanentFailure(
                f"No payload directory for '{ctx.fix}'",
                hint=f"Set source_dirs.{ctx.fix} in the hwfix config to the fix's source tree.",
            )
        return source

    def paths(self, ctx: RunContext) -> list[Path]:
        return [ctx.path(dest) for _, dest, _ in self.files]

    def is_applied(self, ctx: RunContext) -> bool:
        source = ctx.source_dir()
        for rel, dest, _ in self.files:
            target = ctx.path(dest)
            if not target.is_file():
                return False
            if source is not None and (source / rel).is_file():
                if target.read_bytes() != (source / rel).read_bytes():
                    return False
        return True

    def apply(self, ctx: RunContext) -> None:
        source = self._source(ctx)
        for rel, dest, mode in self.files:
            src = source / rel
            if not src.is_file():
                raise PermanentFailure(f"Payload file missing: {src}")
            target = ctx.path(dest)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, target)
            os.chmod(target, mode)
            logger.info("Installed %s", target)

    def revert(self, ctx: RunContext) -> None:
        for _, dest, _ in reversed(self.files):
            _restore_or_remove(ctx, ctx.path(dest))


# ── Kernel ──────────────────────────────────────────────────────


class ModuleLoadStep(Step):
    """Load kernel modules, then optionally re-probe dependent ones."""

    def __init__(self, id: str, modules: Sequence[str], reprobe: Sequence[str] = (), **kwargs):
        super().__init__(id, **kwargs)
        self.modules = tuple(modules)
        self.reprobe = tuple(reprobe)
        if not self.description:
            self.description = f"Load {', '.join(self.modules)}"

    def is_applied(self, ctx: RunContext) -> bool:
        return all(ctx.probe.is_kernel_module_loaded(m) for m in self.modules)

    def apply(self, ctx: RunContext) -> None:
        for module in self.modules:
            if ctx.probe.is_kernel_module_loaded(module):
                continue
            result = ctx.kernel.modprobe(module)
            if not result.ok:
                raise PermanentFailure(
                    f"modprobe {module} failed: {result.error}",
                    hint="Check that the module exists for the running kernel (dmesg for details).",
                )
        for module in self.reprobe:
            result = ctx.kernel.reload(module)
            if not result.ok:
                ctx.warn(f"WARN: could not re-probe {module}. It will likely resolve after reboot.")

    def revert(self, ctx: RunContext) -> None:
        busy = []
        for module in reversed(self.modules):
            if not ctx.probe.is_kernel_module_loaded(module):
                continue
            if not ctx.kernel.unload(module).ok:
                busy.append(module)
        if busy:
            raise PermanentFailure(
                f"Could not unload {', '.join(busy)}",
                hint="The module is in use. Reboot to finish the revert.",
            )


class DkmsModuleStep(Step):
    """Copy a module source tree to /usr/src and build it with DKMS."""

    def __init__(
        self,
        id: str,
        name: str,
        version: str,
        reload: Sequence[str] = (),
        **kwargs,
    ):
        super().__init__(id, **kwargs)
        self.name = name
        self.version = version
        self.reload = tuple(reload)
        if not self.description:
            self.description = f"Build and install DKMS module {name}/{version}"

    @property
    def src_dir(self) -> str:
        return f"/usr/src/{self.name}-{self.version}"

    def paths(self, ctx: RunContext) -> list[Path]:
        return [ctx.path(self.src_dir)]

    def is_applied(self, ctx: RunContext) -> bool:
        return ctx.kernel.dkms_installed(self.name, self.version)

    def apply(self, ctx: RunContext) -> None:
        source = ctx.source_dir()
        if source is None or not (source / "dkms.conf").is_file():
            raise PermanentFailure(
                f"No DKMS source tree for {self.name}",
                hint=f"Set source_dirs.{ctx.fix} to a directory containing dkms.conf.",
            )

        if ctx.kernel.dkms_status(self.name, self.version):
            logger.info("Removing existing DKMS module %s/%s", self.name, self.version)
            ctx.kernel.dkms_remove(self.name, self.version)

        dest = ctx.path(self.src_dir)
        if dest.exists():
            shutil.rmtree(dest)
        shutil.copytree(source, dest, symlinks=True)

        result = ctx.kernel.dkms_install(self.name, self.version)
        if not result.ok:
            raise PermanentFailure(
                f"DKMS build of {self.name}/{self.version} failed: {result.error}",
                hint=f"See /var/lib/dkms/{self.name}/{self.version}/build/make.log",
            )

        for module in self.reload:
            if not ctx.kernel.reload(module).ok:
                ctx.warn(f"WARN: could not reload {module} (may be in use). Reboot to apply.")

    def revert(self, ctx: RunContext) -> None:
        if ctx.kernel.dkms_status(self.name, self.version):
            result = ctx.kernel.dkms_remove(self.name, self.version)
            if not result.ok:
                raise PermanentFailure(f"dkms remove {self.name}/{self.version} failed: {result.error}")
        _restore_or_remove(ctx, ctx.path(self.src_dir))
        for module in self.reload:
            ctx.kernel.reload(module)


# ── Packages ────────────────────────────────────────────────────


class PackageStep(Step):
    """Install a logical package set through the PackageInstaller."""

    retriable = True

    def __init__(self, id: str, set_name: str, **kwargs):
        super().__init__(id, **kwargs)
        self.set_name = set_name
        if not self.description:
            self.description = f"Install {set_name} packages"

    def is_applied(self, ctx: RunContext) -> bool:
        return not ctx.packages.missing(self.set_name)

    def apply(self, ctx: RunContext) -> None:
        result = ctx.packages.install(self.set_name)
        if result.ok:
            return
        message = result.error or f"install of {self.set_name} failed"
        if result.unsupported:
            raise Unsupported(message, hint=result.hint)
        if result.retriable:
            raise TransientFailure(message, hint=result.hint)
        raise PermanentFailure(message, hint=result.hint)

    def revert(self, ctx: RunContext) -> None:
        result = ctx.packages.remove(self.set_name)
        if not result.ok:
            raise PermanentFailure(result.error or f"removal of {self.set_name} failed", hint=result.hint)


class AptRepositoryStep(Step):
    """Add a Launchpad PPA (Debian family only)."""

    retriable = True

    def __init__(self, id: str, ppa: str, **kwargs):
        super().__init__(id, **kwargs)
        self.ppa = ppa
        if not self.description:
            self.description = f"Add {ppa}"

    @property
    def marker(self) -> str:
        return self.ppa.removeprefix("ppa:")

    def precondition(self, ctx: RunContext) -> bool:
        return ctx.family == DistroFamily.DEBIAN

    def is_applied(self, ctx: RunContext) -> bool:
        sources = ctx.path("/etc/apt/sources.list.d")
        if not sources.is_dir():
            return False
        for entry in sources.iterdir():
            if entry.is_file() and self.marker in entry.read_text(encoding="utf-8", errors="replace"):
                return True
        return False

    def apply(self, ctx: RunContext) -> None:
        for args in (["add-apt-repository", "-y", self.ppa], ["apt-get", "update"]):
            result = ctx.runner.run(args, timeout=ctx.settings.command_timeout)
            if not result.ok:
                analysis = ctx.packages.backend.classify_failure(result) if ctx.packages.backend else {}
                message = f"{args[0]} failed: {result.error}"
                if analysis.get("retriable"):
                    raise TransientFailure(message, hint=analysis.get("hint", ""))
                raise PermanentFailure(message, hint=analysis.get("hint", ""))

    def revert(self, ctx: RunContext) -> None:
        result = ctx.runner.run(["add-apt-repository", "-y", "--remove", self.ppa])
        if not result.ok:
            raise PermanentFailure(f"Could not remove {self.ppa}: {result.error}")


class SparseFirmwareStep(Step):
    """Merge firmware directories from a sparse git checkout.

    The previous directories are snapshotted; a marker under the state
    directory records the installed upstream commit.
    """

    retriable = True

    def __init__(
        self,
        id: str,
        repo: str,
        dirs: dict[str, str],
        required: str,
        branch: str = "main",
        **kwargs,
    ):
        super().__init__(id, **kwargs)
        self.repo = repo
        self.dirs = dict(dirs)          # repo subdir -> system destination
        self.required = required
        self.branch = branch

    def marker(self, ctx: RunContext) -> Path:
        return ctx.settings.state_dir / "firmware" / f"{ctx.fix}-{self.id}"

    def paths(self, ctx: RunContext) -> list[Path]:
        return [ctx.path(dest) for dest in self.dirs.values()]

    def is_applied(self, ctx: RunContext) -> bool:
        return self.marker(ctx).is_file()

    def _git(self, ctx: RunContext, checkout: Path, *args: str) -> None:
        result = ctx.runner.run(["git", "-C", str(checkout), *args], timeout=ctx.settings.command_timeout)
        if result.ok:
            return
        message = f"git {args[0]} failed: {result.error}"
        if args[0] == "fetch":
            raise TransientFailure(message, hint="Check your network connection and retry.")
        raise PermanentFailure(message)

    def apply(self, ctx: RunContext) -> None:
        with tempfile.TemporaryDirectory(prefix="hwfix-fw-") as tmp:
            checkout = Path(tmp) / "linux-firmware"
            init = ctx.runner.run(["git", "init", "-q", str(checkout)])
            if not init.ok:
                raise PermanentFailure(f"git init failed: {init.error}")
            self._git(ctx, checkout, "remote", "add", "origin", self.repo)
            self._git(ctx, checkout, "sparse-checkout", "init")
            self._git(ctx, checkout, "sparse-checkout", "set", *self.dirs, "WHENCE")
            self._git(ctx, checkout, "fetch", "--depth=1", "-q", "origin", self.branch)
            self._git(ctx, checkout, "checkout", "-q", "FETCH_HEAD")

            if not (checkout / self.required).is_dir():
                raise PermanentFailure(
                    "Failed to download firmware files",
                    hint=f"{self.required} missing from the {self.repo} checkout.",
                )

            for subdir, dest in self.dirs.items():
                src = checkout / subdir
                if not src.is_dir():
                    continue
                target = ctx.path(dest)
                target.mkdir(parents=True, exist_ok=True)
                # Merge: files other platforms need stay in place
                shutil.copytree(src, target, symlinks=True, dirs_exist_ok=True)
                logger.info("Updated %s", target)

            head = ctx.runner.run(["git", "-C", str(checkout), "log", "-1", "--format=%h %s"])
            commit = head.stdout.strip() if head.ok else "unknown"

        write_text_atomic(self.marker(ctx), f"{self.repo} {commit}\n")

    def revert(self, ctx: RunContext) -> None:
        for target in reversed(self.paths(ctx)):
            ctx.backups.restore_path(target)
        self.marker(ctx).unlink(missing_ok=True)


# ── Services ────────────────────────────────────────────────────


class ServiceStep(Step):
    """Enable (and optionally start) systemd services."""

    def __init__(
        self,
        id: str,
        services: Iterable[ServiceHandle],
        start: bool = True,
        wait: bool = True,
        **kwargs,
    ):
        super().__init__(id, **kwargs)
        self.services = tuple(services)
        self.start = start
        self.wait = wait
        if not self.description:
            self.description = f"Enable {', '.join(str(s) for s in self.services)}"

    def is_applied(self, ctx: RunContext) -> bool:
        for handle in self.services:
            if not ctx.services.is_enabled(handle):
                return False
            if self.start and not ctx.services.is_active(handle):
                return False
        return True

    def apply(self, ctx: RunContext) -> None:
        for handle in self.services:
            ctx.services.reset_failed(handle)
            result = ctx.services.enable(handle)
            if not result.ok:
                raise PermanentFailure(f"Could not enable {handle}: {result.error}")
            if not self.start:
                continue
            result = ctx.services.restart(handle)
            if not result.ok:
                raise TransientFailure(
                    f"Could not start {handle}: {result.error}",
                    hint=f"Check: journalctl -u {handle.unit} --no-pager | tail -20",
                )
            if self.wait and not ctx.services.wait_until_active(handle, ctx.settings.service_wait_timeout):
                ctx.warn(f"WARN: {handle} not active yet. A reboot may be needed.")

    def revert(self, ctx: RunContext) -> None:
        failed = []
        for handle in reversed(self.services):
            ctx.services.stop(handle)
            if not ctx.services.disable(handle).ok:
                failed.append(str(handle))
        if failed:
            raise PermanentFailure(f"Could not disable {', '.join(failed)}")
