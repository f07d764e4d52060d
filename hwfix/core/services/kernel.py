"""
Kernel helpers — modprobe, DKMS and initramfs tooling.

Thin wrappers over the external tools; each returns the
CommandResult and leaves interpretation to the calling step.
"""

from __future__ import annotations

import logging

from hwfix.adapters.base import CommandResult, Executor

logger = logging.getLogger(__name__)

# Tried in order; the first one on PATH wins.
INITRAMFS_TOOLS: tuple[tuple[str, list[str]], ...] = (
    ("update-initramfs", ["update-initramfs", "-u", "-k", "all"]),
    ("dracut", ["dracut", "--force", "--regenerate-all"]),
    ("mkinitcpio", ["mkinitcpio", "-P"]),
)


class KernelTools:
    """Module loading, DKMS builds and initramfs regeneration."""

    def __init__(self, runner: Executor, kernel_release: str = ""):
        self._runner = runner
        self._kernel = kernel_release

    @property
    def kernel_release(self) -> str:
        return self._kernel

    # ── Modules ─────────────────────────────────────────────────

    def modprobe(self, module: str, *params: str) -> CommandResult:
        logger.info("Loading module %s", module)
        return self._runner.run(["modprobe", module, *params], timeout=60)

    def unload(self, module: str) -> CommandResult:
        logger.info("Unloading module %s", module)
        return self._runner.run(["modprobe", "-r", module], timeout=60)

    def reload(self, module: str, *params: str) -> CommandResult:
        """Unload (best effort) and load again."""
        unloaded = self.unload(module)
        if not unloaded.ok:
            logger.debug("Could not unload %s: %s", module, unloaded.error)
        return self.modprobe(module, *params)

    # ── DKMS ────────────────────────────────────────────────────

    def dkms_status(self, name: str, version: str) -> str:
        result = self._runner.run(["dkms", "status", f"{name}/{version}"], timeout=60)
        return result.stdout.strip() if result.ok else ""

    def dkms_installed(self, name: str, version: str) -> bool:
        """Whether the module is built and installed for the running kernel."""
        for line in self.dkms_status(name, version).splitlines():
            if "installed" not in line:
                continue
            if not self._kernel or self._kernel in line:
                return True
        return False

    def dkms_install(self, name: str, version: str) -> CommandResult:
        """``dkms add``, ``build`` and ``install``. Stops at the first failure."""
        ref = f"{name}/{version}"
        result = CommandResult()
        for verb in ("add", "build", "install"):
            args = ["dkms", verb, ref]
            if verb != "add" and self._kernel:
                args += ["-k", self._kernel]
            result = self._runner.run(args, timeout=1800)
            if not result.ok:
                if verb == "add" and "already added" in result.stderr.lower():
                    continue
                logger.debug("dkms %s %s failed: %s", verb, ref, result.error)
                return result
        return result

    def dkms_remove(self, name: str, version: str) -> CommandResult:
        return self._runner.run(["dkms", "remove", f"{name}/{version}", "--all"], timeout=600)

    # ── initramfs ───────────────────────────────────────────────

    def initramfs_command(self) -> list[str] | None:
        for binary, args in INITRAMFS_TOOLS:
            if self._runner.which(binary):
                return args
        return None

    def rebuild_initramfs(self) -> CommandResult | None:
        """Regenerate the initramfs. None if no known tool is installed."""
        args = self.initramfs_command()
        if args is None:
            logger.warning("No initramfs tool found (update-initramfs, dracut, mkinitcpio)")
            return None
        logger.info("Rebuilding initramfs with %s", args[0])
        return self._runner.run(args, timeout=1800)
