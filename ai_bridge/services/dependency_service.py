"""Installation of the AI tool CLIs the SDKs drive.

Each SDK id maps to an npm package installed into its own directory under
``<config_root>/dependencies/<sdk-id>``. Install runs ``npm install`` as an
async subprocess and relays every output line to a progress callback.
"""

import asyncio
import json
import logging
import os
import platform
import shutil
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ai_bridge.errors import BridgeIOError
from ai_bridge.storage import JsonDocumentStore
from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)

VERSION_TIMEOUT = 10.0


@dataclass(frozen=True)
class SdkSpec:
    sdk_id: str
    provider: str
    display_name: str
    packages: tuple[str, ...]
    binary: str

    @property
    def primary_package(self) -> str:
        return self.packages[0]


SDKS: dict[str, SdkSpec] = {
    "claude-sdk": SdkSpec(
        sdk_id="claude-sdk",
        provider="claude",
        display_name="Claude Code SDK",
        packages=("@anthropic-ai/claude-code",),
        binary="claude",
    ),
    "codex-sdk": SdkSpec(
        sdk_id="codex-sdk",
        provider="codex",
        display_name="Codex SDK",
        packages=("@openai/codex",),
        binary="codex",
    ),
}
PROVIDER_SDK = {spec.provider: spec for spec in SDKS.values()}

ProgressCallback = Callable[[str], Awaitable[None] | None]


def _npm_candidates() -> list[str]:
    if platform.system() == "Windows":
        return ["npm.cmd", "npm.exe", "npm"]
    return ["npm"]


class DependencyService:
    """Status, install and uninstall of SDK CLIs."""

    def __init__(
        self,
        paths: BridgePaths,
        store: JsonDocumentStore | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._paths = paths
        self._store = store or JsonDocumentStore()
        self._which = which

    # --- status ---

    def _spec(self, sdk_id: str) -> SdkSpec | None:
        return SDKS.get(sdk_id) if isinstance(sdk_id, str) else None

    def _bin_path(self, spec: SdkSpec) -> Path:
        bin_dir = self._paths.dependency_dir(spec.sdk_id) / "node_modules" / ".bin"
        suffix = ".cmd" if platform.system() == "Windows" else ""
        return bin_dir / f"{spec.binary}{suffix}"

    def installed_version(self, sdk_id: str) -> str | None:
        spec = self._spec(sdk_id)
        if spec is None:
            return None
        package_json = (
            self._paths.dependency_dir(sdk_id) / "node_modules" / spec.primary_package / "package.json"
        )
        data = self._store.load_optional(package_json)
        version = data.get("version") if data else None
        return version if isinstance(version, str) else None

    def cli_path(self, provider: str) -> str | None:
        """Locate the CLI for ``provider``: the managed install, then PATH."""
        spec = PROVIDER_SDK.get(provider)
        if spec is None:
            return None
        managed = self._bin_path(spec)
        if managed.exists():
            return str(managed)
        return self._which(spec.binary)

    def is_available(self, provider: str) -> bool:
        return self.cli_path(provider) is not None

    def status(self) -> dict[str, dict]:
        """Per-provider ``{installed, version, path}``."""
        result = {}
        for spec in SDKS.values():
            path = self.cli_path(spec.provider)
            result[spec.provider] = {
                "installed": path is not None,
                "version": self.installed_version(spec.sdk_id),
                "path": path or str(self._paths.dependency_dir(spec.sdk_id)),
            }
        return result

    def dependencies_view(self) -> dict[str, dict]:
        """Per-SDK-id status in the settings panel's shape."""
        status = self.status()
        view = {}
        for sdk_id, spec in SDKS.items():
            entry = status[spec.provider]
            view[sdk_id] = {
                "status": "installed" if entry["installed"] else "not_installed",
                "installedVersion": entry["version"],
                "installPath": entry["path"] if entry["installed"] else None,
                "hasUpdate": False,
            }
        return view

    async def node_environment(self) -> dict[str, Any]:
        """Check ``node --version`` and ``npm --version``.

        Returns:
            ``{available, nodeVersion, npmVersion, npmCommand, error?}``.
        """
        node = self._which("node")
        node_version = None
        if node:
            node_version = await self._run_version([node, "--version"])
        last_error = "npm_not_available"
        for command in _npm_candidates():
            resolved = self._which(command)
            if not resolved:
                continue
            npm_version = await self._run_version([resolved, "--version"])
            if npm_version:
                return {
                    "available": True,
                    "nodeVersion": node_version,
                    "npmVersion": npm_version,
                    "npmCommand": resolved,
                }
            last_error = f"{command} --version failed"
        return {
            "available": False,
            "nodeVersion": node_version,
            "npmVersion": None,
            "npmCommand": _npm_candidates()[0],
            "error": last_error,
        }

    @staticmethod
    async def _run_version(argv: list[str]) -> str | None:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug("%s failed: %s", argv[0], e)
            return None
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), VERSION_TIMEOUT)
        except asyncio.TimeoutError:
            logger.debug("%s timed out after %ss", argv[0], VERSION_TIMEOUT)
            process.kill()
            await process.wait()
            return None
        output = stdout.decode("utf-8", errors="replace").strip()
        return output if process.returncode == 0 and output else None

    # --- install / uninstall ---

    async def install(self, sdk_id: str, on_progress: ProgressCallback | None = None) -> dict:
        """Install an SDK's npm package.

        Each non-empty output line is passed to ``on_progress``. An invalid id
        or missing npm produce a failed result without spawning anything.

        Returns:
            ``{success, sdkId, installedVersion | error, logs}``.
        """
        spec = self._spec(sdk_id)
        if spec is None:
            return {"success": False, "sdkId": sdk_id or "unknown", "error": "invalid_sdk_id", "logs": ""}

        env_status = await self.node_environment()
        if not env_status["available"]:
            return {
                "success": False,
                "sdkId": sdk_id,
                "error": "node_not_configured",
                "logs": env_status.get("error", ""),
            }

        install_dir = self._paths.dependency_dir(sdk_id)
        try:
            install_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BridgeIOError(str(install_dir), str(e)) from e
        package_json = install_dir / "package.json"
        if not package_json.exists():
            self._store.save(package_json, {"name": f"codemoss-{sdk_id}", "private": True})

        argv = [env_status["npmCommand"], "install", "--no-audit", "--no-fund", *spec.packages]
        logger.info("Installing %s: %s", sdk_id, " ".join(argv))
        logs: list[str] = []
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(install_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=dict(os.environ),
            )
        except OSError as e:
            logger.error("Failed to start npm for %s: %s", sdk_id, e)
            return {"success": False, "sdkId": sdk_id, "error": str(e) or "install_failed", "logs": ""}

        assert process.stdout is not None
        async for raw in process.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip()
            logs.append(line)
            if line and on_progress is not None:
                result = on_progress(line)
                if asyncio.iscoroutine(result):
                    await result
        code = await process.wait()
        combined = "\n".join(logs)

        if code != 0:
            logger.warning("npm install for %s exited with %s", sdk_id, code)
            return {"success": False, "sdkId": sdk_id, "error": f"install_failed_exit_{code}", "logs": combined}
        version = self.installed_version(sdk_id)
        logger.info("Installed %s %s", sdk_id, version or "")
        return {"success": True, "sdkId": sdk_id, "installedVersion": version, "logs": combined}

    def uninstall(self, sdk_id: str) -> dict:
        """Remove an SDK's install directory.

        Returns:
            ``{success, sdkId, error?}``.
        """
        if self._spec(sdk_id) is None:
            return {"success": False, "sdkId": sdk_id or "unknown", "error": "invalid_sdk_id"}
        install_dir = self._paths.dependency_dir(sdk_id)
        try:
            if install_dir.exists():
                shutil.rmtree(install_dir)
        except OSError as e:
            logger.error("Failed to uninstall %s: %s", sdk_id, e)
            return {"success": False, "sdkId": sdk_id, "error": str(e) or "uninstall_failed"}
        logger.info("Uninstalled %s", sdk_id)
        return {"success": True, "sdkId": sdk_id}

    # --- diagnostics ---

    def remediation_text(self, provider: str) -> str:
        """Manual install instructions shown when an SDK is unavailable."""
        spec = PROVIDER_SDK.get(provider) or PROVIDER_SDK["claude"]
        install_dir = self._paths.dependency_dir(spec.sdk_id)
        deps_root = self._paths.dependencies_root
        children = (
            sorted(p.name for p in deps_root.iterdir() if p.is_dir()) if deps_root.is_dir() else []
        )
        expected = self._bin_path(spec)
        manual = "\n".join([
            f"mkdir -p {install_dir}",
            f"cd {install_dir}",
            "npm init -y",
            f"npm install {' '.join(spec.packages)}",
        ])
        return (
            f"{spec.display_name} is not installed (or was not detected), "
            "so prompts cannot be answered yet.\n\n"
            "Install it from the SDK dependencies section of the settings panel, "
            "or run manually:\n"
            f"```bash\n{manual}\n```\n"
            "Diagnostics:\n"
            f"- provider: {provider}\n"
            f"- homedir: {self._paths.home}\n"
            f"- python: {sys.executable}\n"
            f"- depsDir: {deps_root} (exists: {str(deps_root.is_dir()).lower()})\n"
            f"- depsDir children: {', '.join(children) or '(empty)'}\n"
            f"- expectedPath: {expected} (exists: {str(expected.exists()).lower()})\n\n"
            "Retry from the panel once the installation has finished."
        )
