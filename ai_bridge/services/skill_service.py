"""Filesystem-backed skills.

A skill is a file or directory. Its enabled state is its location:

- enabled: the scope's active dir (``~/.claude/skills`` or
  ``<workspace>/.claude/skills``)
- disabled: the scope's management dir (``<config_root>/skills/global`` or
  ``<config_root>/skills/<project>_<hash>``)

Enable/disable moves the entry between the two through a ``SkillMover``.
"""

import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from ai_bridge.errors import BridgeIOError, ConflictError, NotFoundError, ValidationError
from ai_bridge.utils.paths import BridgePaths

logger = logging.getLogger(__name__)

SCOPES = ("global", "local")
DISABLED_SUFFIX = "-disabled"
SKILL_MARKDOWN_NAMES = ("skill.md", "SKILL.md")

_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---", re.DOTALL)
_DESCRIPTION_RE = re.compile(r"description:\s*(.+?)(?:\n[a-z-]+:|$)", re.DOTALL)


def java_hash_hex(value: str) -> str:
    """Hex of the unsigned 32-bit ``String.hashCode`` of ``value``.

    Matches the management directory names other clients already created.
    """
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h = (h * 31 + int.from_bytes(data[i:i + 2], "little")) & 0xFFFFFFFF
    return format(h, "x")


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _copy(source: Path, target: Path) -> None:
    if source.is_dir():
        shutil.copytree(source, target)
    else:
        shutil.copy2(source, target)


class SkillMover(Protocol):
    def move(self, source: Path, target: Path) -> None: ...


class RenameSkillMover:
    """Rename, falling back to copy-then-delete.

    A failed copy removes the partial target and leaves the source intact.
    """

    def move(self, source: Path, target: Path) -> None:
        try:
            os.rename(source, target)
            return
        except OSError as e:
            logger.debug("Rename %s -> %s failed (%s), copying", source, target, e)

        try:
            _copy(source, target)
        except OSError as e:
            if target.exists():
                try:
                    _remove(target)
                except OSError as cleanup_error:
                    logger.warning("Failed to remove partial copy %s: %s", target, cleanup_error)
            raise BridgeIOError(str(target), f"move failed: {e}") from e

        try:
            _remove(source)
        except OSError as e:
            raise BridgeIOError(str(source), f"copied but source not removed: {e}") from e


def extract_description(skill_path: Path) -> str | None:
    """Return the ``description:`` front-matter field of a skill, if any."""
    md_path: Path | None = None
    if skill_path.is_dir():
        md_path = resolve_skill_markdown(skill_path)
    elif skill_path.suffix.lower() == ".md":
        md_path = skill_path
    if md_path is None or not md_path.is_file():
        return None

    try:
        text = md_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read skill description from %s: %s", md_path, e)
        return None
    frontmatter = _FRONTMATTER_RE.match(text)
    if not frontmatter:
        return None
    description = _DESCRIPTION_RE.search(frontmatter.group(1))
    return description.group(1).strip() if description else None


def resolve_skill_markdown(directory: Path) -> Path | None:
    for name in SKILL_MARKDOWN_NAMES:
        candidate = directory / name
        if candidate.exists():
            return candidate
    return None


def parse_skill_id(skill_id: str, scope: str) -> tuple[str, bool]:
    """Split a skill id into ``(name, enabled)``.

    ``global-foo`` -> ``("foo", True)``; ``global-foo-disabled`` ->
    ``("foo", False)``. Ids without the scope prefix are treated as names.
    """
    name = skill_id
    prefix = f"{scope}-"
    if name.startswith(prefix):
        name = name[len(prefix):]
    enabled = True
    if name.endswith(DISABLED_SUFFIX):
        name = name[: -len(DISABLED_SUFFIX)]
        enabled = False
    return name, enabled


class SkillService:
    """Scan, import, delete and toggle skills for the global and local scope."""

    def __init__(self, paths: BridgePaths, mover: SkillMover | None = None) -> None:
        self._paths = paths
        self._mover = mover or RenameSkillMover()

    # --- directory resolution ---

    @staticmethod
    def _check_scope(scope: str) -> None:
        if scope not in SCOPES:
            raise ValidationError(f"Invalid skill scope: {scope!r}", field="scope")

    def active_dir(self, scope: str) -> Path:
        self._check_scope(scope)
        if scope == "global":
            return self._paths.global_skills_dir
        return self._paths.local_skills_dir

    def management_dir(self, scope: str) -> Path:
        self._check_scope(scope)
        root = self._paths.skills_management_root
        if scope == "global":
            return root / "global"
        workspace = str(self._paths.workspace_root)
        project_name = os.path.basename(workspace.rstrip("/\\")) or "Root"
        return root / f"{project_name}_{java_hash_hex(workspace)}"

    @staticmethod
    def _entry(base: Path, name: str) -> Path:
        """Return ``base / name`` for a bare entry name.

        Raises:
            NotFoundError: If ``name`` is empty.
            ValidationError: If ``name`` would address anything other than a
                direct child of ``base``.
        """
        if not name:
            raise NotFoundError("Skill", name)
        separators = {"/", "\\", os.sep, os.altsep} - {None}
        if name in (".", "..") or any(sep in name for sep in separators) or os.path.isabs(name):
            raise ValidationError(f"Invalid skill name: {name!r}", field="name")
        target = base / name
        if os.path.dirname(os.path.abspath(target)) != os.path.abspath(base):
            raise ValidationError(f"Invalid skill name: {name!r}", field="name")
        return target

    # --- queries ---

    def _scan(self, directory: Path, scope: str, enabled: bool) -> dict[str, dict]:
        skills: dict[str, dict] = {}
        if not directory.is_dir():
            return skills
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            logger.error("Failed to read skills directory %s: %s", directory, e)
            return skills

        for entry in entries:
            if entry.name.startswith("."):
                continue
            skill_id = f"{scope}-{entry.name}{'' if enabled else DISABLED_SUFFIX}"
            skill = {
                "id": skill_id,
                "name": entry.name,
                "type": "directory" if entry.is_dir() else "file",
                "scope": scope,
                "path": str(entry),
                "enabled": enabled,
            }
            description = extract_description(entry)
            if description:
                skill["description"] = description
            try:
                stat = entry.stat()
                created = getattr(stat, "st_birthtime", None) or stat.st_ctime
                skill["createdAt"] = _iso(created)
                skill["modifiedAt"] = _iso(stat.st_mtime)
            except OSError as e:
                logger.warning("Failed to stat skill %s: %s", entry, e)
            skills[skill_id] = skill
        return skills

    def list_scope(self, scope: str) -> dict[str, dict]:
        return {
            **self._scan(self.active_dir(scope), scope, True),
            **self._scan(self.management_dir(scope), scope, False),
        }

    def list_all(self) -> dict[str, dict[str, dict]]:
        """Return ``{"global": {id: skill}, "local": {id: skill}}``."""
        return {scope: self.list_scope(scope) for scope in SCOPES}

    # --- mutations ---

    def import_paths(self, paths: list[str], scope: str) -> dict:
        """Copy files or directories into the scope's active dir.

        Per-path failures are collected; existing skills are never
        overwritten.

        Returns:
            ``{success, count, total, imported, errors?}``. ``success`` is
            True if nothing failed or at least one path was imported.
        """
        target_dir = self.active_dir(scope)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BridgeIOError(str(target_dir), str(e)) from e

        imported: list[dict] = []
        errors: list[dict] = []
        for raw in paths:
            source = Path(raw).expanduser().resolve() if raw else None
            if source is None or not source.exists():
                errors.append({"path": raw, "error": "Source path does not exist"})
                continue
            target = target_dir / source.name
            if target.exists():
                errors.append({"path": raw, "error": f"A skill named '{source.name}' already exists"})
                continue
            try:
                _copy(source, target)
            except OSError as e:
                errors.append({"path": raw, "error": f"Copy failed: {e}"})
                continue

            skill = {
                "id": f"{scope}-{source.name}",
                "name": source.name,
                "type": "directory" if target.is_dir() else "file",
                "scope": scope,
                "path": str(target),
            }
            description = extract_description(target)
            if description:
                skill["description"] = description
            imported.append(skill)

        result: dict = {
            "success": not errors or bool(imported),
            "count": len(imported),
            "total": len(paths),
            "imported": imported,
        }
        if errors:
            result["errors"] = errors
        logger.info("Imported %d/%d skills into %s", len(imported), len(paths), scope)
        return result

    def delete(self, name: str, scope: str, enabled: bool) -> dict:
        """Remove a skill from the directory matching ``enabled``.

        Raises:
            NotFoundError: If the skill is not there.
            ValidationError: If ``name`` is not a bare entry name.
            BridgeIOError: If removal fails.
        """
        base = self.active_dir(scope) if enabled else self.management_dir(scope)
        target = self._entry(base, name)
        if not target.exists():
            raise NotFoundError("Skill", name)
        try:
            _remove(target)
        except OSError as e:
            raise BridgeIOError(str(target), f"delete failed: {e}") from e
        logger.info("Deleted %s skill %s", scope, name)
        return {"success": True, "name": name, "scope": scope}

    def _move(self, name: str, scope: str, enable: bool) -> dict:
        if enable:
            source_dir, target_dir = self.management_dir(scope), self.active_dir(scope)
        else:
            source_dir, target_dir = self.active_dir(scope), self.management_dir(scope)
        source = self._entry(source_dir, name)
        target = self._entry(target_dir, name)

        if not source.exists():
            raise NotFoundError("Skill", name)
        if target.exists():
            state = "enabled" if enable else "disabled"
            raise ConflictError(f"A skill named '{name}' is already {state} in scope {scope}")
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BridgeIOError(str(target_dir), str(e)) from e

        self._mover.move(source, target)
        logger.info("%s %s skill %s", "Enabled" if enable else "Disabled", scope, name)
        return {"success": True, "name": name, "scope": scope, "enabled": enable, "path": str(target)}

    def enable(self, name: str, scope: str) -> dict:
        return self._move(name, scope, True)

    def disable(self, name: str, scope: str) -> dict:
        return self._move(name, scope, False)

    def toggle(self, name: str, scope: str, currently_enabled: bool) -> dict:
        """Disable an enabled skill or enable a disabled one.

        Raises:
            NotFoundError: If the skill is not in the expected directory.
            ConflictError: If the destination already has a skill of that name.
            ValidationError: If ``name`` is not a bare entry name.
        """
        if currently_enabled:
            return self.disable(name, scope)
        return self.enable(name, scope)

    @staticmethod
    def resolve_open_path(skill_path: str) -> str:
        """Return the markdown file to open for a skill path."""
        path = Path(skill_path)
        if path.is_dir():
            markdown = resolve_skill_markdown(path)
            if markdown is not None:
                return str(markdown)
        return skill_path

    parse_skill_id = staticmethod(parse_skill_id)
