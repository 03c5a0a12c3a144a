"""
Filesystem tools confined to the workspace root.

Relative paths resolve against the root; anything that resolves outside it
(including through ``..`` or symlinks) is refused.
"""

from pathlib import Path

from tools import tool, tool_error

MAX_FILE_SIZE = 1024 * 1024  # 1 MB


class PathOutsideWorkspace(ValueError):
    pass


def workspace_root(ctx) -> Path:
    return Path(ctx.agent.workspace_root).expanduser().resolve()


def resolve_in_workspace(root: Path, target: str) -> Path:
    """Resolve ``target`` under ``root``.

    Raises:
        PathOutsideWorkspace: If the resolved path escapes the root.
    """
    candidate = Path(target).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if not resolved.is_relative_to(root):
        raise PathOutsideWorkspace(f"Access to '{target}' denied: only paths inside {root} are allowed")
    return resolved


@tool
def read_file(path: str, ctx=None) -> dict:
    """Read the full text contents of a file in the workspace.

    Args:
        path: File path, absolute or relative to the workspace root.
    """
    root = workspace_root(ctx)
    try:
        file_path = resolve_in_workspace(root, path)
    except PathOutsideWorkspace as e:
        return tool_error(str(e))
    if not file_path.is_file():
        return tool_error(f"File not found: {path}")
    size = file_path.stat().st_size
    if size > MAX_FILE_SIZE:
        return tool_error(f"File is too large ({size / 1024:.1f} KB). Limit is 1 MB.")
    return {"path": str(file_path), "content": file_path.read_text(encoding="utf-8", errors="replace")}


@tool
def write_file(path: str, content: str, ctx=None) -> dict:
    """Write content to a file in the workspace. Overwrites an existing file and
    creates missing parent directories.

    Args:
        path: File path, absolute or relative to the workspace root.
        content: The complete new content of the file.
    """
    root = workspace_root(ctx)
    try:
        file_path = resolve_in_workspace(root, path)
    except PathOutsideWorkspace as e:
        return tool_error(str(e))
    data = content.encode("utf-8")
    if len(data) > MAX_FILE_SIZE:
        return tool_error(f"Content is too large ({len(data) / 1024:.1f} KB). Limit is 1 MB.")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(data)
    return {"written": True, "path": str(file_path), "bytes": len(data)}


@tool
def list_directory(path: str = ".", ctx=None) -> dict:
    """List the contents of a directory in the workspace.

    Args:
        path: Directory path, absolute or relative to the workspace root.
    """
    root = workspace_root(ctx)
    try:
        dir_path = resolve_in_workspace(root, path)
    except PathOutsideWorkspace as e:
        return tool_error(str(e))
    if not dir_path.is_dir():
        return tool_error(f"Not a directory: {path}")
    entries = [
        f"{'[DIR]' if child.is_dir() else '[FILE]'} {child.name}"
        for child in sorted(dir_path.iterdir(), key=lambda p: p.name)
    ]
    return {"path": str(dir_path), "entries": entries or ["Directory is empty."]}
