"""MD Explorer CLI entry point."""

from __future__ import annotations

import argparse
import sys


def main() -> None:

    import importlib.metadata

    try:
        version = importlib.metadata.version("mdexplorer")
    except importlib.metadata.PackageNotFoundError:
        version = "0.2.0"

    parser = argparse.ArgumentParser(
        prog="mdexplorer",
        description="MD Explorer - sandboxed markdown workspace with an LLM editing agent",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {version}")
    parser.add_argument("--config", default=None, help="Path to custom configuration file (default: ~/.mdexplorer/config.json)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")

    status_parser = subparsers.add_parser("status", help="Check status of a running service")
    status_parser.add_argument("--url", default=None, help="Service URL (default: from config)")

    tree_parser = subparsers.add_parser("tree", help="Print the workspace tree")
    tree_parser.add_argument("path", nargs="?", default=None, help="Sub-directory of the root to show")

    args = parser.parse_args()

    # Initialize config globally with the provided path (if any)
    from mdexplorer.service.config import get_config
    cfg = get_config(args.config)

    from mdexplorer.logger import setup_logging
    setup_logging(cfg.log_file if args.command == "serve" else None)

    if args.command == "serve":
        _run_serve(args)
    elif args.command == "status":
        _run_status(args)
    elif args.command == "tree":
        _run_tree(args)
    else:
        parser.print_help()
        sys.exit(1)


def _run_serve(args) -> None:
    from mdexplorer.service.server import run_server
    run_server(host=args.host, port=args.port)


def _run_status(args) -> None:
    """Query /api/status of the running service."""
    import httpx

    from mdexplorer.service.config import get_config
    cfg = get_config()
    base_url = (args.url or f"http://{cfg.server_host}:{cfg.server_port}").rstrip("/")

    G = "\033[32m"   # green
    R = "\033[31m"   # red
    Y = "\033[33m"   # yellow
    B = "\033[1m"    # bold
    D = "\033[2m"    # dim
    X = "\033[0m"    # reset

    try:
        resp = httpx.get(f"{base_url}/api/status", timeout=5.0)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPError as e:
        print(f"\n  {B}MD Explorer{X}   {R}● offline{X}")
        print(f"  {D}Endpoint:{X}      {base_url}")
        print(f"  {D}Error:{X}         {e}\n")
        sys.exit(1)

    session = data.get("session", {})
    ollama = data.get("ollama", {})
    editor = session.get("editor") or {}
    ollama_state = f"{G}● online{X}" if ollama.get("connected") else f"{R}● offline{X}"

    print()
    print(f"  {B}MD Explorer{X}   {G}● online{X}")
    print(f"  {D}Endpoint:{X}      {base_url}")
    print(f"  {D}Root:{X}          {session.get('rootDirectory', '?')}")
    print(f"  {D}Model:{X}         {Y}{session.get('model', '?')}{X}")
    print(f"  {D}Messages:{X}      {session.get('messageCount', 0)}")
    print(f"  {D}Open file:{X}     {editor.get('filePath') or '-'}{' (unsaved)' if editor.get('isDirty') else ''}")
    if session.get("pendingPermission"):
        print(f"  {D}Awaiting:{X}      {Y}{session['pendingPermission']['toolName']}{X} approval")
    if session.get("hasPendingChange"):
        print(f"  {D}Proposal:{X}      {Y}pending review{X}")
    print(f"  {B}Ollama{X}        {ollama_state}  {D}{ollama.get('url', '')}{X}")
    print()


def _run_tree(args) -> None:
    """Render the sandboxed workspace with the same filtering the service applies."""
    from rich.console import Console
    from rich.tree import Tree

    from mdexplorer.service.config import get_config
    from mdexplorer.service.filestore import FileStore
    from mdexplorer.service.settings import SettingsStore

    console = Console()
    store = FileStore(SettingsStore(get_config().settings_path))
    result = store.read_directory(args.path)
    if not result["success"]:
        console.print(f"[red]{result['error']}[/red]")
        sys.exit(1)

    def add(branch: Tree, nodes: list[dict]) -> None:
        for node in nodes:
            if node["type"] == "directory":
                add(branch.add(f"[bold blue]{node['name']}/[/bold blue]"), node.get("children", []))
            elif node.get("extension") == ".md":
                branch.add(f"[green]{node['name']}[/green]")
            else:
                branch.add(node["name"])

    root = Tree(f"[bold]{store.root}[/bold]")
    add(root, result["data"])
    console.print(root)


if __name__ == "__main__":
    main()
