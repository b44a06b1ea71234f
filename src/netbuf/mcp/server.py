"""FastMCP server exposing read-only buffer analysis tools."""

from __future__ import annotations

from dataclasses import replace

from netbuf.config import NetbufConfig
from netbuf.errors import NetbufError, ProfileNotFound
from netbuf.models.enums import RemediationMode
from netbuf.report.formatters import format_findings, format_plan, format_profiles


def create_server(config: NetbufConfig | None = None):
    """Create and return a configured FastMCP server instance.

    Every tool call captures its own snapshot; nothing is shared between
    requests and no tool writes to the system.

    Args:
        config: Optional pre-loaded config. If None, loads from cwd.
    """
    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("netbuf", instructions="Linux network buffer consistency checks")
    _config = config or NetbufConfig.load()

    @mcp.tool()
    def netbuf_check(limit: int | None = None) -> str:
        """Check kernel network buffer settings for inconsistencies.

        Returns one finding per check, ordered, with severity and suggested values.

        Args:
            limit: Max established connections to sample (default from config)
        """
        from netbuf.core.rules import evaluate
        from netbuf.core.snapshot import capture_snapshot

        cfg = _config
        if limit is not None:
            cfg = replace(cfg, reader=replace(cfg.reader, connection_sample_limit=limit))
        try:
            snap = capture_snapshot(config=cfg)
        except (NetbufError, OSError) as exc:
            return f"Error reading system state: {exc}"
        return format_findings(evaluate(snap, cfg.thresholds))

    @mcp.tool()
    def netbuf_profiles() -> str:
        """List the built-in tuning profiles (workload x topology)."""
        from netbuf.core.profiles import list_profiles

        return format_profiles(list_profiles())

    @mcp.tool()
    def netbuf_plan(profile: str, mode: str = "apply-now") -> str:
        """Diff the running system against a profile and render the commands.

        Nothing is applied; the commands are for the operator to review.

        Args:
            profile: Profile id, e.g. message-delivery-backend
            mode: One of: apply-now, persist, backup
        """
        from netbuf.core.profiles import get_profile
        from netbuf.core.recommender import plan
        from netbuf.core.snapshot import capture_snapshot

        try:
            render_mode = RemediationMode(mode)
        except ValueError:
            choices = ", ".join(m.value for m in RemediationMode)
            return f"Invalid mode '{mode}'. Must be: {choices}."

        try:
            prof = get_profile(profile)
        except ProfileNotFound as exc:
            return str(exc)

        try:
            snap = capture_snapshot(config=_config)
        except (NetbufError, OSError) as exc:
            return f"Error reading system state: {exc}"
        return format_plan(plan(snap, prof, _config.thresholds), render_mode)

    return mcp


def main() -> None:
    """Entry point for netbuf-mcp (stdio transport)."""
    server = create_server()
    server.run()


if __name__ == "__main__":
    main()
