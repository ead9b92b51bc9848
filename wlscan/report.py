"""Plain-text scan report."""

from datetime import datetime

from .results import categorize, sort_by_port, version_distribution

RULE_WIDTH = 100


def _header(targets, start_port, count, profile, scan_date):
    lines = [
        "=" * RULE_WIDTH,
        "                    MINECRAFT SERVER SCANNER - DETAILED RESULTS",
        "=" * RULE_WIDTH,
        f"Scan Date:    {scan_date:%Y-%m-%d %H:%M:%S}",
        f"Target IPs:   {', '.join(targets)}",
        f"Port Range:   {start_port} - {start_port + count - 1}",
        f"Scan Speed:   {profile}",
        "=" * RULE_WIDTH,
        "",
    ]
    return lines


def _section(title, results):
    if not results:
        return []
    return [title] + [f"  {info.render()}" for info in results] + [""]


def build_report(results, targets, start_port, count, profile, scan_date=None):
    """
    Render the report text.

    Several targets: results grouped into the four online categories.
    A single target: a port-ordered listing followed by a version tally.
    """
    scan_date = scan_date or datetime.now()
    targets = list(targets)
    lines = _header(targets, start_port, count, profile, scan_date)

    if len(targets) > 1:
        sections = categorize(results)
        lines += [
            "━" * RULE_WIDTH,
            f"RESULTS FOR ALL IPs: {', '.join(targets)}",
            "━" * RULE_WIDTH,
            "",
        ]
        lines += _section("Online servers with players:", sections.online_with_players)
        lines += _section("Whitelist servers with players:", sections.whitelist_with_players)
        lines += _section("Whitelist servers (0 players):", sections.whitelist_no_players)
        lines += _section("Online servers (0 players):", sections.online_no_players)
    else:
        ordered = sort_by_port(results)
        lines += [f"Servers found: {sum(1 for r in ordered if r.online)}", ""]
        lines += [info.render() for info in ordered]
        tally = version_distribution(ordered)
        if tally:
            lines += ["", "Version distribution:"]
            lines += [f"  {version:<20} {amount}" for version, amount in tally]
        lines.append("")

    lines.append("=" * RULE_WIDTH)
    return "\n".join(lines) + "\n"


def save_report(path, results, targets, start_port, count, profile, scan_date=None):
    text = build_report(results, targets, start_port, count, profile, scan_date)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path
