"""
Tree Visualizer — renders a tree snapshot as a self-contained HTML/SVG page.

Connectors are drawn from the renderer's resolved handles (curve, tag color,
label at the curve midpoint); nodes are drawn at their laid-out positions.

Saves to:
  .data/tree_history/<timestamp>_<slug>_<root-id>.html
  .data/tree_history/<timestamp>_<slug>_<root-id>.json
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .config import TreeConfig
from .models import Node, RenderedConnection, TreeSnapshot
from .tags import color_for_tag, group_tags_by_category

DATA_DIR = Path(__file__).parent.parent / ".data"
HISTORY_DIR = DATA_DIR / "tree_history"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def save_tree_history(
    snapshot: TreeSnapshot,
    config: Optional[TreeConfig] = None,
    history_dir: Path = HISTORY_DIR,
) -> Dict[str, str]:
    """
    Persist a tree snapshot to disk as JSON + HTML.

    Returns dict with keys:
        json_path  — absolute path to the saved JSON file
        html_path  — absolute path to the saved HTML file
        timestamp  — timestamp used in filenames
    """
    history_dir.mkdir(parents=True, exist_ok=True)

    root = _root_node(snapshot)
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = _slugify(root.track.title if root else "empty")[:40] or "tree"
    rid = (snapshot.root_id or "none")[:12]
    base = f"{ts}_{slug}_{rid}"

    json_path = history_dir / f"{base}.json"
    html_path = history_dir / f"{base}.html"

    json_path.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
    html_path.write_text(render_html(snapshot, config), encoding="utf-8")

    return {
        "json_path": str(json_path),
        "html_path": str(html_path),
        "timestamp": ts,
    }


def render_html(snapshot: TreeSnapshot, config: Optional[TreeConfig] = None) -> str:
    """Render a fully self-contained HTML visualization of a tag tree."""
    cfg = config or TreeConfig()
    root = _root_node(snapshot)
    title = root.track.title if root else "Empty tree"
    artist = root.track.artist if root else ""
    gen_at = snapshot.generated_at.strftime("%B %d, %Y · %H:%M")

    tree_svg = _tree_svg(snapshot, cfg)
    legend = _legend([c.tag for c in snapshot.connections])
    node_rows = "\n".join(_node_row(n) for n in sorted(snapshot.nodes, key=lambda n: (n.depth, n.id)))

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{_esc(title)} — Tag Tree</title>
<style>
{_CSS}
</style>
</head>
<body>
<div class="page">

  <!-- ── HEADER ── -->
  <header>
    <div class="tree-label">TAG TREE</div>
    <h1>{_esc(title)}</h1>
    {f'<p class="artist">{_esc(artist)}</p>' if artist else ''}
    <div class="stat-grid">
      <div class="stat"><span class="stat-val">{len(snapshot.nodes)}</span><span class="stat-lbl">nodes</span></div>
      <div class="stat"><span class="stat-val">{len(snapshot.connections)}</span><span class="stat-lbl">connections</span></div>
      <div class="stat"><span class="stat-val">{snapshot.depth}</span><span class="stat-lbl">depth</span></div>
    </div>
    <div class="legend">{legend}</div>
    <div class="generated-at">Generated {gen_at} · root: {_esc(snapshot.root_id or '-')}</div>
  </header>

  <!-- ── TREE ── -->
  <section class="tree-section">
    {tree_svg}
    <div class="node-tooltip" id="node-tip"></div>
  </section>

  <!-- ── NODES ── -->
  <section class="list-section">
    <div class="section-label">NODES</div>
    <table class="node-table">
      <tr><th>Node</th><th>Depth</th><th>Track</th><th>Via</th></tr>
{node_rows}
    </table>
  </section>

</div><!-- .page -->

<script>
{_JS}
</script>
</body>
</html>"""


# ---------------------------------------------------------------------------
# Tree SVG
# ---------------------------------------------------------------------------

_DEPTH_COLORS = ["#a78bfa", "#60a5fa", "#34d399", "#fbbf24"]


def _tree_svg(snapshot: TreeSnapshot, cfg: TreeConfig) -> str:
    if not snapshot.nodes:
        return '<div class="empty">No nodes yet — drop a track to grow a tree.</div>'

    W, H = cfg.canvas_width, cfg.canvas_height
    r = cfg.node_radius

    connectors = "".join(_connector(c) for c in snapshot.rendered)
    nodes = "".join(_node_circle(n, r) for n in snapshot.nodes if n.position is not None)

    return f"""<div class="tree-wrap">
  <svg viewBox="0 0 {W:.0f} {H:.0f}" preserveAspectRatio="xMidYMid meet" class="tree-svg">
    <g class="connectors">{connectors}</g>
    <g class="nodes">{nodes}</g>
  </svg>
</div>"""


def _connector(c: RenderedConnection) -> str:
    lp = c.label_position
    return (
        f'<path d="{c.d}" stroke="{_esc(c.color)}" class="conn" data-handle="{_esc(c.handle)}"/>'
        f'<text x="{lp.x:.1f}" y="{lp.y:.1f}" class="conn-label" fill="{_esc(c.color)}">{_esc(c.label)}</text>'
    )


def _node_circle(n: Node, radius: float) -> str:
    pos = n.position
    color = _DEPTH_COLORS[min(n.depth, len(_DEPTH_COLORS) - 1)]
    # Inner nodes shrink a little so the root reads as the center.
    r = radius if n.depth == 0 else radius * 0.75
    label = n.track.title if len(n.track.title) <= 16 else n.track.title[:15] + "…"
    return (
        f'<g class="node" data-id="{_esc(n.id)}" data-title="{_esc(n.track.title)}" '
        f'data-artist="{_esc(n.track.artist)}" data-tags="{_esc(", ".join(n.track.tags))}">'
        f'<circle cx="{pos.x:.1f}" cy="{pos.y:.1f}" r="{r:.1f}" fill="{color}" />'
        f'<text x="{pos.x:.1f}" y="{pos.y + 4:.1f}" class="node-label">{_esc(label)}</text>'
        f"</g>"
    )


# ---------------------------------------------------------------------------
# Legend & table
# ---------------------------------------------------------------------------


def _legend(tags: List[str]) -> str:
    if not tags:
        return ""
    categories = list(group_tags_by_category(tags))
    return " ".join(
        f'<span class="legend-pill"><i style="background:{_esc(color_for_tag(cat + ":"))}"></i>{_esc(cat)}</span>'
        for cat in categories
    )


def _node_row(n: Node) -> str:
    via = n.connection_tag or ""
    via_html = (
        f'<span class="via" style="color:{_esc(color_for_tag(via))}">{_esc(via)}</span>' if via else "—"
    )
    return (
        f'      <tr><td>{_esc(n.id)}</td><td>{n.depth}</td>'
        f"<td>{_esc(n.track.label())}</td><td>{via_html}</td></tr>"
    )


def _root_node(snapshot: TreeSnapshot) -> Optional[Node]:
    for n in snapshot.nodes:
        if n.id == snapshot.root_id:
            return n
    return None


def _esc(s: str) -> str:
    """HTML-escape a string."""
    return (
        str(s)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#39;")
    )


def _slugify(text: str) -> str:
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode()
    text = re.sub(r"[^\w\s-]", "", text.lower())
    return re.sub(r"[-\s]+", "-", text).strip("-")


# ---------------------------------------------------------------------------
# CSS
# ---------------------------------------------------------------------------

_CSS = """
*, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

body {
  background: #0a0a0f;
  color: #e0e0e8;
  font-family: 'SF Pro Display', 'Inter', 'Segoe UI', system-ui, sans-serif;
  font-size: 14px;
  line-height: 1.5;
}

.page { max-width: 1240px; margin: 0 auto; padding: 24px 20px 60px; }

/* ── HEADER ── */
header {
  background: linear-gradient(135deg, #13131f 0%, #1a1a2e 100%);
  border: 1px solid #2a2a3a;
  border-radius: 16px;
  padding: 28px 32px 20px;
  margin-bottom: 24px;
}
.tree-label { font-size: 10px; letter-spacing: 3px; color: #6b6b8a; font-weight: 700; margin-bottom: 4px; }
h1 { font-size: 26px; font-weight: 800; color: #f0f0ff; }
.artist { color: #7878a0; font-size: 13px; margin-bottom: 12px; }
.stat-grid { display: grid; grid-template-columns: repeat(3, 120px); gap: 8px 16px; margin: 10px 0; }
.stat { text-align: center; }
.stat-val { display: block; font-size: 22px; font-weight: 800; color: #a78bfa; }
.stat-lbl { font-size: 10px; letter-spacing: 1px; color: #5a5a7a; text-transform: uppercase; }
.legend { display: flex; flex-wrap: wrap; gap: 6px; }
.legend-pill { background: #1e1e30; border: 1px solid #3a3a5a; border-radius: 12px; padding: 2px 10px; font-size: 11px; color: #a0a0c0; }
.legend-pill i { display: inline-block; width: 8px; height: 8px; border-radius: 50%; margin-right: 6px; }
.generated-at { font-size: 10px; color: #3a3a5a; margin-top: 14px; border-top: 1px solid #1e1e2e; padding-top: 10px; }

.section-label {
  font-size: 10px; letter-spacing: 3px; color: #4a4a6a; font-weight: 700;
  text-transform: uppercase; margin-bottom: 14px;
}

/* ── TREE ── */
.tree-section { position: relative; margin-bottom: 28px; }
.tree-svg { width: 100%; height: auto; display: block; background: #0e0e16; border-radius: 12px; }
.conn { fill: none; stroke-width: 2.5; stroke-linecap: round; opacity: 0.85; }
.conn-label { font-size: 11px; text-anchor: middle; paint-order: stroke; stroke: #0e0e16; stroke-width: 3px; }
.node circle { stroke: #0a0a0f; stroke-width: 3; cursor: pointer; }
.node:hover circle { stroke: #f0f0ff; }
.node-label { fill: #0a0a0f; font-size: 10px; font-weight: 700; text-anchor: middle; pointer-events: none; }
.node-tooltip {
  display: none; position: absolute; background: #1e1e30; border: 1px solid #3a3a5a;
  border-radius: 6px; padding: 6px 10px; font-size: 12px; color: #c0c0e0;
  pointer-events: none; z-index: 10; max-width: 260px;
}
.empty { color: #5a5a7a; padding: 40px; text-align: center; }

/* ── NODE TABLE ── */
.node-table { width: 100%; border-collapse: collapse; font-size: 12px; }
.node-table th { text-align: left; color: #5a5a7a; font-weight: 600; border-bottom: 1px solid #2a2a3a; padding: 4px 8px; }
.node-table td { border-bottom: 1px solid #16161f; padding: 4px 8px; }
.via { font-family: ui-monospace, monospace; }
"""


# ---------------------------------------------------------------------------
# JS
# ---------------------------------------------------------------------------

_JS = """
const tip = document.getElementById('node-tip');
document.querySelectorAll('.node').forEach(node => {
  node.addEventListener('mouseenter', () => {
    tip.innerHTML =
      `<b>${node.dataset.title}</b><br><span style="color:#7070a0">${node.dataset.artist}</span>` +
      (node.dataset.tags ? `<div style="margin-top:4px">${node.dataset.tags}</div>` : '');
    tip.style.display = 'block';
  });
  node.addEventListener('mousemove', e => {
    const wrap = node.closest('.tree-section').getBoundingClientRect();
    tip.style.left = (e.clientX - wrap.left + 14) + 'px';
    tip.style.top  = (e.clientY - wrap.top  - 10) + 'px';
  });
  node.addEventListener('mouseleave', () => {
    tip.style.display = 'none';
  });
});
"""
