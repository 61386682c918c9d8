"""Pure rendering functions: merged state -> marker payloads and HTML strings.

All renderers follow the same pattern:
  - Input: models from the orchestrator snapshot (or the stored copy of it)
  - Output: plain dicts for the map script, or str (HTML fragment)
  - No side effects, no I/O, no Prefect decorators

Used by flows/build.py which orchestrates the rendering pipeline.

Public API:
  - air_map: build_marker_payload, build_air_map_html, build_source_summary,
    build_source_summary_html

Adding a renderer
-----------------
1. Create ``renderers/{name}.py`` with a build function::

       from air_quality_map.renderers import render_template

       def build_mywidget_html(measurements: Sequence[Measurement]) -> str:
           rows = [...]
           return render_template("mywidget.html.j2", rows=rows)

2. Create a Jinja2 template in ``templates/{name}.html.j2``.
   Templates produce HTML fragments (no <html>/<body> tags).
   CSS goes in ``templates/base.html.j2`` within the <style> block.

3. Wire into ``flows/build.py`` and add the placeholder in ``base.html.j2``.

4. Add tests: call your build function with sample models and assert
   the returned HTML contains expected content.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jinja2

# Shared Jinja2 environment for all renderers
_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
_jinja_env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=True,
)


def render_template(template_name: str, **kwargs: Any) -> str:
    """Render a Jinja2 template by name."""
    return _jinja_env.get_template(template_name).render(**kwargs)
