"""Diagnostics document for a wiki.

Lists the data-quality problems found by the last build: notes without a
header, notes with an invalid header or without a ``wiki-tag``, duplicate
identifiers, and components with more than one member (tag cycles that are
candidates for merging by hand).

The document carries no timestamp, so regenerating it for an unchanged wiki
produces the same bytes.
"""

from __future__ import annotations

from jinja2 import BaseLoader, Environment

from .graph import WikiGraph

DIAGNOSTICS_TEMPLATE = """\
---
note-type: diagnostics
---

# Wiki diagnostics

This note is generated. Edits are overwritten on the next refresh.

## Notes without header ({{ no_header | length }})
{% for path in no_header %}
- [[{{ path }}]]
{%- else %}
- none
{%- endfor %}

## Invalid headers ({{ invalid | length }})
{% for path, message in invalid %}
- [[{{ path }}]]: {{ message }}
{%- else %}
- none
{%- endfor %}

## Notes without wiki-tag ({{ missing_wiki_tag | length }})
{% for path in missing_wiki_tag %}
- [[{{ path }}]]
{%- else %}
- none
{%- endfor %}

## Duplicate wiki-tags ({{ duplicates | length }})
{% for tag, paths in duplicates %}
- `{{ tag }}`: {% for path in paths %}[[{{ path }}]]{% if not loop.last %}, {% endif %}{% endfor %}
{%- else %}
- none
{%- endfor %}

## Tag cycles ({{ cycles | length }})
{% for key, members in cycles %}
- `{{ key }}`: {{ members | join(", ") }}
{%- else %}
- none
{%- endfor %}
"""

_env = Environment(loader=BaseLoader(), autoescape=False, keep_trailing_newline=True)


def render_diagnostics(graph: WikiGraph) -> str:
    """Render the diagnostics markdown for a built graph."""
    template = _env.from_string(DIAGNOSTICS_TEMPLATE)
    return template.render(
        no_header=sorted(graph.no_header),
        invalid=sorted(graph.invalid_headers.items()),
        missing_wiki_tag=sorted(graph.missing_wiki_tag),
        duplicates=[
            (tag, sorted(node.path for node in group))
            for tag, group in sorted(graph.duplicates.items())
        ],
        cycles=[(comp.key, sorted(comp.members)) for comp in graph.multi_member_components()],
    )
