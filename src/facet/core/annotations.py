"""Reference-image annotations.

A reference image may carry a plain label, a set of per-color descriptions
(``{"red": "rubies", "yellow": "gold band"}`` for a colored sketch), or both.
Older clients packed the two into a single ``name`` string, either as plain
text or as serialized JSON ``{"name"?: ..., "colorDescriptions"?: {...}}``.

:class:`ReferenceAnnotation` is the structured form stored in the database
(``label`` and ``color_descriptions`` columns).  :meth:`from_legacy` migrates
old string values; :meth:`to_legacy` produces the string encoding for API
consumers that still read ``name``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ReferenceAnnotation:
    """Label and per-color descriptions attached to a reference image."""

    label: str | None = None
    color_descriptions: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_legacy(cls, name: str | None) -> ReferenceAnnotation:
        """Parse a legacy ``name`` value.

        Args:
            name: ``None``, plain text, or a JSON object string with optional
                ``name`` and ``colorDescriptions`` keys.

        Returns:
            The equivalent annotation.  Strings that are not a JSON object
            become a plain label.
        """
        if not name:
            return cls()

        try:
            parsed = json.loads(name)
        except ValueError:
            return cls(label=name)

        if not isinstance(parsed, dict):
            return cls(label=name)

        label = parsed.get("name")
        colors = parsed.get("colorDescriptions")
        if not isinstance(colors, dict):
            colors = {}
        return cls(
            label=label if isinstance(label, str) and label else None,
            color_descriptions={str(k): str(v) for k, v in colors.items()},
        )

    @classmethod
    def from_columns(cls, label: str | None, color_descriptions: dict | None) -> ReferenceAnnotation:
        return cls(label=label or None, color_descriptions=dict(color_descriptions or {}))

    def with_label(self, label: str | None) -> ReferenceAnnotation:
        """Return a copy with a new label and the same color descriptions."""
        return ReferenceAnnotation(label=label or None, color_descriptions=dict(self.color_descriptions))

    def to_legacy(self) -> str | None:
        """Return the legacy single-string encoding of this annotation."""
        if not self.color_descriptions:
            return self.label
        payload: dict = {}
        if self.label:
            payload["name"] = self.label
        payload["colorDescriptions"] = self.color_descriptions
        return json.dumps(payload)

    def color_context(self) -> str:
        """Describe what each color of the sketch represents.

        Blank descriptions are skipped.

        Returns:
            ``"red areas represent rubies, yellow areas represent gold"``, or
            an empty string when nothing is described.
        """
        return ", ".join(
            f"{color} areas represent {description}"
            for color, description in self.color_descriptions.items()
            if description.strip()
        )
