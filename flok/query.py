from __future__ import annotations


class GraphQuery:
    """Immutable builder for OData query parameters.

    Each method returns a new builder::

        GraphQuery().select("id", "subject").order_by("receivedDateTime", descending=True).top(25).build()
    """

    def __init__(self, params: dict[str, str] | None = None) -> None:
        self._params = dict(params or {})

    def _with(self, key: str, value: str) -> "GraphQuery":
        params = dict(self._params)
        params[key] = value
        return GraphQuery(params)

    def _append(self, key: str, values: list[str]) -> "GraphQuery":
        merged: list[str] = []
        existing = self._params.get(key, "")
        for raw in [existing, *values]:
            for part in raw.split(","):
                part = part.strip()
                if part and part not in merged:
                    merged.append(part)
        return self._with(key, ",".join(merged))

    def select(self, *fields: str) -> "GraphQuery":
        return self._append("$select", list(fields))

    def filter(self, expression: str) -> "GraphQuery":
        return self._with("$filter", expression)

    def order_by(self, field: str, descending: bool = False) -> "GraphQuery":
        clause = f"{field} desc" if descending else field
        return self._append("$orderby", [clause])

    def top(self, count: int) -> "GraphQuery":
        return self._with("$top", str(count))

    def skip(self, count: int) -> "GraphQuery":
        return self._with("$skip", str(count))

    def search(self, text: str) -> "GraphQuery":
        # Graph expects the search term wrapped in double quotes.
        return self._with("$search", f'"{text}"')

    def expand(self, field: str) -> "GraphQuery":
        return self._with("$expand", field)

    def count(self, include: bool = True) -> "GraphQuery":
        return self._with("$count", "true" if include else "false")

    def build(self) -> dict[str, str]:
        return dict(self._params)
