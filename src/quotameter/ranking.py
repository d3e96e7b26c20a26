from collections.abc import Mapping

from quotameter.models import Rollup


def humanize(name: "str") -> "str":
    name = name.strip()
    if not name:
        return "unknown"
    return name.replace("_", " ").replace("-", " ")


def _ordered(values: "Mapping[str, float]") -> "list[tuple[str, float]]":
    # value descending, then name ascending so ties are reproducible
    return sorted(values.items(), key=lambda item: (-item[1], item[0]))


def top_n(rollups: "Mapping[str, Rollup]", n: "int", metric: "str" = "total") -> "list[str]":
    """
    returns up to n keys ordered by metric descending, ties broken by
    key ascending.
    """
    if n <= 0:
        return []
    ranked = _ordered({key: rollup.value(metric) for key, rollup in rollups.items()})
    return [key for key, _ in ranked[:n]]


def _positive(values: "Mapping[str, float]", max_items: "int") -> "list[tuple[str, float]]":
    ranked = _ordered({name: value for name, value in values.items() if value > 0})
    if max_items > 0:
        ranked = ranked[:max_items]
    return ranked


def share_summary(values: "Mapping[str, float]", max_items: "int" = 0) -> "str":
    """
    formats the non-zero entries as "name: NN%". Percentages are
    taken over the non-zero entries only, before any truncation to
    max_items.
    """
    total = sum(value for value in values.values() if value > 0)
    if total <= 0:
        return ""
    return ", ".join(
        f"{humanize(name)}: {value / total * 100:.0f}%"
        for name, value in _positive(values, max_items)
    )


def count_summary(values: "Mapping[str, float]", unit: "str", max_items: "int" = 0) -> "str":
    return ", ".join(
        f"{humanize(name)}: {value:.0f} {unit}"
        for name, value in _positive(values, max_items)
    )
