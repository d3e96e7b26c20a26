from collections.abc import Iterable

from quotameter.models import Rollup, TimePoint, UsageSample


class RollupAccumulator:
    """
    RollupAccumulator sums UsageSample values for one normalization
    pass. It keeps an overall total, a per-day total, and for every
    dimension a bucket per key plus that key's per-day buckets.

    Accumulation only ever adds, so the final sums do not depend on
    the order samples arrive in. Instances are pass-local and not
    meant to be shared between concurrent passes.
    """

    def __init__(self) -> "None":
        self.total: "Rollup" = Rollup()
        self._daily: "dict[str, Rollup]" = {}
        # dimension -> key -> rollup
        self._buckets: "dict[str, dict[str, Rollup]]" = {}
        # dimension -> key -> day -> rollup
        self._bucket_daily: "dict[str, dict[str, dict[str, Rollup]]]" = {}

    def add(self, sample: "UsageSample") -> "None":
        """
        accumulates sample once into the totals and into the bucket of
        every dimension it carries.
        """
        self.total.add(sample)
        if sample.date:
            self._daily.setdefault(sample.date, Rollup()).add(sample)

        for dimension, key in sample.dimensions.items():
            self.accumulate(dimension, key, sample)

    def add_all(self, samples: "Iterable[UsageSample]") -> "None":
        for sample in samples:
            self.add(sample)

    def accumulate(self, dimension: "str", key: "str", sample: "UsageSample") -> "None":
        """
        adds sample into the bucket for key under dimension. Blank keys
        are dropped.
        """
        key = key.strip()
        if not key:
            return

        self._buckets.setdefault(dimension, {}).setdefault(key, Rollup()).add(sample)
        if sample.date:
            per_key = self._bucket_daily.setdefault(dimension, {}).setdefault(key, {})
            per_key.setdefault(sample.date, Rollup()).add(sample)

    def rollups(self, dimension: "str") -> "dict[str, Rollup]":
        return self._buckets.get(dimension, {})

    def keys(self, dimension: "str") -> "list[str]":
        return sorted(self.rollups(dimension))

    def day(self, date: "str") -> "Rollup":
        return self._daily.get(date, Rollup())

    def days(self) -> "list[str]":
        return sorted(self._daily)

    def daily_values(
        self,
        metric: "str",
        dimension: "str | None" = None,
        key: "str | None" = None,
    ) -> "dict[str, float]":
        """
        day -> metric value, either for the overall total or for one
        dimension key.
        """
        if dimension is None:
            daily = self._daily
        else:
            daily = self._bucket_daily.get(dimension, {}).get(key or "", {})
        return {day: rollup.value(metric) for day, rollup in daily.items()}


def to_series(values: "dict[str, float]") -> "list[TimePoint]":
    """
    materializes a day -> value mapping as a date-sorted series,
    skipping blank days.
    """
    return [
        TimePoint(date=day, value=value)
        for day, value in sorted(values.items())
        if day.strip()
    ]
