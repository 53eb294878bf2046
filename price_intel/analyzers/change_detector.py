"""
Competitor price change detection.

Compares a new observation with the previous one for the same
(product, competitor) and classifies the relative change through a single
table, ``SEVERITY_THRESHOLDS``. A boundary value belongs to the bucket it
starts: exactly 5% is ``medium``, exactly 20% is ``critical``.
"""

from __future__ import annotations

from typing import Iterable, Optional

from price_intel.models.schemas import Observation, PriceAlert, Severity
from price_intel.utils.logger import get_logger

logger = get_logger(__name__)

# (lower bound of |change %|, severity), highest first. Below the last bound: no alert.
SEVERITY_THRESHOLDS: tuple[tuple[float, Severity], ...] = (
    (20.0, Severity.CRITICAL),
    (10.0, Severity.HIGH),
    (5.0, Severity.MEDIUM),
    (2.0, Severity.LOW),
)


def change_percent(old_price: float, new_price: float) -> float:
    """Relative change from ``old_price`` to ``new_price`` in percent."""
    return (new_price - old_price) / old_price * 100


def classify_severity(percent: float) -> Optional[Severity]:
    """Map a change percentage to a severity, or None when below alerting."""
    magnitude = abs(percent)
    for lower_bound, severity in SEVERITY_THRESHOLDS:
        if magnitude >= lower_bound:
            return severity
    return None


def is_comparable(observation: Observation, prior: Observation) -> bool:
    return (
        observation.product_id == prior.product_id
        and observation.competitor == prior.competitor
        and observation.currency == prior.currency
    )


class ChangeDetector:
    """
    Emits a ``PriceAlert`` when a competitor's price moves enough to matter.

    Stateless: the caller supplies the prior observation.
    """

    def detect(
        self, observation: Observation, prior: Optional[Observation]
    ) -> Optional[PriceAlert]:
        """
        Compare an observation with its predecessor.

        Returns:
            A PriceAlert, or None for a first sighting, a non-comparable
            prior, or a change under the lowest threshold.
        """
        if prior is None:
            return None
        if not is_comparable(observation, prior):
            logger.debug(
                "Skipping non-comparable observations",
                product_id=observation.product_id,
                competitor=observation.competitor,
                currency=observation.currency,
                prior_currency=prior.currency,
            )
            return None

        percent = change_percent(prior.price, observation.price)
        severity = classify_severity(percent)
        if severity is None:
            return None

        return PriceAlert(
            product_id=observation.product_id,
            competitor=observation.competitor,
            old_price=prior.price,
            new_price=observation.price,
            change_percent=percent,
            severity=severity,
            timestamp=observation.timestamp,
        )

    def detect_series(self, observations: Iterable[Observation]) -> list[PriceAlert]:
        """
        Replay a window pairwise per (product, competitor).

        The first observation of each competitor is its baseline. Alerts come
        back in timestamp order and carry deterministic ids, so replaying the
        same window yields the same alerts.
        """
        alerts: list[PriceAlert] = []
        previous: dict[tuple[str, str], Observation] = {}

        for observation in sorted(observations, key=lambda o: o.timestamp):
            key = (observation.product_id, observation.competitor)
            alert = self.detect(observation, previous.get(key))
            if alert is not None:
                alert = alert.model_copy(
                    update={
                        "id": f"alert-{observation.product_id}-{observation.competitor}-"
                        f"{int(observation.timestamp.timestamp() * 1000)}"
                    }
                )
                alerts.append(alert)
            previous[key] = observation

        return alerts


__all__ = [
    "SEVERITY_THRESHOLDS",
    "ChangeDetector",
    "change_percent",
    "classify_severity",
    "is_comparable",
]
