"""Collaborators that supply signals the pipeline cannot derive itself.

Device fingerprint / geolocation signals and account age come from
upstream services (device intelligence, user profile). The feature store
only consumes them, so tests and A/B variants can plug in fixed values.
"""

import hashlib
from typing import Dict, Optional

from riskengine.models import DeviceSignals, TransactionRequest

MAX_PSEUDO_ACCOUNT_AGE_DAYS = 365 * 3


class DeviceSignalProvider:
    """Supplies device/location signals for a transaction."""

    def signals_for(self, transaction: TransactionRequest) -> DeviceSignals:
        raise NotImplementedError


class PassThroughDeviceProvider(DeviceSignalProvider):
    """Uses the signals attached to the request, or neutral defaults."""

    def __init__(self, default: Optional[DeviceSignals] = None) -> None:
        self.default = default or DeviceSignals(
            device_age_days=180,
            ip_country_match=True,
            billing_shipping_match=True,
        )

    def signals_for(self, transaction: TransactionRequest) -> DeviceSignals:
        if transaction.device is not None:
            return transaction.device
        return self.default


class FixedDeviceProvider(DeviceSignalProvider):
    """Returns the same signals for every transaction."""

    def __init__(self, signals: DeviceSignals) -> None:
        self.signals = signals

    def signals_for(self, transaction: TransactionRequest) -> DeviceSignals:
        return self.signals


class AccountAgeProvider:
    """Supplies a customer's account age in days."""

    def account_age_days(self, customer_key: str) -> float:
        raise NotImplementedError


class HashedAccountAgeProvider(AccountAgeProvider):
    """Stable pseudo account age derived from the customer id.

    Stand-in until a user-profile service is wired in: the same customer
    always gets the same age, spread over [0, 3 years).
    """

    def account_age_days(self, customer_key: str) -> float:
        digest = hashlib.sha256(customer_key.encode("utf-8")).digest()
        fraction = int.from_bytes(digest[:8], "big") / 2 ** 64
        return fraction * MAX_PSEUDO_ACCOUNT_AGE_DAYS


class ProfileAccountAgeProvider(AccountAgeProvider):
    """Serves account ages from a known profile table."""

    def __init__(self, ages: Dict[str, float], default_days: float = 0.0) -> None:
        self.ages = dict(ages)
        self.default_days = default_days

    def account_age_days(self, customer_key: str) -> float:
        return self.ages.get(customer_key, self.default_days)
