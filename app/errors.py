"""SeatCounter pricing error hierarchy."""


class PricingError(Exception):
    """Base error for billing engine failures."""
    pass


class ConfigurationError(PricingError):
    """Pricing plans or bindings cannot produce a price (missing tiers, no plan)."""
    pass
