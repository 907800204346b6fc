from app.services.pricing.engine import calculate_quote, resolve_base_price
from app.services.pricing.rules import DEFAULT_RULES, PricingRule

__all__ = ["calculate_quote", "resolve_base_price", "DEFAULT_RULES", "PricingRule"]
