"""
Provider collectors.
Each collector fetches its configured series and writes one CSV per series.
"""
from iyield_ingest.collectors.crypto import collect_crypto
from iyield_ingest.collectors.forex import collect_forex
from iyield_ingest.collectors.fred import collect_macro, collect_rates

__all__ = [
    "collect_crypto",
    "collect_forex",
    "collect_macro",
    "collect_rates",
    "COLLECTOR_REGISTRY",
]

# Registry mapping collector names (as used on the command line) to collectors
COLLECTOR_REGISTRY = {
    "crypto": collect_crypto,
    "forex": collect_forex,
    "rates": collect_rates,
    "macro": collect_macro,
}
