"""
Fixed topic taxonomy and named-entity lexicon used for semantic grouping.

Categories are checked in declaration order and the first one with a trigger
present in the article wins. Single-word triggers are compared after stemming,
so ``hack`` also catches ``hacked`` and ``hacks``; multi-word triggers are
matched as phrases against the normalized text.

Entities are names worth keeping in a semantic fingerprint even when they
are mentioned only once (a single "Binance" should not lose its slot to a
repeated verb). Generic words are left out of the lexicon.
"""

from __future__ import annotations

from typing import Dict, Tuple

from storyguard.protocols import TopicLabel

TOPIC_TRIGGERS: Dict[TopicLabel, Tuple[str, ...]] = {
    TopicLabel.REGULATORY: (
        "sec", "cftc", "finra", "occ", "regulation", "regulatory", "regulator", "lawsuit", "legal",
        "compliance", "enforcement", "ban", "license", "charter", "settlement", "settle", "court",
        "judge", "sanction", "lawmaker", "senate", "congress", "legislation", "subpoena", "indictment",
    ),
    TopicLabel.MARKET_PRICE: (
        "price", "pump", "surge", "rally", "spike", "ath", "all-time high", "all time high", "breakout",
        "soar", "crash", "dump", "plunge", "collapse", "tumble", "plummet", "volatility", "liquidation",
        "bullish", "bearish", "inflow", "outflow", "selloff", "sell-off",
    ),
    TopicLabel.SECURITY_INCIDENT: (
        "hack", "hacker", "exploit", "vulnerability", "breach", "attack", "stolen", "drained",
        "compromised", "scam", "rug pull", "rugpull", "fraud", "phishing", "ponzi", "heist",
    ),
    TopicLabel.PROTOCOL_UPGRADE: (
        "upgrade", "fork", "hard fork", "mainnet", "testnet", "rollup", "layer 2", "l2", "eip",
        "migration", "merge", "patch", "client release", "validator",
    ),
    TopicLabel.ADOPTION: (
        "adoption", "partnership", "partner", "integration", "integrate", "launch", "payment",
        "institutional", "custody", "listing", "onboard", "accept", "pilot",
    ),
    TopicLabel.MACRO: (
        "fed", "federal reserve", "inflation", "interest rate", "cpi", "recession", "treasury",
        "gdp", "unemployment", "tariff", "ecb", "central bank", "jobs report",
    ),
}

ENTITY_LEXICON: Dict[str, Tuple[str, ...]] = {
    "companies": (
        "blackrock", "coinbase", "binance", "kraken", "gemini", "fidelity", "grayscale", "microstrategy",
        "paypal", "robinhood", "tether", "consensys", "bitgo", "chainalysis", "trezor", "ftx",
        "ethereum foundation",
    ),
    "cryptocurrencies": (
        "bitcoin", "btc", "ethereum", "ether", "eth", "xrp", "ripple", "cardano", "solana", "polkadot",
        "dogecoin", "doge", "bnb", "avalanche", "avax", "usdt", "usd coin", "usdc", "terra", "shiba inu",
        "shib", "litecoin", "ltc",
    ),
    "products": (
        "etf", "etp", "spot bitcoin", "bitcoin etf", "bitcoin etp", "dex", "defi", "nft", "dao",
        "stablecoin", "layer 2", "l2", "smart contract",
    ),
    "regulators": ("sec", "cftc", "finra", "irs", "federal reserve", "fed", "ecb", "bis", "fsb"),
    "locations": ("usa", "europe", "uk", "china", "japan", "singapore", "korea", "india", "hong kong"),
}


def split_triggers(triggers: Tuple[str, ...]) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """Separate single-word triggers from phrase triggers."""
    words = tuple(t for t in triggers if " " not in t and "-" not in t)
    phrases = tuple(t.replace("-", " ") for t in triggers if " " in t or "-" in t)
    return words, phrases
