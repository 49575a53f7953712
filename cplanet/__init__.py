"""cplanet: a planet-style feed aggregator."""

__version__ = "0.2"
