"""TrustLoopz companion: trip check-in and route-deviation tracking client."""

__version__ = "0.1.0"
