"""fundledger: fund accounting for time-boxed fundraising campaigns."""

__version__ = "0.1.0"
