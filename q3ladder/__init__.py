"""q3ladder - kill/death ladder for a Quake III server console log."""

__version__ = "0.4.0"
