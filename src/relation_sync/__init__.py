"""Relation Sync: keeps material-partner relationships aligned with partners and the DTR."""

__version__ = "0.1.0"
