"""Liquidity bootstrapping event settlement."""
