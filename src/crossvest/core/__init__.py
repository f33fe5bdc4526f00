"""
crossvest Core Module

Identity translation, address codecs, configuration, logging and the
ledger exception hierarchy.
"""
