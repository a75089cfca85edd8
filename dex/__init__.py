"""
DEX integration for the arbitrage sizer: pool adapters, config and runner.
"""
