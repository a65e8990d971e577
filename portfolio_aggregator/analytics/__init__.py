"""
Aggregation and concurrency analytics.

Includes cycle interval resolution, drawdown timelines, interval-overlap sweeps,
daily bucketing with percentile statistics, portfolio equity merging and the
summarizer that orchestrates them over many backtests.
"""
