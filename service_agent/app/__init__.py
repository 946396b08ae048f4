"""
Metric agent package.

Samples runtime and host statistics on a poll interval and reports them to
the metric server on a report interval, one request per metric or as a batch.
"""
