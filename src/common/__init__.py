"""
Shared modules for the terminal player and the CMS: logging setup,
YAML configuration, the operating-schedule evaluator, the CMS REST client
and ZeroMQ messaging.
"""
