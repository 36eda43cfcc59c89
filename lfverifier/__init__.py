"""Load Logstash filter test cases, run them through Logstash and compare the events."""

__version__ = "2.0.0"